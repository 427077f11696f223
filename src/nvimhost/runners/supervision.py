"""Process supervision for locally spawned editor/terminal processes.

Each `ProcessHandle` watches its child and publishes exactly one terminal
`ProcessEvent` (exited / errored / disconnected) per process lifetime.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional

from ..kernel.platform import IS_WINDOWS, LaunchPlan

logger = logging.getLogger("nvimhost.supervision")


class ProcessEventKind(str, Enum):
    EXITED = "exited"
    ERRORED = "errored"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ProcessEvent:
    pid: int
    kind: ProcessEventKind
    returncode: Optional[int] = None
    detail: str = ""


class ProcessHandle:
    def __init__(self, proc: asyncio.subprocess.Process, *, label: str) -> None:
        self._proc = proc
        self.label = label
        self._ended: asyncio.Future[ProcessEvent] = asyncio.get_running_loop().create_future()
        self._subscribed = False
        self._task = asyncio.create_task(self._watch(), name=f"nvimhost-watch:{label}:{self.pid}")

    @property
    def pid(self) -> int:
        return int(getattr(self._proc, "pid", 0) or 0)

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    def is_running(self) -> bool:
        return self._proc.returncode is None and not self._ended.done()

    async def _watch(self) -> None:
        try:
            code = await self._proc.wait()
        except asyncio.CancelledError:
            self._emit(ProcessEvent(self.pid, ProcessEventKind.DISCONNECTED, detail="supervision cancelled"))
            raise
        except Exception as e:
            self._emit(ProcessEvent(self.pid, ProcessEventKind.ERRORED, detail=str(e)))
            return
        self._emit(ProcessEvent(self.pid, ProcessEventKind.EXITED, returncode=code))

    def _emit(self, event: ProcessEvent) -> None:
        if self._ended.done():
            return
        logger.info(
            f"{self.label} {event.kind.value} (code={event.returncode})",
            extra={"pid": self.pid, "op": "supervise"},
        )
        self._ended.set_result(event)

    def subscribe(self, callback: Callable[[ProcessEvent], None]) -> None:
        """Register the single consumer of this process's terminal event."""
        if self._subscribed:
            raise RuntimeError(f"{self.label} pid={self.pid} already has a subscriber")
        self._subscribed = True
        self._ended.add_done_callback(lambda fut: callback(fut.result()))

    async def wait_ended(self) -> ProcessEvent:
        return await asyncio.shield(self._ended)

    def terminate(self) -> None:
        if self._proc.returncode is not None:
            return
        try:
            self._proc.terminate()
        except ProcessLookupError:
            pass

    def detach(self) -> None:
        """Stop watching without touching the process."""
        if not self._task.done():
            self._task.cancel()
        self._emit(ProcessEvent(self.pid, ProcessEventKind.DISCONNECTED, detail="supervision detached"))


def _shell_command(plan: LaunchPlan) -> str:
    if IS_WINDOWS:
        return subprocess.list2cmdline(plan.argv)
    return shlex.join(plan.argv)


async def spawn(
    plan: LaunchPlan,
    *,
    cwd: Path,
    env: Dict[str, str],
    label: str,
    new_session: bool = False,
) -> ProcessHandle:
    """Start `plan` with stdio silenced. Raises OSError when the spawn itself fails."""
    kwargs = dict(
        cwd=str(cwd),
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    if new_session and not IS_WINDOWS:
        kwargs["start_new_session"] = True

    if plan.shell and IS_WINDOWS:
        # Windows always goes through COMSPEC.
        proc = await asyncio.create_subprocess_shell(_shell_command(plan), **kwargs)
    elif plan.shell:
        proc = await asyncio.create_subprocess_shell(_shell_command(plan), executable=plan.shell, **kwargs)
    else:
        proc = await asyncio.create_subprocess_exec(plan.program, *plan.args, **kwargs)

    if not proc.pid:
        raise OSError(f"failed to create {label} process")
    logger.debug(f"Spawned {label}: {plan.argv}", extra={"pid": proc.pid, "op": "spawn"})
    return ProcessHandle(proc, label=label)


def build_env(overlay: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Host environment with `overlay` on top (overlay wins)."""
    env = os.environ.copy()
    env.update({k: v for k, v in (overlay or {}).items() if isinstance(k, str) and isinstance(v, str)})
    return env
