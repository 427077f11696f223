"""tmux-hosted editor sessions.

The editor process belongs to tmux, not to us: sessions are looked up by name
on every call (never cached) because anything else on the machine may create
or kill them.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..contracts.v1 import HostResult
from ..kernel.address import parse_listen_address
from ..kernel.platform import IS_WINDOWS, is_port_in_use
from ..notify import NOTICE_PREFIX, Notifier
from ..rpc import CancelToken, RpcHandle, wait_ready
from .terminal import open_tmux_attach_window

logger = logging.getLogger("nvimhost.tmux")


async def _run_tmux(tmux: str, args: List[str], *, timeout_s: float = 3.0) -> Tuple[int, str, str]:
    try:
        proc = await asyncio.create_subprocess_exec(
            tmux,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return 127, "", str(e)
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        return 124, "", "tmux timeout"
    return int(proc.returncode or 0), out.decode("utf-8", errors="replace"), err.decode("utf-8", errors="replace")


async def has_session(tmux: str, session: str) -> bool:
    code, _, _ = await _run_tmux(tmux, ["has-session", "-t", session])
    return code == 0


def env_binary() -> str:
    return "/usr/bin/env" if os.path.exists("/usr/bin/env") else "env"


def new_session_args(session: str, *, cwd: Path, env: Dict[str, str], editor_path: str, listen_on: str) -> List[str]:
    pairs = [f"{k}={v}" for k, v in env.items() if isinstance(k, str) and k.strip() and isinstance(v, str)]
    return [
        "new-session",
        "-d",
        "-s",
        session,
        "-c",
        str(cwd),
        env_binary(),
        *pairs,
        editor_path,
        "--listen",
        listen_on,
    ]


async def kill_session(tmux: str, session: str) -> Tuple[bool, str]:
    code, _, err = await _run_tmux(tmux, ["kill-session", "-t", session])
    return code == 0, err.strip()


class TmuxSessionManager:
    def __init__(
        self,
        tmux_path: Optional[str],
        notifier: Notifier,
        *,
        terminal_path: Optional[str] = None,
        port_in_use: Callable[[int], bool] = is_port_in_use,
    ) -> None:
        self.tmux_path = tmux_path
        self.terminal_path = terminal_path
        self._notifier = notifier
        self._port_in_use = port_in_use

    def _notice(self, message: str, timeout_ms: int) -> None:
        self._notifier.notify(NOTICE_PREFIX + message, timeout_ms=timeout_ms)

    async def exists(self, session: str) -> bool:
        if not self.tmux_path:
            return False
        return await has_session(self.tmux_path, session)

    async def ensure_session(
        self,
        session: str,
        editor_path: str,
        listen_on: str,
        cwd: Path,
        env: Dict[str, str],
        *,
        attach_terminal: bool = False,
        timeout_ms: int = 7000,
        interval_ms: int = 200,
        token: Optional[CancelToken] = None,
        on_session: Optional[Callable[[str], None]] = None,
        on_attached: Optional[Callable[[RpcHandle], None]] = None,
    ) -> HostResult:
        """Create `session` if needed, then wait for the editor inside it to accept RPC.

        `on_session` fires once the named session is known to exist.
        """
        log_extra = {"session": session, "listen": listen_on, "strategy": "tmux", "op": "ensure_session"}

        if IS_WINDOWS:
            self._notice("tmux host mode is not supported on Windows.", 7000)
            return HostResult.failure("unsupported_platform", "tmux host mode is not supported on Windows")

        if not self.tmux_path:
            self._notice("Could not find tmux on PATH. Install tmux or switch host mode back to 'nvim'.", 10000)
            return HostResult.failure("multiplexer_not_found", "tmux binary not found")

        addr = parse_listen_address(listen_on)
        session_exists = await has_session(self.tmux_path, session)

        # A foreign listener on our TCP port would make the readiness check "succeed"
        # against something that is not tmux-hosted.
        if addr.is_tcp and not session_exists and self._port_in_use(int(addr.port or 0)):
            logger.warning(f"Port {addr.port} already in use and no tmux session '{session}'", extra=log_extra)
            self._notice(
                f"{listen_on} is already in use, so tmux-hosted Neovim can't bind to it.\n\n"
                "Stop the existing Neovim server or choose a different listen address "
                "(a unix socket path is recommended).",
                12000,
            )
            return HostResult.failure("port_conflict", f"{listen_on} is already in use", port=addr.port)

        if not session_exists:
            args = new_session_args(session, cwd=cwd, env=env, editor_path=editor_path, listen_on=listen_on)
            logger.debug(f"Starting tmux-hosted Neovim: {self.tmux_path} {args}", extra=log_extra)
            code, _, err = await _run_tmux(self.tmux_path, args)
            if code != 0:
                logger.error(f"tmux new-session failed: {err.strip()}", extra=log_extra)
                self._notice("Failed to start tmux session (see logs).", 10000)
                return HostResult.failure("multiplexer_failed", f"tmux new-session failed: {err.strip()}")
            logger.info("Created tmux session", extra=log_extra)
        else:
            logger.info("Reusing existing tmux session", extra=log_extra)

        if on_session is not None:
            on_session(session)

        if attach_terminal:
            await self._open_attach_window(session, cwd)

        ready = await wait_ready(listen_on, timeout_ms, interval_ms=interval_ms, token=token, on_attached=on_attached)
        if ready:
            self._notifier.notify(f"Neovim running in tmux session '{session}'", timeout_ms=4000)
            return HostResult.success()

        if not addr.is_tcp and not os.path.exists(listen_on):
            self._notice(f"Couldn't connect to {listen_on}. If this is a socket path, it was not created.", 10000)
        else:
            self._notice(f"Couldn't connect to Neovim at {listen_on}. Is it running in tmux?", 10000)
        return HostResult.failure("attach_timeout", f"editor at {listen_on} did not become ready", session=session)

    async def _open_attach_window(self, session: str, cwd: Path) -> None:
        if not self.terminal_path:
            self._notice("No terminal configured; can't auto-attach to tmux.", 5000)
            return
        try:
            await open_tmux_attach_window(
                self.terminal_path,
                self.tmux_path or "tmux",
                session,
                cwd=cwd,
                env=os.environ.copy(),
            )
        except OSError as e:
            logger.error(f"Failed to spawn terminal to attach tmux: {e}", extra={"session": session}, exc_info=True)
            self._notice("Failed to open terminal to attach tmux (see logs).", 7000)

    async def kill(self, session: str) -> HostResult:
        if not self.tmux_path:
            return HostResult.failure("multiplexer_not_found", "tmux binary not found")
        ok, err = await kill_session(self.tmux_path, session)
        if not ok:
            logger.error(f"Failed to kill tmux session: {err}", extra={"session": session, "op": "kill_session"})
            return HostResult.failure("multiplexer_failed", f"tmux kill-session failed: {err}", session=session)
        logger.info("Killed tmux session", extra={"session": session, "op": "kill_session"})
        return HostResult.success()
