"""Opening host files in the remote editor (`nvim --server <addr> --remote <path>`)."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

from .contracts.v1 import EditorSettings
from .kernel.address import parse_listen_address
from .kernel.binaries import BinaryDescriptor
from .kernel.platform import can_connect_unix, is_port_in_use
from .kernel.session import Session
from .notify import NOTICE_PREFIX, Notifier
from .vault import FileProvider, VaultFile

logger = logging.getLogger("nvimhost.dispatch")

EXCALIDRAW_SUFFIX = ".excalidraw.md"
EXCALIDRAW_FLAG = "excalidraw"


class RemoteFailure(str, Enum):
    CONNECTION_REFUSED = "connection_refused"
    MISSING_FILE = "missing_file"
    EXECUTABLE_NOT_FOUND = "executable_not_found"
    OTHER = "other"


# First matching substring wins.
STDERR_SIGNATURES: Tuple[Tuple[str, RemoteFailure], ...] = (
    ("ECONNREFUSED", RemoteFailure.CONNECTION_REFUSED),
    ("Connection refused", RemoteFailure.CONNECTION_REFUSED),
    ("No such file or directory", RemoteFailure.MISSING_FILE),
    ("command not found", RemoteFailure.EXECUTABLE_NOT_FOUND),
    ("is not recognized as an internal or external command", RemoteFailure.EXECUTABLE_NOT_FOUND),
)


def classify_failure(stderr: str) -> RemoteFailure:
    text = stderr or ""
    for needle, kind in STDERR_SIGNATURES:
        if needle in text:
            return kind
    return RemoteFailure.OTHER


@dataclass(frozen=True)
class RemoteCommandResult:
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    # Set when the command could not be started at all.
    spawn_error: Optional[str] = None
    executable_missing: bool = False

    @property
    def ok(self) -> bool:
        return self.spawn_error is None and self.returncode == 0


def remote_open_args(listen_on: str, absolute_path: str) -> List[str]:
    return ["--server", listen_on, "--remote", absolute_path]


async def run_remote_open(
    editor_path: str,
    listen_on: str,
    absolute_path: str,
    *,
    timeout_s: float = 10.0,
) -> RemoteCommandResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            editor_path,
            *remote_open_args(listen_on, absolute_path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        return RemoteCommandResult(returncode=None, spawn_error=str(e), executable_missing=True)
    except OSError as e:
        return RemoteCommandResult(returncode=None, spawn_error=str(e))
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        return RemoteCommandResult(returncode=None, spawn_error=f"timed out after {timeout_s:g}s")
    return RemoteCommandResult(
        returncode=proc.returncode,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


async def server_reachable(listen_on: str) -> bool:
    addr = parse_listen_address(listen_on)
    if addr.is_tcp:
        return await asyncio.to_thread(is_port_in_use, int(addr.port or 0))
    return await asyncio.to_thread(can_connect_unix, addr.raw)


RemoteRunner = Callable[[str, str, str], Awaitable[RemoteCommandResult]]


class CommandDispatcher:
    def __init__(
        self,
        settings: EditorSettings,
        editor: BinaryDescriptor,
        files: FileProvider,
        notifier: Notifier,
        *,
        runner: RemoteRunner = run_remote_open,
        reachable: Callable[[str], Awaitable[bool]] = server_reachable,
    ) -> None:
        self.settings = settings
        self.editor = editor
        self._files = files
        self._notifier = notifier
        self._runner = runner
        self._reachable = reachable

    def is_supported(self, file: VaultFile) -> bool:
        types = set(self.settings.supported_file_types)
        if file.extension in types:
            return True
        return file.path.endswith(EXCALIDRAW_SUFFIX) and EXCALIDRAW_FLAG in types

    async def has_server(self, session: Session) -> bool:
        if session.has_live_process and session.is_attached:
            return True
        return await self._reachable(self.settings.listen_on)

    async def open_file(self, file: Optional[VaultFile], session: Session) -> None:
        """Open `file` in the remote editor; problems end up as notices, never exceptions."""
        if file is None or not self.editor.path:
            return
        if not self.is_supported(file):
            logger.debug(f"Skipping unsupported file type: {file.path}")
            return
        if not await self.has_server(session):
            logger.debug(f"No reachable server at {self.settings.listen_on}; not opening {file.path}")
            return

        absolute_path = self._files.full_path(file.path)
        logger.debug(f"Opening {absolute_path} in neovim", extra={"listen": self.settings.listen_on, "op": "open_file"})
        result = await self._runner(self.editor.path, self.settings.listen_on, absolute_path)

        if result.ok:
            if result.stdout.strip():
                logger.info(f"--remote stdout: {result.stdout.strip()}")
            if result.stderr.strip():
                logger.warning(f"--remote stderr: {result.stderr.strip()}")
            return

        message = self.failure_message(result, file)
        logger.error(
            f"Remote open failed: {result.spawn_error or result.stderr.strip() or result.returncode}",
            extra={"listen": self.settings.listen_on, "op": "open_file"},
        )
        self._notifier.notify(NOTICE_PREFIX + message, timeout_ms=10000)

    def failure_message(self, result: RemoteCommandResult, file: VaultFile) -> str:
        if result.executable_missing:
            kind = RemoteFailure.EXECUTABLE_NOT_FOUND
        else:
            kind = classify_failure(result.stderr)

        if kind is RemoteFailure.EXECUTABLE_NOT_FOUND:
            return f"Neovim executable not found at: {self.editor.path}"
        if kind is RemoteFailure.CONNECTION_REFUSED:
            return f"Could not connect to Neovim server at {self.settings.listen_on}. Is it running?"
        if kind is RemoteFailure.MISSING_FILE:
            return f"Neovim server reported error finding file: {file.basename}"

        stderr = result.stderr.strip()
        if stderr:
            return f"Error opening file in Neovim: {stderr.splitlines()[0]}"
        detail = result.spawn_error or f"exit code {result.returncode}"
        return f"Error opening file in Neovim: {detail}"
