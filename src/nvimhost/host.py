"""Lifecycle manager for the hosted editor.

`NvimHost` decides how to start the editor (headless, terminal window or
tmux session), waits for its RPC endpoint, tracks the live handles in a
`Session` record and tears everything down on close or host shutdown.

Every public coroutine converts failures into a notice plus a `HostResult`;
none of them raise into the host application.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .contracts.v1 import BufferInfo, EditorSettings, HostResult
from .dispatch import CommandDispatcher
from .kernel.binaries import BinaryDescriptor, discover_editor, resolve
from .kernel.session import (
    Attached,
    Closed,
    Disconnected,
    Event,
    Launched,
    ProcessEnded,
    Session,
    StartedVia,
    transition,
)
from .kernel.strategy import LaunchStrategy, select_strategy
from .notify import NOTICE_PREFIX, Notifier
from .rpc import CancelToken, RpcHandle, wait_ready
from .runners.headless import start_headless
from .runners.supervision import ProcessEvent, ProcessEventKind, ProcessHandle, build_env
from .runners.terminal import start_in_terminal
from .runners.tmux import TmuxSessionManager
from .vault import FileProvider, VaultFile

logger = logging.getLogger("nvimhost.host")

API_KEY_ENV = "OBSIDIAN_REST_API_KEY"
APPNAME_ENV = "NVIM_APPNAME"


class NvimHost:
    def __init__(
        self,
        settings: EditorSettings,
        files: FileProvider,
        notifier: Notifier,
        *,
        editor: BinaryDescriptor,
        terminal_path: Optional[str] = None,
        tmux_path: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.files = files
        self.editor = editor
        self.terminal_path = terminal_path
        self.tmux_path = tmux_path
        self.api_key = api_key
        self._notifier = notifier
        self.session = Session()
        self._token: Optional[CancelToken] = None
        self.tmux = TmuxSessionManager(tmux_path, notifier, terminal_path=terminal_path)
        self.dispatcher = CommandDispatcher(settings, editor, files, notifier)

    @classmethod
    def from_settings(
        cls,
        settings: EditorSettings,
        files: FileProvider,
        notifier: Notifier,
        *,
        api_key: Optional[str] = None,
    ) -> "NvimHost":
        """Resolve the editor, terminal and tmux binaries, then build the host."""
        terminal_path = resolve(settings.terminal) if settings.terminal.strip() else None
        if settings.terminal.strip() and not terminal_path:
            logger.warning(f"Could not find binary for {settings.terminal}, double check it's on your PATH")
        tmux_path = resolve("tmux")
        editor = discover_editor(settings.path_to_binary)

        host = cls(
            settings,
            files,
            notifier,
            editor=editor,
            terminal_path=terminal_path,
            tmux_path=tmux_path,
            api_key=api_key,
        )
        host.report_discovery()
        return host

    def report_discovery(self) -> None:
        logger.info(
            "Neovim information: "
            f"terminal={self.terminal_path or 'NOT FOUND'} "
            f"nvim={self.editor.path or 'NOT FOUND'} "
            f"version={self.editor.version} "
            f"error={self.editor.error}"
        )
        if not self.editor.path:
            logger.warning("Using fallback neovim configuration, the host will likely not function")
        if not self.editor.path or self.editor.error or not self.editor.version:
            self._notice("Potential issues in plugin config, check logs for more details", 5000)

    # -- state -----------------------------------------------------------

    @property
    def started_via(self) -> StartedVia:
        return self.session.started_via

    def _apply(self, event: Event) -> None:
        before = self.session.started_via
        self.session = transition(self.session, event)
        if self.session.started_via is not before:
            logger.debug(
                f"session {before.value} -> {self.session.started_via.value} on {type(event).__name__}",
                extra={"op": "transition"},
            )

    def _notice(self, message: str, timeout_ms: int = 5000) -> None:
        self._notifier.notify(NOTICE_PREFIX + message, timeout_ms=timeout_ms)

    def _new_token(self) -> CancelToken:
        if self._token is not None:
            self._token.cancel()
        self._token = CancelToken()
        return self._token

    def _cancel_poll(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def extra_env(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.api_key:
            env[API_KEY_ENV] = self.api_key
        if self.settings.appname.strip():
            env[APPNAME_ENV] = self.settings.appname.strip()
        return env

    def strategy(self) -> LaunchStrategy:
        return select_strategy(self.settings, self.terminal_path)

    # -- launch ----------------------------------------------------------

    async def start(self) -> Optional[HostResult]:
        """Host start hook: launch when `open_on_load` is set."""
        if not self.settings.open_on_load:
            return None
        return await self.launch()

    async def launch(self) -> HostResult:
        strategy = self.strategy()
        log_extra = {"strategy": strategy.value, "listen": self.settings.listen_on, "op": "launch"}

        if self.session.has_live_process:
            logger.info("Launch refused: instance already running", extra=log_extra)
            self._notice("Instance already running", 5000)
            return HostResult.failure("already_running", "an editor process is already running", pid=self.session.process.pid)

        if not self.editor.path:
            logger.warning("Launch refused: no editor binary", extra=log_extra)
            self._notifier.notify("No path to valid nvim binary has been found, skipping command", timeout_ms=5000)
            return HostResult.failure("binary_not_found", "no usable nvim binary")

        if self.session.started_via is StartedVia.TERMINAL:
            # Launcher gone; the editor it opened may still be up.
            if await self._terminal_editor_alive():
                logger.info("Launch refused: terminal-hosted editor still connected", extra=log_extra)
                self._notice("Instance already running", 5000)
                return HostResult.failure("already_running", "a terminal-hosted editor is still connected")
            self.disconnect()

        if strategy is LaunchStrategy.TMUX:
            return await self._launch_tmux(self._new_token())

        if self.session.started_via is StartedVia.TMUX:
            # Host mode switched away from tmux: drop the tmux attachment locally.
            self.disconnect()
        await self._warn_orphaned_tmux()
        return await self._launch_local(strategy, self._new_token())

    async def _launch_local(self, strategy: LaunchStrategy, token: CancelToken) -> HostResult:
        listen_on = self.settings.listen_on
        log_extra = {"strategy": strategy.value, "listen": listen_on, "op": "launch"}
        env = build_env(self.extra_env())
        cwd = self.files.base_path()

        try:
            if strategy is LaunchStrategy.HEADLESS:
                handle = await start_headless(self.editor.path, listen_on, cwd=cwd, env=env)
            else:
                handle = await start_in_terminal(str(self.terminal_path), self.editor.path, listen_on, cwd=cwd, env=env)
        except OSError as e:
            logger.error(f"Error spawning Neovim: {e}", extra=log_extra, exc_info=True)
            self._notifier.notify(f"Error trying to spawn Neovim: {e}", timeout_ms=10000)
            return HostResult.failure("spawn_failed", str(e))

        self._apply(Launched(strategy, listen_on, process=handle))
        handle.subscribe(self._on_process_event)
        logger.info(f"{handle.label} running", extra={**log_extra, "pid": handle.pid})

        ready = await wait_ready(
            listen_on,
            self.settings.ready_timeout_ms,
            interval_ms=self.settings.poll_interval_ms,
            token=token,
            on_attached=self._on_attached,
        )
        if ready:
            if strategy is LaunchStrategy.HEADLESS:
                self._notifier.notify(f"Neovim server started on {listen_on}", timeout_ms=4000)
            else:
                self._notifier.notify("Neovim instance started and connected.", timeout_ms=3000)
            return HostResult.success()

        if token.cancelled:
            # Superseded by a newer launch, close or an editor exit.
            return HostResult.failure("attach_timeout", f"readiness poll for {listen_on} was cancelled")

        self._notifier.notify(f"Failed to connect to Neovim server at {listen_on}", timeout_ms=7000)
        if strategy is LaunchStrategy.HEADLESS and self.session.process is handle:
            await self.close()
        elif self.session.started_via is StartedVia.TERMINAL and self.session.process is None:
            # Launcher already exited and nothing answered: nothing left to track.
            self.disconnect()
        # A terminal window that is still open stays so its output can be read.
        return HostResult.failure("attach_timeout", f"editor at {listen_on} did not become ready")

    async def _launch_tmux(self, token: CancelToken) -> HostResult:
        name = self.settings.effective_tmux_session_name
        listen_on = self.settings.listen_on

        def _session_ready(session_name: str) -> None:
            previous = self.session.rpc
            self._apply(Launched(LaunchStrategy.TMUX, listen_on, tmux_session_name=session_name))
            if previous is not None and self.session.rpc is not previous:
                # Attached to a differently named session.
                previous.close()

        return await self.tmux.ensure_session(
            name,
            self.editor.path,
            listen_on,
            self.files.base_path(),
            self.extra_env(),
            attach_terminal=self.settings.tmux_attach_on_start,
            timeout_ms=self.settings.ready_timeout_ms,
            interval_ms=self.settings.poll_interval_ms,
            token=token,
            on_session=_session_ready,
            on_attached=self._on_attached,
        )

    async def _warn_orphaned_tmux(self) -> None:
        if not self.tmux_path:
            return
        name = self.settings.effective_tmux_session_name
        if not await self.tmux.exists(name):
            return
        logger.warning(f"tmux session '{name}' is still running while host mode is '{self.settings.host_mode}'")
        self._notice(
            f"tmux session '{name}' from tmux host mode is still running.\n"
            f"Run `tmux kill-session -t {name}` if you no longer need it.",
            10000,
        )

    def _on_attached(self, handle: RpcHandle) -> None:
        if self.session.started_via is StartedVia.UNKNOWN:
            # The session ended while we were polling.
            handle.close()
            return
        previous = self.session.rpc
        self._apply(Attached(handle))
        if previous is not None and previous is not handle:
            previous.close()
        logger.debug("RPC connection test successful", extra={"listen": self.settings.listen_on, "op": "attach"})

    async def _terminal_editor_alive(self) -> bool:
        rpc: Optional[RpcHandle] = self.session.rpc
        if rpc is None:
            return False
        try:
            await rpc.eval("1")
        except Exception as e:
            logger.info(f"Terminal-hosted editor no longer answers: {e}")
            return False
        return True

    def _on_process_event(self, event: ProcessEvent) -> None:
        current: Optional[ProcessHandle] = self.session.process
        if current is None or current.pid != event.pid:
            return
        started_via = self.session.started_via
        rpc = self.session.rpc
        if started_via is StartedVia.HEADLESS:
            # The editor itself is gone; stop waiting for it.
            self._cancel_poll()
        self._apply(ProcessEnded(event.pid, event.kind.value, event.detail))
        if rpc is not None:
            rpc.close()

        if event.kind is ProcessEventKind.ERRORED:
            logger.error(f"Neovim process ran into an error: {event.detail}", extra={"pid": event.pid})
            self._notice("Neovim ran into an error, see logs for details")
        elif started_via is StartedVia.TERMINAL and rpc is None:
            logger.info(
                f"Terminal launcher {event.kind.value} with code {event.returncode}; still waiting for the editor",
                extra={"pid": event.pid, "strategy": "terminal"},
            )
        else:
            logger.info(f"nvim {event.kind.value} with code: {event.returncode}", extra={"pid": event.pid})
            self._notice(f"Neovim session ended ({event.kind.value}, code {event.returncode})", 4000)

    # -- commands --------------------------------------------------------

    async def open_file(self, file: Optional[VaultFile]) -> None:
        await self.dispatcher.open_file(file, self.session)

    async def get_buffers(self) -> List[BufferInfo]:
        rpc: Optional[RpcHandle] = self.session.rpc
        if rpc is None:
            return []
        try:
            return await rpc.list_buffers()
        except Exception as e:
            logger.error(f"Unable to list buffers: {e}", exc_info=True)
            self._notice(f"Unable to get Neovim buffers due to: {e}", 5000)
            return []

    # -- shutdown --------------------------------------------------------

    def disconnect(self) -> None:
        """Drop local handles without asking the editor (or tmux) to quit."""
        self._cancel_poll()
        if self.session.rpc is not None:
            self.session.rpc.close()
        if self.session.process is not None:
            self.session.process.detach()
        self._apply(Disconnected())

    async def on_host_quit(self) -> HostResult:
        if self.session.started_via is StartedVia.TMUX and self.settings.tmux_keep_alive_on_quit:
            logger.info("Host quitting; leaving tmux session alive", extra={"op": "on_host_quit"})
            self.disconnect()
            return HostResult.success()
        return await self.close()

    async def close(self) -> HostResult:
        self._cancel_poll()

        if self.session.started_via is StartedVia.TMUX:
            name = self.session.tmux_session_name or self.settings.effective_tmux_session_name
            if not self.tmux_path:
                self.disconnect()
                self._notice("Disconnected from tmux-hosted Neovim (tmux not found).", 5000)
                return HostResult.failure("multiplexer_not_found", "tmux binary not found")
            result = await self.tmux.kill(name)
            # Local handles go regardless of whether tmux cooperated.
            self.disconnect()
            if result.ok:
                self._notice(f"Killed tmux session '{name}'.", 4000)
            else:
                self._notice(f"Failed to kill tmux session '{name}' (see logs).", 10000)
            return result

        was_empty = self.session.is_empty
        process, rpc = self.session.process, self.session.rpc
        # Clear first so the exit notification of `process` is treated as stale.
        self._apply(Closed())
        if process is not None:
            process.terminate()
        if rpc is not None:
            await rpc.quit()
        if not was_empty:
            logger.info("Neovim instance closed", extra={"op": "close"})
            self._notice("Neovim instance closed.", 3000)
        return HostResult.success()
