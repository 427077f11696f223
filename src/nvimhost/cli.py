from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
from pathlib import Path
from typing import Any, List, Optional

import yaml  # type: ignore
from pydantic import ValidationError

from . import __version__
from .contracts.v1 import EditorSettings
from .dispatch import server_reachable
from .host import API_KEY_ENV, NvimHost
from .kernel.session import StartedVia
from .kernel.settings import load_settings, settings_path, update_settings
from .notify import stderr_notifier
from .rpc import AttachError, attach
from .util.obslog import setup_root_json_logging
from .vault import FileSystemVault


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def _vault(args: argparse.Namespace) -> FileSystemVault:
    return FileSystemVault(Path(args.vault or os.getcwd()))


def _build_host(args: argparse.Namespace) -> NvimHost:
    api_key = str(getattr(args, "api_key", "") or os.environ.get(API_KEY_ENV, "")).strip() or None
    return NvimHost.from_settings(load_settings(), _vault(args), stderr_notifier(), api_key=api_key)


async def _run_host(host: NvimHost) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl-C still raises KeyboardInterrupt.
            pass

    result = await host.launch()
    if not result.ok and host.session.is_empty:
        _print_json(result.model_dump())
        return 1

    waiters = [asyncio.create_task(stop.wait())]
    process = host.session.process
    # A terminal launcher may exit right after opening the window; only a
    # headless editor ending means the session is over.
    if process is not None and host.started_via is StartedVia.HEADLESS:
        waiters.append(asyncio.create_task(process.wait_ended()))
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in waiters:
            w.cancel()
        quit_result = await host.on_host_quit()
    return 0 if quit_result.ok else 1


def cmd_run(args: argparse.Namespace) -> int:
    host = _build_host(args)
    try:
        return asyncio.run(_run_host(host))
    except KeyboardInterrupt:
        return 130


async def _open_paths(host: NvimHost, vault: FileSystemVault, paths: List[str]) -> None:
    for p in paths:
        await host.open_file(vault.file_for(Path(p)))


def cmd_open(args: argparse.Namespace) -> int:
    host = _build_host(args)
    vault = _vault(args)
    asyncio.run(_open_paths(host, vault, list(args.paths)))
    return 0


async def _list_buffers(listen_on: str) -> List[dict]:
    handle = await attach(listen_on)
    try:
        return [b.model_dump() for b in await handle.list_buffers()]
    finally:
        handle.close()


def cmd_buffers(args: argparse.Namespace) -> int:
    settings = load_settings()
    try:
        buffers = asyncio.run(_list_buffers(settings.listen_on))
    except AttachError as e:
        _print_json({"ok": False, "error": str(e)})
        return 1
    _print_json({"ok": True, "result": {"buffers": buffers}})
    return 0


async def _status(host: NvimHost) -> dict:
    settings = host.settings
    return {
        "listen_on": settings.listen_on,
        "host_mode": settings.host_mode,
        "strategy": host.strategy().value,
        "reachable": await server_reachable(settings.listen_on),
        "tmux_session": settings.effective_tmux_session_name,
        "tmux_session_exists": await host.tmux.exists(settings.effective_tmux_session_name),
        "nvim": {"path": host.editor.path, "version": host.editor.version, "error": host.editor.error},
        "terminal": host.terminal_path,
        "tmux": host.tmux_path,
    }


def cmd_status(args: argparse.Namespace) -> int:
    host = _build_host(args)
    _print_json({"ok": True, "result": asyncio.run(_status(host))})
    return 0


def cmd_settings_show(args: argparse.Namespace) -> int:
    _print_json({"ok": True, "result": {"path": str(settings_path()), "settings": load_settings().model_dump()}})
    return 0


def cmd_settings_set(args: argparse.Namespace) -> int:
    key = str(args.key or "").strip()
    if key not in EditorSettings.model_fields or key == "v":
        _print_json({"ok": False, "error": f"unknown setting: {key}"})
        return 2
    value: Any = args.value
    if EditorSettings.model_fields[key].annotation in (bool, int):
        # "true", "no", "7000" and friends.
        try:
            value = yaml.safe_load(args.value)
        except yaml.YAMLError:
            pass
    try:
        settings = update_settings(**{key: value})
    except ValidationError as e:
        _print_json({"ok": False, "error": f"invalid value for {key}", "details": e.errors(include_url=False)})
        return 2
    _print_json({"ok": True, "result": {key: getattr(settings, key)}})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nvimhost", description="Host a Neovim editing session for another application")
    parser.add_argument("--version", action="version", version=f"nvimhost {__version__}")
    parser.add_argument("--log-level", default="", help="DEBUG, INFO, WARNING or ERROR (default: $NVIMHOST_LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def _host_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--vault", default="", help="Base directory of the host's files (default: cwd)")
        p.add_argument("--api-key", default="", help=f"Forwarded to the editor as {API_KEY_ENV}")

    p_run = sub.add_parser("run", help="Launch Neovim and stay in the foreground until Ctrl-C")
    _host_args(p_run)
    p_run.set_defaults(func=cmd_run)

    p_open = sub.add_parser("open", help="Open files in the running Neovim server")
    _host_args(p_open)
    p_open.add_argument("paths", nargs="+")
    p_open.set_defaults(func=cmd_open)

    p_buf = sub.add_parser("buffers", help="List buffers open in the running Neovim server")
    p_buf.set_defaults(func=cmd_buffers)

    p_status = sub.add_parser("status", help="Show discovered binaries and server reachability")
    _host_args(p_status)
    p_status.set_defaults(func=cmd_status)

    p_settings = sub.add_parser("settings", help="Show or change settings")
    settings_sub = p_settings.add_subparsers(dest="action", required=True)
    p_show = settings_sub.add_parser("show")
    p_show.set_defaults(func=cmd_settings_show)
    p_set = settings_sub.add_parser("set")
    p_set.add_argument("key")
    p_set.add_argument("value")
    p_set.set_defaults(func=cmd_settings_set)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_root_json_logging(component="nvimhost", level=args.log_level or None)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
