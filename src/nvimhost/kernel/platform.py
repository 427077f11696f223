"""Platform launch policy.

Binary search directories, terminal-emulator argument tables and the
port-occupancy check. These are internal platform policy, not user settings.
"""
from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import psutil

logger = logging.getLogger("nvimhost.platform")

IS_WINDOWS = os.name == "nt"

_UNIX_DIRS = (
    "/usr/local/bin",
    "/usr/bin",
    "/opt/homebrew/bin",
    "/home/linuxbrew/.linuxbrew/bin",
)

# Extra locations only searched for the editor itself.
EDITOR_EXTRA_DIRS = () if IS_WINDOWS else ("/snap/nvim/current/usr/bin",)


def normalize_dir(p: str) -> str:
    return os.path.normpath(p.lower() if IS_WINDOWS else p)


def executable_name(name: str) -> str:
    if IS_WINDOWS and not name.lower().endswith(".exe"):
        return f"{name}.exe"
    return name


def search_dirs(extra: Iterable[str] = ()) -> List[str]:
    """Ordered, de-duplicated candidate directories: PATH first, then well-known locations."""
    out: List[str] = []

    def _add(p: str) -> None:
        if not p:
            return
        n = normalize_dir(p)
        if n not in out:
            out.append(n)

    for p in os.environ.get("PATH", "").split(os.pathsep):
        _add(p)

    if IS_WINDOWS:
        profile = os.environ.get("USERPROFILE", "")
        local = os.environ.get("LOCALAPPDATA", "")
        program_files = os.environ.get("PROGRAMFILES", "")
        if profile:
            _add(f"{profile}/scoop/shims")
        _add("C:/ProgramData/scoop/shims")
        if local:
            _add(f"{local}/Microsoft/WindowsApps")
            _add(f"{local}/Microsoft/WinGet/Packages")
        if program_files:
            _add(f"{program_files}/WinGet/Packages")
            _add(f"{program_files} (x86)/WinGet/Packages")
    else:
        for p in _UNIX_DIRS:
            _add(p)
        home = os.environ.get("HOME", "")
        if home:
            _add(f"{home}/bin")
            _add(f"{home}/.linuxbrew/bin")

    for p in extra:
        _add(p)
    return out


@dataclass
class LaunchPlan:
    """argv for a spawn; `shell` set means run the joined command through that shell."""
    program: str
    args: List[str] = field(default_factory=list)
    shell: Optional[str] = None

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]


def user_shell() -> Optional[str]:
    sh = os.environ.get("SHELL", "").strip()
    if sh:
        return sh
    try:
        import pwd

        return pwd.getpwuid(os.getuid()).pw_shell or None
    except (ImportError, KeyError):
        return None


def terminal_launch_plan(terminal_path: str, editor_path: str, listen_on: str) -> LaunchPlan:
    """Open a new terminal window running `<editor> --listen <addr>`."""
    name = Path(terminal_path.replace("\\", "/")).name.lower()

    if not IS_WINDOWS:
        return LaunchPlan(terminal_path, ["-e", editor_path, "--listen", listen_on], shell=user_shell() or "/bin/sh")

    if name in ("alacritty.exe", "wezterm.exe", "kitty.exe"):
        return LaunchPlan(terminal_path, ["-e", editor_path, "--listen", listen_on])

    if name == "wt.exe":
        return LaunchPlan(terminal_path, ["new-tab", "--title", "Neovim", editor_path, "--listen", listen_on])

    if name in ("powershell.exe", "pwsh.exe"):
        command = f"Start-Process -FilePath '{editor_path}' -ArgumentList '--listen {listen_on}' -WindowStyle Normal"
        return LaunchPlan(
            terminal_path,
            ["-ExecutionPolicy", "Bypass", "-NoProfile", "-NoExit", "-Command", command],
            shell="cmd.exe",
        )

    if name == "cmd.exe":
        return LaunchPlan(terminal_path, ["/c", "start", '"Neovim"', f'"{editor_path}"', "--listen", listen_on], shell="cmd.exe")

    logger.warning(f"Unknown Windows terminal {terminal_path}; using `-e` fallback, this is likely to fail")
    return LaunchPlan(terminal_path, ["-e", editor_path, "--listen", listen_on])


def tmux_attach_plan(terminal_path: str, tmux_path: str, session: str) -> LaunchPlan:
    # Most Unix terminals accept `-e <cmd...>`.
    return LaunchPlan(terminal_path, ["-e", tmux_path, "attach", "-t", session])


def is_port_in_use(port: int) -> bool:
    """True when any local socket is bound to `port`."""
    try:
        for conn in psutil.net_connections(kind="inet"):
            laddr = conn.laddr
            if laddr and int(getattr(laddr, "port", 0) or 0) == int(port):
                return True
        return False
    except psutil.AccessDenied:
        # macOS requires privileges for a full connection table; try a loopback connect instead.
        logger.debug("net_connections denied; probing loopback instead")
        return can_connect_tcp("127.0.0.1", port)


def can_connect_tcp(host: str, port: int, *, timeout_s: float = 0.3) -> bool:
    try:
        with socket.create_connection((host, int(port)), timeout=timeout_s):
            return True
    except OSError:
        return False


def can_connect_unix(path: str, *, timeout_s: float = 0.3) -> bool:
    family = getattr(socket, "AF_UNIX", None)
    if family is None:
        return os.path.exists(path)
    try:
        with socket.socket(family, socket.SOCK_STREAM) as s:
            s.settimeout(timeout_s)
            s.connect(path)
            return True
    except OSError:
        return False
