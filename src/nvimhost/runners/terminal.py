"""Terminal runner: the editor inside a new terminal-emulator window."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict

from ..kernel.platform import LaunchPlan, terminal_launch_plan, tmux_attach_plan
from .supervision import ProcessHandle, spawn

logger = logging.getLogger("nvimhost.terminal")


async def start_in_terminal(
    terminal_path: str,
    editor_path: str,
    listen_on: str,
    *,
    cwd: Path,
    env: Dict[str, str],
) -> ProcessHandle:
    plan = terminal_launch_plan(terminal_path, editor_path, listen_on)
    logger.debug(f"Terminal launch plan: argv={plan.argv} shell={plan.shell}", extra={"strategy": "terminal"})
    return await spawn(plan, cwd=cwd, env=env, label="terminal")


async def open_tmux_attach_window(
    terminal_path: str,
    tmux_path: str,
    session: str,
    *,
    cwd: Path,
    env: Dict[str, str],
) -> ProcessHandle:
    """Open a detached terminal window running `tmux attach -t <session>`."""
    plan: LaunchPlan = tmux_attach_plan(terminal_path, tmux_path, session)
    return await spawn(plan, cwd=cwd, env=env, label="tmux-attach", new_session=True)
