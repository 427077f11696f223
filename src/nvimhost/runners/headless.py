"""Headless runner: the editor with no window, reachable only over RPC."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from ..kernel.platform import LaunchPlan
from .supervision import ProcessHandle, spawn


def headless_args(listen_on: str) -> List[str]:
    return ["--headless", "--listen", listen_on]


async def start_headless(editor_path: str, listen_on: str, *, cwd: Path, env: Dict[str, str]) -> ProcessHandle:
    plan = LaunchPlan(editor_path, headless_args(listen_on))
    return await spawn(plan, cwd=cwd, env=env, label="nvim-headless")
