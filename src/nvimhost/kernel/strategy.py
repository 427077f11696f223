from __future__ import annotations

from enum import Enum
from typing import Optional

from ..contracts.v1 import EditorSettings


class LaunchStrategy(str, Enum):
    HEADLESS = "headless"
    TERMINAL = "terminal"
    TMUX = "tmux"


def select_strategy(settings: EditorSettings, terminal_path: Optional[str]) -> LaunchStrategy:
    """tmux host mode always wins; otherwise a visible terminal when one resolved, else headless."""
    if settings.host_mode == "tmux":
        return LaunchStrategy.TMUX
    if not terminal_path:
        return LaunchStrategy.HEADLESS
    return LaunchStrategy.TERMINAL
