from __future__ import annotations

from .buffer import BufferInfo
from .result import ErrorCode, HostError, HostResult
from .settings import DEFAULT_TMUX_SESSION_NAME, EditorSettings, HostMode

__all__ = [
    "BufferInfo",
    "DEFAULT_TMUX_SESSION_NAME",
    "EditorSettings",
    "ErrorCode",
    "HostError",
    "HostMode",
    "HostResult",
]
