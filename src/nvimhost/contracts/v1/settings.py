from __future__ import annotations

import os
from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


HostMode = Literal["nvim", "tmux"]

DEFAULT_TMUX_SESSION_NAME = "edit-in-neovim"
DEFAULT_FILE_TYPES = ["txt", "md", "css", "js", "ts", "tsx", "jsx", "json"]


def _default_terminal() -> str:
    return os.environ.get("TERMINAL", "")


class EditorSettings(BaseModel):
    """Host-managed configuration for the external editor session.

    - host_mode="nvim": spawn the editor directly (terminal if one resolves, otherwise headless)
    - host_mode="tmux": create/reuse a tmux session running the editor
    """
    v: int = 1
    host_mode: HostMode = "nvim"
    terminal: str = Field(default_factory=_default_terminal)
    listen_on: str = "127.0.0.1:2006"
    open_on_load: bool = True
    supported_file_types: List[str] = Field(default_factory=lambda: list(DEFAULT_FILE_TYPES))
    path_to_binary: str = ""
    appname: str = ""
    tmux_session_name: str = "obsidian"
    tmux_attach_on_start: bool = False
    tmux_keep_alive_on_quit: bool = False
    ready_timeout_ms: int = Field(default=7000, gt=0)
    poll_interval_ms: int = Field(default=200, gt=0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("supported_file_types", mode="before")
    @classmethod
    def _split_file_types(cls, value: Any) -> Any:
        # Accept "txt md css" as well as a list; a leading "." is tolerated.
        if isinstance(value, str):
            value = value.split()
        if isinstance(value, (list, tuple)):
            return [str(v).strip().lstrip(".") for v in value if str(v).strip()]
        return value

    @property
    def effective_tmux_session_name(self) -> str:
        return self.tmux_session_name.strip() or DEFAULT_TMUX_SESSION_NAME
