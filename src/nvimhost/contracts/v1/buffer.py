from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BufferInfo(BaseModel):
    """An open buffer reported by the remote editor."""
    number: int
    name: str = ""

    model_config = ConfigDict(extra="forbid")
