from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ErrorCode = Literal[
    "binary_not_found",
    "already_running",
    "spawn_failed",
    "attach_timeout",
    "port_conflict",
    "multiplexer_not_found",
    "multiplexer_failed",
    "unsupported_platform",
    "remote_command_failed",
]


class HostError(BaseModel):
    code: ErrorCode
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class HostResult(BaseModel):
    ok: bool
    error: Optional[HostError] = None

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def success(cls) -> "HostResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **details: Any) -> "HostResult":
        return cls(ok=False, error=HostError(code=code, message=message, details=details))

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None
