"""Listen address parsing.

An address is either `host:port` (TCP) or an opaque filesystem path (unix
socket / named pipe). The rule is deliberately narrow so that Windows drive
paths and named pipes never look like TCP endpoints.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ListenAddress:
    raw: str
    host: Optional[str] = None
    port: Optional[int] = None

    @property
    def is_tcp(self) -> bool:
        return self.port is not None

    @property
    def path(self) -> Optional[str]:
        return None if self.is_tcp else self.raw

    def __str__(self) -> str:
        return self.raw


def parse_listen_address(raw: str) -> ListenAddress:
    addr = str(raw or "").strip()
    idx = addr.rfind(":")
    if idx > 0 and not addr.startswith("/") and "\\\\" not in addr:
        port_str = addr[idx + 1:]
        if port_str.isascii() and port_str.isdigit():
            return ListenAddress(raw=addr, host=addr[:idx], port=int(port_str))
    return ListenAddress(raw=addr)
