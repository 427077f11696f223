"""User-visible notices.

The host application decides how notices are shown; `Notifier` is the seam.
`LogNotifier` is the default used by the CLI: every notice is logged and,
when a stream is given, echoed there as plain text.
"""
from __future__ import annotations

import logging
import sys
from typing import List, Optional, Protocol, TextIO, Tuple

logger = logging.getLogger("nvimhost.notice")

NOTICE_PREFIX = "edit-in-neovim:\n"


class Notifier(Protocol):
    def notify(self, message: str, *, timeout_ms: int = 5000) -> None: ...


class LogNotifier:
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def notify(self, message: str, *, timeout_ms: int = 5000) -> None:
        logger.info(message.replace(NOTICE_PREFIX, "").replace("\n", " "))
        if self._stream is not None:
            print(message.replace(NOTICE_PREFIX, "nvimhost: "), file=self._stream, flush=True)


class RecordingNotifier:
    """Keeps notices in memory; useful for embedding hosts and tests."""

    def __init__(self) -> None:
        self.notices: List[Tuple[str, int]] = []

    def notify(self, message: str, *, timeout_ms: int = 5000) -> None:
        self.notices.append((message, timeout_ms))

    @property
    def messages(self) -> List[str]:
        return [m for m, _ in self.notices]


def stderr_notifier() -> LogNotifier:
    return LogNotifier(sys.stderr)
