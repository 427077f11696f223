"""Session state for the hosted editor.

`Session` is an immutable record of how the current editor session was
started and which handles are live. Every change goes through
`transition(session, event)`, which returns a new record or raises
ValueError for an illegal move.

    unknown --Launched--> headless | terminal | tmux
    any     --Closed/Disconnected--> unknown
    headless --ProcessEnded(pid of tracked process)--> unknown
    terminal --ProcessEnded(pid of tracked launcher)--> terminal without process or RPC
    Attached only sets the RPC handle; failed attach attempts do not transition.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from .strategy import LaunchStrategy

if TYPE_CHECKING:
    from ..runners.supervision import ProcessHandle


class StartedVia(str, Enum):
    UNKNOWN = "unknown"
    HEADLESS = "headless"
    TERMINAL = "terminal"
    TMUX = "tmux"


@dataclass(frozen=True)
class Session:
    started_via: StartedVia = StartedVia.UNKNOWN
    process: Optional["ProcessHandle"] = None
    rpc: Any = None
    listen_address: str = ""
    tmux_session_name: Optional[str] = None
    # Why the previous session ended ("exited", "errored", ...); informational only.
    ended_reason: Optional[str] = None

    @property
    def has_live_process(self) -> bool:
        return self.process is not None

    @property
    def is_attached(self) -> bool:
        return self.rpc is not None

    @property
    def is_empty(self) -> bool:
        return self.started_via is StartedVia.UNKNOWN and self.process is None and self.rpc is None


@dataclass(frozen=True)
class Launched:
    strategy: LaunchStrategy
    listen_address: str
    process: Optional["ProcessHandle"] = None
    tmux_session_name: Optional[str] = None


@dataclass(frozen=True)
class Attached:
    rpc: Any


@dataclass(frozen=True)
class ProcessEnded:
    pid: int
    kind: str
    detail: str = ""


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class Closed:
    pass


Event = Union[Launched, Attached, ProcessEnded, Disconnected, Closed]


def transition(session: Session, event: Event) -> Session:
    if isinstance(event, Launched):
        return _on_launched(session, event)

    if isinstance(event, Attached):
        if session.started_via is StartedVia.UNKNOWN:
            raise ValueError("cannot attach RPC handle: no session was launched")
        if event.rpc is None:
            raise ValueError("Attached event without an RPC handle")
        return replace(session, rpc=event.rpc)

    if isinstance(event, ProcessEnded):
        # Stale notifications from an earlier process are ignored.
        if session.process is None or session.process.pid != event.pid:
            return session
        if session.started_via is StartedVia.TERMINAL:
            # The tracked process is only the terminal launcher; many hand the
            # window off and exit while the editor keeps starting up.
            return Session(
                started_via=StartedVia.TERMINAL,
                listen_address=session.listen_address,
                ended_reason=event.kind,
            )
        return Session(ended_reason=event.kind)

    if isinstance(event, (Disconnected, Closed)):
        return Session()

    raise TypeError(f"unknown session event: {event!r}")


def _on_launched(session: Session, event: Launched) -> Session:
    if session.process is not None:
        raise ValueError("a local editor process is already tracked")

    if event.strategy is LaunchStrategy.TMUX:
        if event.process is not None:
            raise ValueError("tmux-hosted sessions never own a local process")
        if not event.tmux_session_name:
            raise ValueError("tmux launch requires a session name")
        if session.started_via not in (StartedVia.UNKNOWN, StartedVia.TMUX):
            raise ValueError(f"cannot enter tmux from {session.started_via.value}")
        # Reusing the same tmux session keeps an existing RPC handle.
        rpc = session.rpc if session.tmux_session_name == event.tmux_session_name else None
        return Session(
            started_via=StartedVia.TMUX,
            rpc=rpc,
            listen_address=event.listen_address,
            tmux_session_name=event.tmux_session_name,
        )

    if event.process is None:
        raise ValueError(f"{event.strategy.value} launch requires a process handle")
    if session.started_via is not StartedVia.UNKNOWN:
        raise ValueError(f"cannot launch {event.strategy.value} from {session.started_via.value}")
    started = StartedVia.HEADLESS if event.strategy is LaunchStrategy.HEADLESS else StartedVia.TERMINAL
    return Session(started_via=started, process=event.process, listen_address=event.listen_address)
