"""RPC attachment and readiness probing.

The msgpack-RPC client is pynvim, which is blocking. Every handle owns a
single worker thread and all calls on that handle run there; the event loop
only awaits the results.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, List, Optional

import pynvim

from .contracts.v1 import BufferInfo
from .kernel.address import ListenAddress, parse_listen_address

logger = logging.getLogger("nvimhost.rpc")

ATTEMPT_TIMEOUT_S = 1.0
CALL_TIMEOUT_S = 3.0
DEFAULT_READY_TIMEOUT_MS = 7000
DEFAULT_POLL_INTERVAL_MS = 200


class AttachError(Exception):
    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"cannot attach to {address}: {reason}")
        self.address = address
        self.reason = reason


class CancelToken:
    """Aborts a readiness poll from the outside (new launch, close, host quit)."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True


def _close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except Exception as e:
        logger.debug(f"Error closing RPC session: {e}")


def _interrupt(session: Any) -> None:
    """Make a request blocked on `session` fail with EOF; safe from any thread."""
    try:
        session.threadsafe_call(session.stop)
    except RuntimeError as e:
        # Loop already closed.
        logger.debug(f"interrupt: {e}")


def _open_session(addr: ListenAddress) -> Any:
    # Connect only; the first blocking request happens after the session is registered.
    if addr.is_tcp:
        return pynvim.tcp_session(str(addr.host), int(addr.port or 0))
    return pynvim.socket_session(addr.raw)


class _PendingAttach:
    """Shared between an attach attempt's worker thread and the event loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.session: Any = None
        self.abandoned = False

    def opened(self, session: Any) -> bool:
        with self._lock:
            if self.abandoned:
                return False
            self.session = session
            return True

    def abandon(self) -> None:
        with self._lock:
            self.abandoned = True
            session = self.session
        if session is not None:
            _interrupt(session)


def _attach_blocking(addr: ListenAddress, pending: _PendingAttach) -> Any:
    session = _open_session(addr)
    if not pending.opened(session):
        _close_quietly(session)
        raise TimeoutError("attach abandoned")
    try:
        nvim = pynvim.Nvim.from_session(session)
        nvim.eval("1")
    except BaseException:
        _close_quietly(session)
        raise
    if pending.abandoned:
        _close_quietly(nvim)
        raise TimeoutError("attach abandoned")
    return nvim


def _discard_late_result(fut: "Future[Any]") -> None:
    # The attempt finished after the caller stopped waiting for it.
    if fut.cancelled() or fut.exception() is not None:
        return
    _close_quietly(fut.result())


class RpcHandle:
    def __init__(self, nvim: Any, session: Any, executor: ThreadPoolExecutor, address: ListenAddress) -> None:
        self._nvim = nvim
        self._session = session
        self._executor = executor
        self.address = address
        self._closed = False
        self._inflight = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def _call(self, fn: Callable[..., Any], *args: Any, timeout_s: float = CALL_TIMEOUT_S) -> Any:
        if self._closed:
            raise ConnectionError("RPC handle is closed")
        self._inflight += 1
        try:
            return await asyncio.wait_for(asyncio.wrap_future(self._executor.submit(fn, *args)), timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"RPC call timed out after {timeout_s:g}s; dropping connection", extra={"listen": str(self.address)})
            self.close()
            raise
        finally:
            self._inflight -= 1

    async def eval(self, expr: str) -> Any:
        return await self._call(self._nvim.eval, expr)

    async def list_buffers(self) -> List[BufferInfo]:
        def _list() -> List[BufferInfo]:
            return [BufferInfo(number=int(b.number), name=str(b.name or "")) for b in self._nvim.buffers]

        return await self._call(_list)

    async def quit(self) -> None:
        """Ask the editor to quit, then drop the connection."""
        try:
            await self._call(self._nvim.quit, timeout_s=1.0)
        except Exception as e:
            # The editor usually drops the connection while quitting.
            logger.debug(f"quit: {e}")
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._inflight:
            _interrupt(self._session)
        self._executor.submit(_close_quietly, self._nvim)
        self._executor.shutdown(wait=False)


async def attach(listen_on: str, *, timeout_s: float = ATTEMPT_TIMEOUT_S) -> RpcHandle:
    """One connection attempt plus a trivial `eval("1")`. Raises AttachError.

    A failed or timed-out attempt leaves no open connection and no busy worker behind.
    """
    addr = parse_listen_address(listen_on)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="nvimhost-rpc")
    pending = _PendingAttach()
    fut = executor.submit(_attach_blocking, addr, pending)
    try:
        nvim = await asyncio.wait_for(asyncio.wrap_future(fut), timeout_s)
    except asyncio.CancelledError:
        _abandon(pending, fut, executor)
        raise
    except Exception as e:
        _abandon(pending, fut, executor)
        reason = "timed out" if isinstance(e, asyncio.TimeoutError) else (str(e) or type(e).__name__)
        raise AttachError(addr.raw, reason) from e
    return RpcHandle(nvim, pending.session, executor, addr)


def _abandon(pending: _PendingAttach, fut: "Future[Any]", executor: ThreadPoolExecutor) -> None:
    pending.abandon()
    fut.add_done_callback(_discard_late_result)
    executor.shutdown(wait=False)


async def wait_ready(
    listen_on: str,
    timeout_ms: int = DEFAULT_READY_TIMEOUT_MS,
    *,
    interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    token: Optional[CancelToken] = None,
    on_attached: Optional[Callable[[RpcHandle], None]] = None,
) -> bool:
    """Poll `attach` until it succeeds, the timeout elapses or `token` is cancelled.

    The successful handle goes to `on_attached`; without a receiver it is closed.
    Never raises for connection problems.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(0, timeout_ms) / 1000.0
    interval = max(1, interval_ms) / 1000.0
    attempts = 0

    while True:
        if token is not None and token.cancelled:
            logger.info("Readiness poll cancelled", extra={"listen": listen_on, "op": "wait_ready"})
            return False
        remaining = deadline - loop.time()
        if remaining <= 0:
            break

        attempts += 1
        try:
            handle = await attach(listen_on, timeout_s=min(ATTEMPT_TIMEOUT_S, remaining))
        except AttachError as e:
            logger.debug(f"attempt {attempts}: {e.reason}", extra={"listen": listen_on, "op": "wait_ready"})
        else:
            if token is not None and token.cancelled:
                handle.close()
                return False
            if on_attached is not None:
                on_attached(handle)
            else:
                handle.close()
            logger.info(f"RPC ready after {attempts} attempt(s)", extra={"listen": listen_on, "op": "wait_ready"})
            return True

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        if token is not None:
            if await token.sleep(min(interval, remaining)):
                logger.info("Readiness poll cancelled", extra={"listen": listen_on, "op": "wait_ready"})
                return False
        else:
            await asyncio.sleep(min(interval, remaining))

    logger.warning(f"RPC not ready after {attempts} attempt(s)", extra={"listen": listen_on, "op": "wait_ready"})
    return False
