import asyncio
import os
import socket
import tempfile
import time
import unittest
from unittest import mock


def _free_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class _FakeHandle:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class TestCancelToken(unittest.IsolatedAsyncioTestCase):
    async def test_sleep_times_out(self) -> None:
        from nvimhost.rpc import CancelToken

        t = CancelToken()
        self.assertFalse(await t.sleep(0.01))
        self.assertFalse(t.cancelled)

    async def test_cancel_wakes_sleeper(self) -> None:
        from nvimhost.rpc import CancelToken

        t = CancelToken()
        asyncio.get_running_loop().call_later(0.01, t.cancel)
        started = time.monotonic()
        self.assertTrue(await t.sleep(5))
        self.assertLess(time.monotonic() - started, 2)


class TestWaitReady(unittest.IsolatedAsyncioTestCase):
    async def test_closed_port_gives_up_within_timeout(self) -> None:
        from nvimhost.rpc import wait_ready

        started = time.monotonic()
        ok = await wait_ready(f"127.0.0.1:{_free_port()}", 400, interval_ms=100)
        self.assertFalse(ok)
        self.assertLess(time.monotonic() - started, 0.4 + 0.1 + 1.0)

    @unittest.skipIf(os.name == "nt", "unix socket path")
    async def test_missing_socket_raises_attach_error(self) -> None:
        from nvimhost.rpc import AttachError, attach

        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(AttachError):
                await attach(os.path.join(td, "missing.sock"))

    async def test_handle_goes_to_receiver(self) -> None:
        from nvimhost import rpc

        handle = _FakeHandle()
        received = []

        async def _attach(listen_on, *, timeout_s):
            return handle

        with mock.patch.object(rpc, "attach", _attach):
            ok = await rpc.wait_ready("127.0.0.1:2006", 1000, on_attached=received.append)
        self.assertTrue(ok)
        self.assertEqual(received, [handle])
        self.assertFalse(handle.closed)

    async def test_handle_closed_without_receiver(self) -> None:
        from nvimhost import rpc

        handle = _FakeHandle()

        async def _attach(listen_on, *, timeout_s):
            return handle

        with mock.patch.object(rpc, "attach", _attach):
            self.assertTrue(await rpc.wait_ready("127.0.0.1:2006", 1000))
        self.assertTrue(handle.closed)

    async def test_retries_until_ready(self) -> None:
        from nvimhost import rpc

        calls = []
        handle = _FakeHandle()

        async def _attach(listen_on, *, timeout_s):
            calls.append(timeout_s)
            if len(calls) < 3:
                raise rpc.AttachError(listen_on, "refused")
            return handle

        with mock.patch.object(rpc, "attach", _attach):
            ok = await rpc.wait_ready("127.0.0.1:2006", 2000, interval_ms=10)
        self.assertTrue(ok)
        self.assertEqual(len(calls), 3)

    async def test_cancelled_token_stops_poll(self) -> None:
        from nvimhost import rpc

        token = rpc.CancelToken()

        async def _attach(listen_on, *, timeout_s):
            raise rpc.AttachError(listen_on, "refused")

        asyncio.get_running_loop().call_later(0.05, token.cancel)
        started = time.monotonic()
        with mock.patch.object(rpc, "attach", _attach):
            ok = await rpc.wait_ready("127.0.0.1:2006", 10000, interval_ms=20, token=token)
        self.assertFalse(ok)
        self.assertLess(time.monotonic() - started, 2)


def _rpc_threads():
    import threading

    return [t for t in threading.enumerate() if t.name.startswith("nvimhost-rpc")]


class _FakeSession:
    def __init__(self) -> None:
        self.closed = False
        self.scheduled = []

    def threadsafe_call(self, fn) -> None:
        self.scheduled.append(fn)

    def stop(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class TestAbandonedAttempts(unittest.IsolatedAsyncioTestCase):
    async def test_silent_listener_leaves_no_workers_or_connections(self) -> None:
        from nvimhost.rpc import wait_ready

        srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        srv.bind(("127.0.0.1", 0))
        srv.listen(16)
        port = srv.getsockname()[1]
        try:
            ok = await wait_ready(f"127.0.0.1:{port}", 1500, interval_ms=100)
            self.assertFalse(ok)
            deadline = time.monotonic() + 3.0
            while _rpc_threads() and time.monotonic() < deadline:
                await asyncio.sleep(0.05)
            self.assertEqual(_rpc_threads(), [])
        finally:
            srv.close()

    def test_abandon_interrupts_registered_session(self) -> None:
        from nvimhost.rpc import _PendingAttach

        session = _FakeSession()
        pending = _PendingAttach()
        self.assertTrue(pending.opened(session))
        pending.abandon()
        self.assertEqual(session.scheduled, [session.stop])
        self.assertFalse(pending.opened(_FakeSession()))

    def test_session_opened_after_abandon_is_closed(self) -> None:
        from nvimhost import rpc
        from nvimhost.kernel.address import parse_listen_address

        session = _FakeSession()
        pending = rpc._PendingAttach()
        pending.abandon()
        with mock.patch.object(rpc, "_open_session", return_value=session):
            with self.assertRaises(TimeoutError):
                rpc._attach_blocking(parse_listen_address("127.0.0.1:2006"), pending)
        self.assertTrue(session.closed)

    def test_late_result_is_closed(self) -> None:
        from concurrent.futures import Future

        from nvimhost.rpc import _discard_late_result

        late = _FakeSession()
        fut = Future()
        fut.set_result(late)
        _discard_late_result(fut)
        self.assertTrue(late.closed)

    async def test_call_timeout_closes_handle(self) -> None:
        import threading
        from concurrent.futures import ThreadPoolExecutor

        from nvimhost.kernel.address import parse_listen_address
        from nvimhost.rpc import RpcHandle

        release = threading.Event()
        session = _FakeSession()
        session.threadsafe_call = lambda fn: release.set()
        nvim = mock.Mock()
        nvim.eval.side_effect = lambda expr: release.wait(5)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="nvimhost-rpc")
        handle = RpcHandle(nvim, session, executor, parse_listen_address("127.0.0.1:2006"))
        with self.assertRaises(asyncio.TimeoutError):
            await handle._call(nvim.eval, "1", timeout_s=0.05)
        self.assertTrue(handle.closed)
        self.assertTrue(release.is_set())
        deadline = time.monotonic() + 3.0
        while _rpc_threads() and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        nvim.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
