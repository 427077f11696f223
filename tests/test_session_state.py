import unittest


class _Proc:
    def __init__(self, pid: int) -> None:
        self.pid = pid


class TestSessionTransitions(unittest.TestCase):
    def test_headless_launch_tracks_process(self) -> None:
        from nvimhost.kernel.session import Launched, Session, StartedVia, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        p = _Proc(101)
        s = transition(Session(), Launched(LaunchStrategy.HEADLESS, "127.0.0.1:2006", process=p))
        self.assertEqual(s.started_via, StartedVia.HEADLESS)
        self.assertIs(s.process, p)
        self.assertFalse(s.is_attached)

    def test_second_local_launch_is_rejected(self) -> None:
        from nvimhost.kernel.session import Launched, Session, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        s = transition(Session(), Launched(LaunchStrategy.TERMINAL, "/tmp/nvim.sock", process=_Proc(1)))
        with self.assertRaises(ValueError):
            transition(s, Launched(LaunchStrategy.HEADLESS, "/tmp/nvim.sock", process=_Proc(2)))

    def test_tmux_launch_never_owns_a_process(self) -> None:
        from nvimhost.kernel.session import Launched, Session, StartedVia, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        with self.assertRaises(ValueError):
            transition(Session(), Launched(LaunchStrategy.TMUX, "x", process=_Proc(3), tmux_session_name="obsidian"))
        with self.assertRaises(ValueError):
            transition(Session(), Launched(LaunchStrategy.TMUX, "x"))
        s = transition(Session(), Launched(LaunchStrategy.TMUX, "x", tmux_session_name="obsidian"))
        self.assertEqual(s.started_via, StartedVia.TMUX)
        self.assertIsNone(s.process)
        self.assertEqual(s.tmux_session_name, "obsidian")

    def test_tmux_relaunch_keeps_rpc_for_same_session(self) -> None:
        from nvimhost.kernel.session import Attached, Launched, Session, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        rpc = object()
        s = transition(Session(), Launched(LaunchStrategy.TMUX, "x", tmux_session_name="a"))
        s = transition(s, Attached(rpc))
        same = transition(s, Launched(LaunchStrategy.TMUX, "x", tmux_session_name="a"))
        self.assertIs(same.rpc, rpc)
        other = transition(s, Launched(LaunchStrategy.TMUX, "x", tmux_session_name="b"))
        self.assertIsNone(other.rpc)

    def test_attach_requires_a_launched_session(self) -> None:
        from nvimhost.kernel.session import Attached, Session, transition

        with self.assertRaises(ValueError):
            transition(Session(), Attached(object()))

    def test_stale_process_end_is_ignored(self) -> None:
        from nvimhost.kernel.session import Launched, ProcessEnded, Session, StartedVia, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        s = transition(Session(), Launched(LaunchStrategy.HEADLESS, "a:1", process=_Proc(10)))
        self.assertIs(transition(s, ProcessEnded(9, "exited")), s)
        ended = transition(s, ProcessEnded(10, "exited"))
        self.assertEqual(ended.started_via, StartedVia.UNKNOWN)
        self.assertIsNone(ended.process)
        self.assertEqual(ended.ended_reason, "exited")

    def test_terminal_launcher_end_keeps_terminal_session(self) -> None:
        from nvimhost.kernel.session import Attached, Launched, ProcessEnded, Session, StartedVia, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        s = transition(Session(), Launched(LaunchStrategy.TERMINAL, "a:1", process=_Proc(20)))
        s = transition(s, ProcessEnded(20, "exited"))
        self.assertEqual(s.started_via, StartedVia.TERMINAL)
        self.assertIsNone(s.process)
        self.assertFalse(s.is_empty)
        self.assertEqual(s.listen_address, "a:1")
        # The editor may still attach after its launcher is gone.
        rpc = object()
        self.assertIs(transition(s, Attached(rpc)).rpc, rpc)

    def test_close_then_relaunch(self) -> None:
        from nvimhost.kernel.session import Closed, Launched, Session, StartedVia, transition
        from nvimhost.kernel.strategy import LaunchStrategy

        s = transition(Session(), Launched(LaunchStrategy.HEADLESS, "a:1", process=_Proc(10)))
        s = transition(s, Closed())
        self.assertTrue(s.is_empty)
        s = transition(s, Launched(LaunchStrategy.TERMINAL, "a:1", process=_Proc(11)))
        self.assertEqual(s.started_via, StartedVia.TERMINAL)


if __name__ == "__main__":
    unittest.main()
