import unittest
from pathlib import Path


class _Vault:
    def base_path(self) -> Path:
        return Path("/vault")

    def full_path(self, logical_path: str) -> str:
        return f"/vault/{logical_path}"


def _dispatcher(*, result=None, reachable=True, types=None, editor_path="/usr/bin/nvim"):
    from nvimhost.contracts.v1 import EditorSettings
    from nvimhost.dispatch import CommandDispatcher, RemoteCommandResult
    from nvimhost.kernel.binaries import BinaryDescriptor
    from nvimhost.notify import RecordingNotifier

    calls = []

    async def _runner(editor, listen_on, path):
        calls.append((editor, listen_on, path))
        return result or RemoteCommandResult(returncode=0)

    async def _reachable(listen_on):
        return reachable

    settings = EditorSettings(listen_on="127.0.0.1:2006", supported_file_types=types or ["txt", "md"])
    notifier = RecordingNotifier()
    d = CommandDispatcher(
        settings,
        BinaryDescriptor(path=editor_path),
        _Vault(),
        notifier,
        runner=_runner,
        reachable=_reachable,
    )
    return d, calls, notifier


class TestDispatch(unittest.IsolatedAsyncioTestCase):
    async def test_supported_file_opens_remotely(self) -> None:
        from nvimhost.kernel.session import Session
        from nvimhost.vault import VaultFile

        d, calls, notifier = _dispatcher()
        await d.open_file(VaultFile("notes/a.md"), Session())
        self.assertEqual(calls, [("/usr/bin/nvim", "127.0.0.1:2006", "/vault/notes/a.md")])
        self.assertEqual(notifier.notices, [])

    async def test_unsupported_type_issues_no_command(self) -> None:
        from nvimhost.kernel.session import Session
        from nvimhost.vault import VaultFile

        d, calls, notifier = _dispatcher()
        await d.open_file(VaultFile("img/a.png"), Session())
        self.assertEqual(calls, [])
        self.assertEqual(notifier.notices, [])

    async def test_no_server_is_a_no_op(self) -> None:
        from nvimhost.kernel.session import Session
        from nvimhost.vault import VaultFile

        d, calls, notifier = _dispatcher(reachable=False)
        await d.open_file(VaultFile("a.md"), Session())
        self.assertEqual(calls, [])
        self.assertEqual(notifier.notices, [])

    async def test_no_editor_is_a_no_op(self) -> None:
        from nvimhost.kernel.session import Session
        from nvimhost.vault import VaultFile

        d, calls, _ = _dispatcher(editor_path="")
        await d.open_file(VaultFile("a.md"), Session())
        await d.open_file(None, Session())
        self.assertEqual(calls, [])

    async def test_connection_refused_notice(self) -> None:
        from nvimhost.dispatch import RemoteCommandResult
        from nvimhost.kernel.session import Session
        from nvimhost.vault import VaultFile

        d, calls, notifier = _dispatcher(
            result=RemoteCommandResult(returncode=1, stderr="connect ECONNREFUSED 127.0.0.1:2006\nmore")
        )
        await d.open_file(VaultFile("a.md"), Session())
        self.assertEqual(len(calls), 1)
        self.assertEqual(len(notifier.messages), 1)
        self.assertIn("Could not connect to Neovim server at 127.0.0.1:2006", notifier.messages[0])

    async def test_excalidraw_requires_flag(self) -> None:
        from nvimhost.kernel.session import Session
        from nvimhost.vault import VaultFile

        f = VaultFile("drawings/x.excalidraw.md")
        d, calls, _ = _dispatcher(types=["txt"])
        await d.open_file(f, Session())
        self.assertEqual(calls, [])
        d, calls, _ = _dispatcher(types=["txt", "excalidraw"])
        await d.open_file(f, Session())
        self.assertEqual(len(calls), 1)


class TestFailureMessages(unittest.TestCase):
    def test_messages(self) -> None:
        from nvimhost.dispatch import RemoteCommandResult
        from nvimhost.vault import VaultFile

        d, _, _ = _dispatcher()
        f = VaultFile("notes/today.md")
        self.assertEqual(
            d.failure_message(RemoteCommandResult(returncode=None, spawn_error="x", executable_missing=True), f),
            "Neovim executable not found at: /usr/bin/nvim",
        )
        self.assertEqual(
            d.failure_message(RemoteCommandResult(returncode=1, stderr="E: No such file or directory"), f),
            "Neovim server reported error finding file: today",
        )
        self.assertEqual(
            d.failure_message(RemoteCommandResult(returncode=2, stderr="first line\nsecond line"), f),
            "Error opening file in Neovim: first line",
        )
        self.assertEqual(
            d.failure_message(RemoteCommandResult(returncode=3), f),
            "Error opening file in Neovim: exit code 3",
        )

    def test_classify_order(self) -> None:
        from nvimhost.dispatch import RemoteFailure, classify_failure

        self.assertIs(classify_failure("Connection refused; No such file or directory"), RemoteFailure.CONNECTION_REFUSED)
        self.assertIs(classify_failure("sh: nvim: command not found"), RemoteFailure.EXECUTABLE_NOT_FOUND)
        self.assertIs(classify_failure(""), RemoteFailure.OTHER)


if __name__ == "__main__":
    unittest.main()
