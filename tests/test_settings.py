import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock


class TestSettings(unittest.TestCase):
    def _with_home(self):
        td = tempfile.TemporaryDirectory()
        patcher = mock.patch.dict(os.environ, {"NVIMHOST_HOME": td.name})
        patcher.start()
        self.addCleanup(td.cleanup)
        self.addCleanup(patcher.stop)
        return td.name

    def test_defaults_when_absent(self) -> None:
        self._with_home()
        from nvimhost.kernel.settings import load_settings

        s = load_settings()
        self.assertEqual(s.host_mode, "nvim")
        self.assertEqual(s.listen_on, "127.0.0.1:2006")
        self.assertTrue(s.open_on_load)
        self.assertEqual(s.supported_file_types, ["txt", "md", "css", "js", "ts", "tsx", "jsx", "json"])
        self.assertEqual(s.tmux_session_name, "obsidian")
        self.assertFalse(s.tmux_attach_on_start)
        self.assertFalse(s.tmux_keep_alive_on_quit)

    def test_update_persists(self) -> None:
        home = self._with_home()
        from nvimhost.kernel.settings import load_settings, update_settings

        update_settings(host_mode="tmux", listen_on="/tmp/nvim.sock")
        self.assertTrue(os.path.exists(os.path.join(home, "settings.yaml")))
        s = load_settings()
        self.assertEqual(s.host_mode, "tmux")
        self.assertEqual(s.listen_on, "/tmp/nvim.sock")

    def test_invalid_key_falls_back_to_default(self) -> None:
        home = self._with_home()
        from nvimhost.kernel.settings import load_settings

        with open(os.path.join(home, "settings.yaml"), "w", encoding="utf-8") as f:
            f.write("host_mode: screen\nlisten_on: /tmp/x.sock\nunknown_key: 1\n")
        s = load_settings()
        self.assertEqual(s.host_mode, "nvim")
        self.assertEqual(s.listen_on, "/tmp/x.sock")

    @unittest.skipIf(os.name == "nt", "XDG layout")
    def test_config_dir_follows_xdg_without_override(self) -> None:
        from nvimhost.kernel.settings import config_dir, settings_path

        with tempfile.TemporaryDirectory() as td:
            env = {k: v for k, v in os.environ.items() if k != "NVIMHOST_HOME"}
            env["XDG_CONFIG_HOME"] = td
            with mock.patch.dict(os.environ, env, clear=True):
                self.assertEqual(config_dir(), Path(td) / "nvimhost")
                self.assertEqual(settings_path(), Path(td) / "nvimhost" / "settings.yaml")
                self.assertTrue((Path(td) / "nvimhost").is_dir())

    def test_home_override_wins(self) -> None:
        home = self._with_home()
        from nvimhost.kernel.settings import config_dir

        with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": "/elsewhere"}):
            self.assertEqual(config_dir(), Path(home).resolve())

    def test_file_types_from_string(self) -> None:
        from nvimhost.contracts.v1 import EditorSettings

        s = EditorSettings(supported_file_types="txt .md  excalidraw")
        self.assertEqual(s.supported_file_types, ["txt", "md", "excalidraw"])

    def test_blank_tmux_session_name_falls_back(self) -> None:
        from nvimhost.contracts.v1 import EditorSettings

        self.assertEqual(EditorSettings(tmux_session_name="  ").effective_tmux_session_name, "edit-in-neovim")
        self.assertEqual(EditorSettings(tmux_session_name="work").effective_tmux_session_name, "work")


if __name__ == "__main__":
    unittest.main()
