import tempfile
import unittest
from pathlib import Path, PurePath

import yaml

from ccmd.errors import FileError
from ccmd.fs import MemoryFileSystem
from ccmd.project import ConfigStore, ProjectConfigEntry, find_project_root

ROOT = PurePath("/proj")

PROJECT_YAML = """\
name: my-project
version: 1.0.0
description: Project commands
author: Acme
repository: https://github.com/acme/project
custom:
  keep: me
commands:
  - acme/tool@v1.0.0
  - repo: github.com/acme/other
    version: ^2.0.0
  - acme/plain
"""


class TestConfigStore(unittest.TestCase):
    def setUp(self) -> None:
        self.fs = MemoryFileSystem()
        self.fs.mkdir_all(ROOT)
        self.store = ConfigStore.for_project(ROOT, fs=self.fs)

    def _seed(self, text: str = PROJECT_YAML) -> None:
        self.fs.write_file(ROOT / "ccmd.yaml", text.encode("utf-8"))
        self.store.load()

    def test_missing_file(self) -> None:
        self.store.load()
        self.assertFalse(self.store.exists)
        self.assertEqual(self.store.entries(), [])

    def test_reads_both_forms(self) -> None:
        self._seed()
        self.assertTrue(self.store.exists)
        self.assertEqual(
            self.store.entries(),
            [
                ProjectConfigEntry("acme/tool", "v1.0.0"),
                ProjectConfigEntry("acme/other", "^2.0.0"),
                ProjectConfigEntry("acme/plain", None),
            ],
        )
        self.assertEqual(self.store.entries()[1].command_name, "other")

    def test_add_is_idempotent(self) -> None:
        self._seed()
        self.store.add_command("acme/tool", "v2.0.0")
        self.store.add_command("https://github.com/acme/tool.git", "v2.0.0")
        tools = [e for e in self.store.entries() if e.repository == "acme/tool"]
        self.assertEqual(tools, [ProjectConfigEntry("acme/tool", "v2.0.0")])
        self.assertEqual(len(self.store.entries()), 3)

    def test_add_normalizes_url(self) -> None:
        self.store.load()
        entry = self.store.add_command("https://github.com/acme/new.git")
        self.assertEqual(entry, ProjectConfigEntry("acme/new", None))

    def test_remove(self) -> None:
        self._seed()
        self.assertTrue(self.store.remove_command("acme/plain"))
        self.assertFalse(self.store.remove_command("acme/plain"))
        self.assertEqual([e.repository for e in self.store.entries()], ["acme/tool", "acme/other"])

    def test_save_preserves_other_keys(self) -> None:
        self._seed()
        self.store.add_command("acme/new", "v0.1.0")
        self.store.save()

        raw = yaml.safe_load(self.fs.read_file(ROOT / "ccmd.yaml").decode("utf-8"))
        self.assertEqual(raw["name"], "my-project")
        self.assertEqual(raw["custom"], {"keep": "me"})
        self.assertEqual(
            raw["commands"],
            ["acme/tool@v1.0.0", "acme/other@^2.0.0", "acme/plain", "acme/new@v0.1.0"],
        )

    def test_entries_are_copies(self) -> None:
        self._seed()
        self.store.entries().clear()
        self.assertEqual(len(self.store.entries()), 3)

    def test_invalid_yaml(self) -> None:
        self.fs.write_file(ROOT / "ccmd.yaml", b"commands: [unclosed\n")
        with self.assertRaises(FileError):
            self.store.load()

    def test_commands_must_be_a_list(self) -> None:
        self.fs.write_file(ROOT / "ccmd.yaml", b"commands: acme/tool\n")
        with self.assertRaises(FileError):
            self.store.load()


class TestFindProjectRoot(unittest.TestCase):
    def test_finds_nearest_ancestor(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td).resolve()
            (root / "ccmd.yaml").write_text("commands: []\n", encoding="utf-8")
            nested = root / "a" / "b"
            nested.mkdir(parents=True)
            self.assertEqual(find_project_root(nested), root)

    def test_lock_file_also_marks_root(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td).resolve()
            project = root / "app"
            (project / "src").mkdir(parents=True)
            (project / "ccmd-lock.yaml").write_text("version: '1.0'\ncommands: {}\n", encoding="utf-8")
            self.assertEqual(find_project_root(project / "src"), project)


if __name__ == "__main__":
    unittest.main()
