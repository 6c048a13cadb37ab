import tempfile
import unittest
from pathlib import Path, PurePath
from unittest.mock import patch

from ccmd.errors import ValidationError
from ccmd.fs import MemoryFileSystem, OSFileSystem
from ccmd.validation import check_dual_structure, is_semver, validate_package

VALID_MANIFEST = """\
name: tool
version: 1.2.0
description: Does things
author: Acme
repository: https://github.com/acme/tool
"""


def _write(fs: MemoryFileSystem, path: str, content: str) -> None:
    p = PurePath(path)
    fs.mkdir_all(p.parent)
    fs.write_file(p, content.encode("utf-8"))


class TestValidatePackage(unittest.TestCase):
    def setUp(self) -> None:
        self.fs = MemoryFileSystem()

    def _kind(self, path: str) -> str:
        with self.assertRaises(ValidationError) as ctx:
            validate_package(path, fs=self.fs)
        return ctx.exception.kind

    def test_valid_package(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST)
        _write(self.fs, "/cmds/tool/index.md", "# Tool\n")
        manifest = validate_package("/cmds/tool", fs=self.fs)
        self.assertEqual(manifest.name, "tool")
        self.assertEqual(manifest.version, "1.2.0")
        self.assertEqual(manifest.entry_file, "index.md")

    def test_missing_directory(self) -> None:
        self.assertEqual(self._kind("/cmds/nope"), "directory_not_found")

    def test_not_a_directory(self) -> None:
        _write(self.fs, "/cmds/tool", "x")
        self.assertEqual(self._kind("/cmds/tool"), "not_a_directory")

    def test_missing_manifest(self) -> None:
        _write(self.fs, "/cmds/tool/index.md", "# Tool\n")
        self.assertEqual(self._kind("/cmds/tool"), "manifest_not_found")

    def test_unreadable_manifest_is_retryable(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST)
        with patch.object(self.fs, "read_file", side_effect=PermissionError("denied")):
            with self.assertRaises(ValidationError) as ctx:
                validate_package("/cmds/tool", fs=self.fs)
        self.assertEqual(ctx.exception.kind, "manifest_unreadable")
        self.assertTrue(ctx.exception.retryable)

    def test_invalid_yaml(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", "name: [unclosed\n")
        self.assertEqual(self._kind("/cmds/tool"), "manifest_invalid_yaml")

    def test_manifest_not_a_mapping(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", "- a\n- b\n")
        self.assertEqual(self._kind("/cmds/tool"), "manifest_invalid")

    def test_missing_required_field(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST.replace("author: Acme\n", ""))
        _write(self.fs, "/cmds/tool/index.md", "# Tool\n")
        with self.assertRaises(ValidationError) as ctx:
            validate_package("/cmds/tool", fs=self.fs)
        self.assertEqual(ctx.exception.kind, "manifest_invalid")
        self.assertIn("author", ctx.exception.detail)
        self.assertFalse(ctx.exception.retryable)

    def test_missing_entry(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST)
        self.assertEqual(self._kind("/cmds/tool"), "entry_not_found")

    def test_entry_is_directory(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST)
        self.fs.mkdir_all(PurePath("/cmds/tool/index.md"))
        self.assertEqual(self._kind("/cmds/tool"), "entry_not_a_file")

    def test_empty_entry(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST)
        _write(self.fs, "/cmds/tool/index.md", "  \n")
        self.assertEqual(self._kind("/cmds/tool"), "entry_empty")

    def test_custom_entry(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST + "entry: main.md\n")
        _write(self.fs, "/cmds/tool/main.md", "# Main\n")
        self.assertEqual(validate_package("/cmds/tool", fs=self.fs).entry_file, "main.md")

    def test_entry_outside_package_is_rejected(self) -> None:
        _write(self.fs, "/cmds/secret.md", "# secret\n")
        _write(self.fs, "/cmds/tool/index.md", "# Tool\n")
        for entry in ("../secret.md", "sub/../../secret.md", "/cmds/secret.md"):
            _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST + f"entry: {entry}\n")
            with self.assertRaises(ValidationError) as ctx:
                validate_package("/cmds/tool", fs=self.fs)
            self.assertEqual(ctx.exception.kind, "manifest_invalid", entry)
            self.assertIn("outside the package", ctx.exception.detail)

    def test_name_mismatch(self) -> None:
        _write(self.fs, "/cmds/other/ccmd.yaml", VALID_MANIFEST)
        _write(self.fs, "/cmds/other/index.md", "# Tool\n")
        self.assertEqual(self._kind("/cmds/other"), "name_mismatch")

    def test_versioned_directory(self) -> None:
        _write(self.fs, "/cmds/tool@1.2.0/ccmd.yaml", VALID_MANIFEST)
        _write(self.fs, "/cmds/tool@1.2.0/index.md", "# Tool\n")
        self.assertEqual(validate_package("/cmds/tool@1.2.0", fs=self.fs).name, "tool")

        _write(self.fs, "/cmds/tool@2.0.0/ccmd.yaml", VALID_MANIFEST)
        _write(self.fs, "/cmds/tool@2.0.0/index.md", "# Tool\n")
        self.assertEqual(self._kind("/cmds/tool@2.0.0"), "version_mismatch")

    def test_invalid_version(self) -> None:
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST.replace("version: 1.2.0", "version: v1.2.0"))
        _write(self.fs, "/cmds/tool/index.md", "# Tool\n")
        self.assertEqual(self._kind("/cmds/tool"), "invalid_version")

    def test_on_disk(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            pkg = Path(td) / "tool"
            pkg.mkdir()
            (pkg / "ccmd.yaml").write_text(VALID_MANIFEST, encoding="utf-8")
            (pkg / "index.md").write_text("# Tool\n", encoding="utf-8")
            self.assertEqual(validate_package(pkg, fs=OSFileSystem()).name, "tool")


class TestSemver(unittest.TestCase):
    def test_accepts(self) -> None:
        for v in ("0.0.1", "1.2.3", "1.0.0-alpha.1", "1.0.0+build.5", "10.20.30-rc.1+meta"):
            self.assertTrue(is_semver(v), v)

    def test_rejects(self) -> None:
        for v in ("v1.2.3", "1.2", "01.2.3", "1.2.3-", "latest", ""):
            self.assertFalse(is_semver(v), v)


class TestDualStructure(unittest.TestCase):
    def setUp(self) -> None:
        self.fs = MemoryFileSystem()
        _write(self.fs, "/cmds/tool/ccmd.yaml", VALID_MANIFEST)
        _write(self.fs, "/cmds/tool/index.md", "# Tool\n")
        _write(self.fs, "/cmds/tool.md", "# Tool\n")

    def test_intact(self) -> None:
        self.assertEqual(check_dual_structure("/cmds", "tool", fs=self.fs), [])

    def test_missing_companion(self) -> None:
        self.fs.remove(PurePath("/cmds/tool.md"))
        issues = check_dual_structure("/cmds", "tool", fs=self.fs)
        self.assertEqual(len(issues), 1)
        self.assertIn("standalone", issues[0])

    def test_missing_directory(self) -> None:
        self.fs.remove_all(PurePath("/cmds/tool"))
        issues = check_dual_structure("/cmds", "tool", fs=self.fs)
        self.assertEqual(len(issues), 1)
        self.assertIn("missing command directory", issues[0])

    def test_both_missing(self) -> None:
        self.assertEqual(len(check_dual_structure("/cmds", "ghost", fs=self.fs)), 2)

    def test_invalid_directory(self) -> None:
        self.fs.write_file(PurePath("/cmds/tool/index.md"), b"")
        issues = check_dual_structure("/cmds", "tool", fs=self.fs)
        self.assertEqual(len(issues), 1)
        self.assertIn("entry_empty", issues[0])


if __name__ == "__main__":
    unittest.main()
