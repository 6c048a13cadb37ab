import unittest

from ccmd.errors import InvalidInputError, NotFoundError
from ccmd.versions import (
    compare_versions,
    is_commit_hash,
    is_version_constraint,
    resolve_ref,
    version_satisfies,
)


class TestVersions(unittest.TestCase):
    def test_compare(self) -> None:
        self.assertEqual(compare_versions("1.2.0", "1.10.0"), -1)
        self.assertEqual(compare_versions("v1.2.0", "1.2.0"), 0)
        self.assertEqual(compare_versions("1.0.0-alpha", "1.0.0"), -1)
        self.assertEqual(compare_versions("1.0.0-alpha.2", "1.0.0-alpha.10"), -1)
        self.assertEqual(compare_versions("2.0.0", "1.9.9"), 1)

    def test_caret_and_tilde(self) -> None:
        self.assertTrue(version_satisfies("1.4.0", "^1.2.0"))
        self.assertFalse(version_satisfies("2.0.0", "^1.2.0"))
        self.assertTrue(version_satisfies("0.2.5", "^0.2.0"))
        self.assertFalse(version_satisfies("0.3.0", "^0.2.0"))
        self.assertTrue(version_satisfies("1.2.9", "~1.2.0"))
        self.assertFalse(version_satisfies("1.3.0", "~1.2.0"))

    def test_ranges(self) -> None:
        self.assertTrue(version_satisfies("1.5.0", ">=1.0.0 <2.0.0"))
        self.assertTrue(version_satisfies("1.5.0", ">=1.0.0, <2.0.0"))
        self.assertFalse(version_satisfies("2.0.0", ">=1.0.0 <2.0.0"))
        self.assertTrue(version_satisfies("3.0.0", "latest"))

    def test_invalid_constraint(self) -> None:
        with self.assertRaises(InvalidInputError):
            version_satisfies("1.0.0", "^abc")

    def test_constraint_detection(self) -> None:
        for ref in ("latest", "^1.0.0", "~1.2", ">=1.0.0 <2.0.0", "*"):
            self.assertTrue(is_version_constraint(ref), ref)
        for ref in ("v1.2.0", "1.2.0", "main", "", None):
            self.assertFalse(is_version_constraint(ref), ref)

    def test_commit_detection(self) -> None:
        self.assertTrue(is_commit_hash("0123abcd"))
        self.assertTrue(is_commit_hash("0123456789abcdef0123456789abcdef01234567"))
        self.assertFalse(is_commit_hash("main"))
        self.assertFalse(is_commit_hash("1234567"))
        self.assertFalse(is_commit_hash("v1.0.0"))
        self.assertFalse(is_commit_hash(None))


class TestResolveRef(unittest.TestCase):
    TAGS = ["v1.0.0", "v1.5.2", "v1.4.9", "v2.0.0", "nightly", "v2.1.0-beta.1"]

    def test_highest_matching_tag(self) -> None:
        self.assertEqual(resolve_ref("^1.0.0", self.TAGS), "v1.5.2")
        self.assertEqual(resolve_ref("~1.4.0", self.TAGS), "v1.4.9")

    def test_latest_skips_prereleases(self) -> None:
        self.assertEqual(resolve_ref("latest", self.TAGS), "v2.0.0")
        self.assertEqual(resolve_ref(None, self.TAGS), "v2.0.0")

    def test_prerelease_when_asked(self) -> None:
        self.assertEqual(resolve_ref(">=2.1.0-beta.0", self.TAGS), "v2.1.0-beta.1")

    def test_no_match(self) -> None:
        with self.assertRaises(NotFoundError):
            resolve_ref("^3.0.0", self.TAGS)
        with self.assertRaises(NotFoundError):
            resolve_ref("latest", [])


if __name__ == "__main__":
    unittest.main()
