import unittest

from ccmd.errors import InvalidInputError
from ccmd.repo_spec import (
    command_name_from_repo,
    extract_repo_path,
    normalize_repository_url,
    parse_repository_spec,
    split_version_suffix,
)


class TestNormalizeRepositoryUrl(unittest.TestCase):
    def test_owner_repo_gets_default_host(self) -> None:
        self.assertEqual(normalize_repository_url("acme/tool"), "https://github.com/acme/tool.git")

    def test_default_host_is_configurable(self) -> None:
        self.assertEqual(
            normalize_repository_url("acme/tool", default_host="gitlab.example.com"),
            "https://gitlab.example.com/acme/tool.git",
        )

    def test_host_owner_repo_gets_https(self) -> None:
        self.assertEqual(normalize_repository_url("gitlab.com/acme/tool"), "https://gitlab.com/acme/tool.git")

    def test_scheme_qualified_only_gets_git_suffix(self) -> None:
        self.assertEqual(normalize_repository_url("https://github.com/acme/tool"), "https://github.com/acme/tool.git")
        self.assertEqual(normalize_repository_url("https://github.com/acme/tool/"), "https://github.com/acme/tool.git")
        self.assertEqual(normalize_repository_url("ssh://git@host/acme/tool"), "ssh://git@host/acme/tool.git")
        self.assertEqual(normalize_repository_url("git@github.com:acme/tool"), "git@github.com:acme/tool.git")

    def test_normalize_is_idempotent(self) -> None:
        for raw in (
            "acme/tool",
            "gitlab.com/acme/tool",
            "https://github.com/acme/tool.git",
            "git@github.com:acme/tool",
            "git://example.org/acme/tool/",
        ):
            once = normalize_repository_url(raw)
            self.assertEqual(normalize_repository_url(once), once, raw)

    def test_empty_is_rejected(self) -> None:
        with self.assertRaises(InvalidInputError):
            normalize_repository_url("   ")


class TestSplitVersionSuffix(unittest.TestCase):
    def test_plain_version(self) -> None:
        self.assertEqual(split_version_suffix("acme/tool@v1.0.0"), ("acme/tool", "v1.0.0"))

    def test_no_version(self) -> None:
        self.assertEqual(split_version_suffix("acme/tool"), ("acme/tool", None))

    def test_ssh_user_is_not_a_version(self) -> None:
        self.assertEqual(split_version_suffix("git@github.com:acme/tool"), ("git@github.com:acme/tool", None))

    def test_ssh_with_version(self) -> None:
        self.assertEqual(
            split_version_suffix("git@github.com:acme/tool.git@v1"),
            ("git@github.com:acme/tool.git", "v1"),
        )

    def test_url_userinfo_is_not_a_version(self) -> None:
        self.assertEqual(
            split_version_suffix("https://user@github.com/acme/tool"),
            ("https://user@github.com/acme/tool", None),
        )

    def test_git_suffix_then_ref(self) -> None:
        self.assertEqual(
            split_version_suffix("https://github.com/acme/tool.git@main"),
            ("https://github.com/acme/tool.git", "main"),
        )


class TestParseRepositorySpec(unittest.TestCase):
    def test_host_path_with_version(self) -> None:
        spec = parse_repository_spec("github.com/acme/tool@v1.2.0")
        self.assertEqual(spec.normalized_url, "https://github.com/acme/tool.git")
        self.assertEqual(spec.version, "v1.2.0")
        self.assertEqual(spec.raw_input, "github.com/acme/tool@v1.2.0")
        self.assertEqual(spec.repo_path, "acme/tool")
        self.assertEqual(spec.command_name, "tool")

    def test_explicit_version_wins(self) -> None:
        spec = parse_repository_spec("owner/repo@v1.0.0", version="v2.0.0")
        self.assertEqual(spec.version, "v2.0.0")

    def test_embedded_version_used_without_override(self) -> None:
        self.assertEqual(parse_repository_spec("owner/repo@v1.0.0").version, "v1.0.0")

    def test_no_version(self) -> None:
        self.assertIsNone(parse_repository_spec("owner/repo").version)

    def test_name_override(self) -> None:
        spec = parse_repository_spec("owner/repo", name="custom")
        self.assertEqual(spec.command_name, "custom")

    def test_empty_input(self) -> None:
        with self.assertRaises(InvalidInputError):
            parse_repository_spec("")


class TestRepoPath(unittest.TestCase):
    def test_extract(self) -> None:
        self.assertEqual(extract_repo_path("https://github.com/acme/tool.git"), "acme/tool")
        self.assertEqual(extract_repo_path("git@github.com:acme/tool.git"), "acme/tool")
        self.assertEqual(extract_repo_path("gitlab.com/group/acme/tool"), "acme/tool")
        self.assertEqual(extract_repo_path("acme/tool"), "acme/tool")

    def test_extract_unparseable(self) -> None:
        self.assertEqual(extract_repo_path("not a url"), "")
        self.assertEqual(extract_repo_path(""), "")

    def test_command_name(self) -> None:
        self.assertEqual(command_name_from_repo("https://github.com/acme/tool.git"), "tool")
        self.assertEqual(command_name_from_repo("acme/tool@v1"), "tool")
        self.assertEqual(command_name_from_repo("git@github.com:acme/tool.git"), "tool")


if __name__ == "__main__":
    unittest.main()
