from __future__ import annotations

import logging
import re
from pathlib import PurePath

import yaml

from .errors import ValidationError
from .fs import FileSystem, OSFileSystem
from .models import MANIFEST_FILENAME, PackageManifest

logger = logging.getLogger(__name__)

# SemVer 2.0.0, https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def is_semver(value: str) -> bool:
    return bool(SEMVER_RE.match(value or ""))


def split_dir_name(dirname: str) -> tuple[str, str | None]:
    """"tool@1.2.0" -> ("tool", "1.2.0"); "tool" -> ("tool", None)."""
    if "@" in dirname:
        name, version = dirname.split("@", 1)
        return name, version
    return dirname, None


def read_manifest(path: PurePath, *, fs: FileSystem) -> PackageManifest:
    """Read and check `<path>/ccmd.yaml` without looking at the rest of the package."""
    manifest_path = PurePath(path) / MANIFEST_FILENAME
    try:
        raw_bytes = fs.read_file(manifest_path)
    except FileNotFoundError:
        raise ValidationError("manifest_not_found", str(manifest_path)) from None
    except IsADirectoryError:
        raise ValidationError("manifest_not_found", f"{manifest_path} is a directory") from None
    except OSError as e:
        raise ValidationError("manifest_unreadable", f"{manifest_path}: {e}") from e

    try:
        raw = yaml.safe_load(raw_bytes.decode("utf-8"))
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ValidationError("manifest_invalid_yaml", f"{manifest_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ValidationError("manifest_invalid", f"{manifest_path}: expected a mapping at top level")

    manifest = PackageManifest.from_dict(raw)
    missing = manifest.missing_fields()
    if missing:
        raise ValidationError("manifest_invalid", f"{manifest_path}: missing required field(s): {', '.join(missing)}")
    return manifest


def _entry_inside_package(entry: str) -> bool:
    rel = PurePath(entry)
    if rel.is_absolute() or rel.anchor:
        return False
    return ".." not in rel.parts


def _check_entry(path: PurePath, manifest: PackageManifest, *, fs: FileSystem) -> None:
    if not _entry_inside_package(manifest.entry_file):
        raise ValidationError("manifest_invalid", f"entry {manifest.entry_file!r} is outside the package directory")
    entry_path = PurePath(path) / manifest.entry_file
    try:
        info = fs.stat(entry_path)
    except FileNotFoundError:
        raise ValidationError("entry_not_found", str(entry_path)) from None
    except OSError as e:
        raise ValidationError("entry_unreadable", f"{entry_path}: {e}") from e
    if info.is_dir:
        raise ValidationError("entry_not_a_file", str(entry_path))

    try:
        content = fs.read_file(entry_path)
    except OSError as e:
        raise ValidationError("entry_unreadable", f"{entry_path}: {e}") from e
    if not content.strip():
        raise ValidationError("entry_empty", str(entry_path))


def validate_package(path: PurePath | str, *, fs: FileSystem | None = None) -> PackageManifest:
    """
    Validate a command package directory and return its manifest.

    Checks run in a fixed order and the first failure is raised as a
    ValidationError whose `kind` names the failed check.
    """
    fs = fs or OSFileSystem()
    pkg = PurePath(path)

    try:
        info = fs.stat(pkg)
    except FileNotFoundError:
        raise ValidationError("directory_not_found", str(pkg)) from None
    except OSError as e:
        raise ValidationError("directory_not_found", f"{pkg}: {e}") from e
    if not info.is_dir:
        raise ValidationError("not_a_directory", str(pkg))

    manifest = read_manifest(pkg, fs=fs)
    _check_entry(pkg, manifest, fs=fs)

    dir_name, dir_version = split_dir_name(pkg.name)
    if manifest.name != dir_name:
        raise ValidationError("name_mismatch", f"manifest name {manifest.name!r} does not match directory {dir_name!r}")
    if dir_version is not None and dir_version != manifest.version:
        raise ValidationError(
            "version_mismatch",
            f"manifest version {manifest.version!r} does not match directory version {dir_version!r}",
        )
    if not is_semver(manifest.version):
        raise ValidationError("invalid_version", f"{manifest.version!r} is not a semantic version")

    logger.debug("validated package %s (%s %s)", pkg, manifest.name, manifest.version)
    return manifest


def check_dual_structure(install_dir: PurePath | str, name: str, *, fs: FileSystem | None = None) -> list[str]:
    """Return the problems with the installed `name`; an empty list means it is intact."""
    fs = fs or OSFileSystem()
    base = PurePath(install_dir)
    pkg_dir = base / name
    companion = base / f"{name}.md"

    issues: list[str] = []
    if not fs.exists(pkg_dir):
        issues.append(f"missing command directory: {pkg_dir}")
    else:
        try:
            validate_package(pkg_dir, fs=fs)
        except ValidationError as e:
            issues.append(f"invalid command directory {pkg_dir}: {e}")

    if not fs.exists(companion):
        issues.append(f"missing standalone file: {companion}")
    else:
        try:
            if fs.stat(companion).is_dir:
                issues.append(f"standalone file is a directory: {companion}")
        except OSError as e:
            issues.append(f"cannot stat standalone file {companion}: {e}")
    return issues
