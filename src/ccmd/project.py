from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Any

import yaml

from .errors import FileError, InvalidInputError
from .fs import FileSystem, OSFileSystem
from .lock import LOCK_FILENAME
from .models import MANIFEST_FILENAME
from .repo_spec import command_name_from_repo, extract_repo_path, split_version_suffix

logger = logging.getLogger(__name__)

PROJECT_FILENAME = MANIFEST_FILENAME


@dataclass(frozen=True)
class ProjectConfigEntry:
    repository: str
    version: str | None = None

    @property
    def command_name(self) -> str:
        return command_name_from_repo(self.repository)

    def spec(self) -> str:
        return f"{self.repository}@{self.version}" if self.version else self.repository


def normalize_repo_key(repo: str) -> str:
    """Reduce any repository form to the "owner/repo" key used by the project manifest."""
    value = (repo or "").strip()
    if not value:
        raise InvalidInputError("Repository must not be empty.")
    path = extract_repo_path(value)
    if path:
        return path
    if value.endswith(".git"):
        value = value[: -len(".git")]
    return value.strip("/")


def _parse_command_item(item: Any) -> ProjectConfigEntry | None:
    if isinstance(item, str):
        repo, version = split_version_suffix(item)
        if not repo:
            return None
        return ProjectConfigEntry(repository=normalize_repo_key(repo), version=version or None)
    if isinstance(item, dict):
        repo = item.get("repo") or item.get("repository")
        if not isinstance(repo, str) or not repo.strip():
            return None
        version = item.get("version")
        version_s = str(version).strip() if version is not None else ""
        return ProjectConfigEntry(repository=normalize_repo_key(repo), version=version_s or None)
    return None


class ConfigStore:
    """
    The declarative project manifest (`ccmd.yaml`).

    Only the `commands` list is owned here; every other top-level key is kept
    as read and written back unchanged.
    """

    def __init__(self, path: PurePath | str, *, fs: FileSystem | None = None) -> None:
        self.path = PurePath(path)
        self.fs = fs or OSFileSystem()
        self._lock = threading.RLock()
        self._document: dict[str, Any] = {}
        self._entries: list[ProjectConfigEntry] = []
        self.exists = False

    @classmethod
    def for_project(cls, project_root: PurePath | str, *, fs: FileSystem | None = None) -> "ConfigStore":
        return cls(PurePath(project_root) / PROJECT_FILENAME, fs=fs)

    def load(self) -> None:
        with self._lock:
            try:
                data = self.fs.read_file(self.path)
            except FileNotFoundError:
                self._document = {}
                self._entries = []
                self.exists = False
                return
            except OSError as e:
                raise FileError("read project manifest", self.path, str(e)) from e

            try:
                raw = yaml.safe_load(data.decode("utf-8"))
            except (yaml.YAMLError, UnicodeDecodeError) as e:
                raise FileError("parse project manifest", self.path, str(e)) from e
            if raw is None:
                raw = {}
            if not isinstance(raw, dict):
                raise FileError("parse project manifest", self.path, "expected a mapping at top level")

            entries: list[ProjectConfigEntry] = []
            seen: set[str] = set()
            commands = raw.get("commands") or []
            if not isinstance(commands, list):
                raise FileError("parse project manifest", self.path, "'commands' must be a list")
            for item in commands:
                entry = _parse_command_item(item)
                if entry is None:
                    logger.warning("ignoring malformed command entry in %s: %r", self.path, item)
                    continue
                if entry.repository in seen:
                    entries = [e for e in entries if e.repository != entry.repository]
                seen.add(entry.repository)
                entries.append(entry)

            self._document = raw
            self._entries = entries
            self.exists = True

    def save(self) -> None:
        with self._lock:
            document = dict(self._document)
            document["commands"] = [e.spec() for e in self._entries]
            data = yaml.safe_dump(document, sort_keys=False, default_flow_style=False, allow_unicode=True)
            try:
                self.fs.mkdir_all(self.path.parent)
                self.fs.write_file(self.path, data.encode("utf-8"))
            except OSError as e:
                raise FileError("write project manifest", self.path, str(e)) from e
            self._document = document
            self.exists = True

    def entries(self) -> list[ProjectConfigEntry]:
        with self._lock:
            return list(self._entries)

    def get(self, repo: str) -> ProjectConfigEntry | None:
        key = normalize_repo_key(repo)
        with self._lock:
            for entry in self._entries:
                if entry.repository == key:
                    return entry
        return None

    def add_command(self, repo: str, version: str | None = None) -> ProjectConfigEntry:
        entry = ProjectConfigEntry(repository=normalize_repo_key(repo), version=(version or "").strip() or None)
        with self._lock:
            for i, existing in enumerate(self._entries):
                if existing.repository == entry.repository:
                    self._entries[i] = entry
                    return entry
            self._entries.append(entry)
            return entry

    def remove_command(self, repo: str) -> bool:
        key = normalize_repo_key(repo)
        with self._lock:
            kept = [e for e in self._entries if e.repository != key]
            removed = len(kept) != len(self._entries)
            self._entries = kept
            return removed


def find_project_root(start: Path | str | None = None) -> Path:
    """
    Nearest ancestor of `start` holding `ccmd.yaml` or `ccmd-lock.yaml`.

    Falls back to `start` itself when no ancestor has either file.
    """
    base = Path(start or Path.cwd()).expanduser().resolve()
    for candidate in (base, *base.parents):
        if (candidate / PROJECT_FILENAME).is_file() or (candidate / LOCK_FILENAME).is_file():
            return candidate
    return base
