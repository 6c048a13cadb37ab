from __future__ import annotations

import json
import logging
import threading
from pathlib import PurePath
from typing import Any, Callable

import yaml

from .errors import (
    CcmdError,
    FileError,
    InvalidInputError,
    LockFileError,
    LockNotLoadedError,
    NotFoundError,
)
from .fs import FileSystem, OSFileSystem
from .models import LockEntry, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

LOCK_FILENAME = "ccmd-lock.yaml"
LOCK_FORMAT_VERSION = "1.0"
LEGACY_LOCK_PATH = PurePath(".claude") / "commands.lock"

SORT_KEYS = ("name", "installed", "updated")


class LockStore:
    """
    Persistent record of installed commands, keyed by command name.

    Every public method holds the store's lock for its whole duration, and
    every read hands out copies so callers never alias the stored entries.
    """

    def __init__(self, path: PurePath | str, *, fs: FileSystem | None = None) -> None:
        self.path = PurePath(path)
        self.fs = fs or OSFileSystem()
        self._lock = threading.RLock()
        self._commands: dict[str, LockEntry] | None = None
        self.format_version = LOCK_FORMAT_VERSION

    @classmethod
    def for_project(cls, project_root: PurePath | str, *, fs: FileSystem | None = None) -> "LockStore":
        return cls(PurePath(project_root) / LOCK_FILENAME, fs=fs)

    @property
    def backup_path(self) -> PurePath:
        return self.path.with_name(self.path.name + ".bak")

    @property
    def temp_path(self) -> PurePath:
        return self.path.with_name(self.path.name + ".tmp")

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._commands is not None

    def load(self) -> None:
        with self._lock:
            try:
                data = self.fs.read_file(self.path)
            except FileNotFoundError:
                logger.debug("lock file %s does not exist, starting empty", self.path)
                self._commands = {}
                self.format_version = LOCK_FORMAT_VERSION
                return
            except OSError as e:
                raise LockFileError("read lock file", self.path, str(e)) from e

            try:
                raw = yaml.safe_load(data.decode("utf-8"))
            except (yaml.YAMLError, UnicodeDecodeError) as e:
                raise LockFileError("parse lock file", self.path, str(e)) from e

            if raw is None:
                raw = {}
            if not isinstance(raw, dict):
                raise LockFileError("parse lock file", self.path, "expected a mapping at top level")

            commands_raw = raw.get("commands") or {}
            if not isinstance(commands_raw, dict):
                raise LockFileError("parse lock file", self.path, "'commands' must be a mapping")

            commands: dict[str, LockEntry] = {}
            for key, item in commands_raw.items():
                if not isinstance(item, dict):
                    raise LockFileError("parse lock file", self.path, f"entry {key!r} must be a mapping")
                entry = LockEntry.from_dict(str(key), item)
                try:
                    entry.validate()
                except InvalidInputError as e:
                    raise LockFileError("parse lock file", self.path, str(e)) from e
                commands[str(key)] = entry

            self.format_version = str(raw.get("version") or LOCK_FORMAT_VERSION)
            self._commands = commands
            logger.debug("loaded %d lock entries from %s", len(commands), self.path)

    def _require_loaded(self) -> dict[str, LockEntry]:
        if self._commands is None:
            raise LockNotLoadedError()
        return self._commands

    def to_document(self) -> dict[str, Any]:
        with self._lock:
            commands = self._require_loaded()
            return {
                "version": self.format_version,
                "commands": {name: commands[name].to_dict() for name in sorted(commands)},
            }

    def save(self) -> None:
        with self._lock:
            document = self.to_document()
            data = yaml.safe_dump(document, sort_keys=False, default_flow_style=False).encode("utf-8")

            self.fs.mkdir_all(self.path.parent)
            self._backup()

            tmp = self.temp_path
            try:
                self.fs.write_file(tmp, data)
            except OSError as e:
                raise FileError("write temporary lock file", tmp, str(e)) from e
            try:
                self.fs.rename(tmp, self.path)
            except OSError as e:
                try:
                    self.fs.remove(tmp)
                except OSError:
                    logger.warning("could not remove temporary lock file %s", tmp)
                raise FileError("replace lock file", self.path, str(e)) from e
            logger.debug("saved %d lock entries to %s", len(self._commands or {}), self.path)

    def _backup(self) -> None:
        try:
            current = self.fs.read_file(self.path)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("could not read %s for backup: %s", self.path, e)
            return
        try:
            self.fs.write_file(self.backup_path, current)
        except OSError as e:
            logger.warning("could not write lock backup %s: %s", self.backup_path, e)

    def add_command(self, entry: LockEntry) -> None:
        if not entry.name:
            raise InvalidInputError("Command name is required.")
        with self._lock:
            commands = self._require_loaded()
            stored = entry.copy()
            now = utc_now()
            stored.installed_at = now
            stored.updated_at = now
            stored.validate()
            commands[stored.name] = stored

    def import_command(self, entry: LockEntry) -> None:
        """Store `entry` with the timestamps it already carries."""
        with self._lock:
            commands = self._require_loaded()
            stored = entry.copy()
            stored.validate()
            commands[stored.name] = stored

    def update_command(self, name: str, mutator: Callable[[LockEntry], None]) -> LockEntry:
        with self._lock:
            commands = self._require_loaded()
            if name not in commands:
                raise NotFoundError(f"Command {name!r} not found in lock file.")
            candidate = commands[name].copy()
            mutator(candidate)
            return self._commit(name, candidate)

    def replace_command(self, name: str, entry: LockEntry) -> LockEntry:
        with self._lock:
            commands = self._require_loaded()
            if name not in commands:
                raise NotFoundError(f"Command {name!r} not found in lock file.")
            return self._commit(name, entry.copy())

    def _commit(self, name: str, candidate: LockEntry) -> LockEntry:
        commands = self._require_loaded()
        existing = commands[name]
        candidate.name = name
        candidate.installed_at = existing.installed_at
        candidate.updated_at = utc_now()
        if existing.installed_at and candidate.updated_at < existing.installed_at:
            candidate.updated_at = existing.installed_at
        candidate.validate()
        commands[name] = candidate
        return candidate.copy()

    def remove_command(self, name: str) -> None:
        with self._lock:
            commands = self._require_loaded()
            if name not in commands:
                raise NotFoundError(f"Command {name!r} not found in lock file.")
            del commands[name]

    def get_command(self, name: str) -> LockEntry:
        with self._lock:
            commands = self._require_loaded()
            try:
                return commands[name].copy()
            except KeyError:
                raise NotFoundError(f"Command {name!r} not found in lock file.") from None

    def has_command(self, name: str) -> bool:
        with self._lock:
            return name in self._require_loaded()

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._require_loaded())

    def list_commands(self, *, sort: str = "name") -> list[LockEntry]:
        if sort not in SORT_KEYS:
            raise InvalidInputError(f"Unknown sort key {sort!r} (expected one of: {', '.join(SORT_KEYS)}).")
        with self._lock:
            entries = [e.copy() for e in self._require_loaded().values()]
        if sort == "installed":
            entries.sort(key=lambda e: (e.installed_at, e.name))
        elif sort == "updated":
            entries.sort(key=lambda e: (e.updated_at, e.name))
        else:
            entries.sort(key=lambda e: e.name)
        return entries


def _legacy_str(raw: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def migrate_legacy_lock(project_root: PurePath | str, store: LockStore, *, remove_legacy: bool = True) -> list[str]:
    """
    Import `.claude/commands.lock` (JSON) into an empty lock store and save it.

    Returns the migrated command names; an absent legacy file migrates nothing.
    """
    legacy_path = PurePath(project_root) / LEGACY_LOCK_PATH
    fs = store.fs
    try:
        data = fs.read_file(legacy_path)
    except FileNotFoundError:
        return []
    except OSError as e:
        raise LockFileError("read legacy lock file", legacy_path, str(e)) from e

    try:
        raw = json.loads(data.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise LockFileError("parse legacy lock file", legacy_path, str(e)) from e
    commands = raw.get("commands") if isinstance(raw, dict) else None
    if not isinstance(commands, dict):
        raise LockFileError("parse legacy lock file", legacy_path, "'commands' must be an object")

    if not store.loaded:
        store.load()
    if store.names():
        raise CcmdError(f"Refusing to migrate {legacy_path}: {store.path} already has entries.")

    migrated: list[str] = []
    now = utc_now()
    for name in sorted(commands):
        item = commands[name]
        if not isinstance(item, dict):
            logger.warning("skipping malformed legacy lock entry %r", name)
            continue
        version = _legacy_str(item, "version")
        source = _legacy_str(item, "source", "repository")
        if not version or not source:
            logger.warning("skipping legacy lock entry %r without version or source", name)
            continue
        installed = parse_timestamp(item.get("installed_at") or item.get("installedAt")) or now
        updated = parse_timestamp(item.get("updated_at") or item.get("lastUpdated")) or installed
        entry = LockEntry(
            name=name,
            version=version,
            source=source,
            resolved=f"{source}@{version}",
            commit=_legacy_str(item, "commit") or None,
        )
        entry.installed_at = installed
        entry.updated_at = max(updated, installed)
        store.import_command(entry)
        migrated.append(name)

    store.save()
    logger.info("migrated %d command(s) from %s", len(migrated), legacy_path)
    if remove_legacy:
        try:
            fs.remove(legacy_path)
        except OSError as e:
            logger.warning("could not remove legacy lock file %s: %s", legacy_path, e)
    return migrated
