from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Protocol

from .errors import InvalidInputError

MANIFEST_FILENAME = "ccmd.yaml"
DEFAULT_ENTRY = "index.md"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

REQUIRED_MANIFEST_FIELDS = ("name", "version", "description", "author", "repository")


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Any) -> datetime | None:
    # YAML loaders turn unquoted ISO timestamps into datetimes.
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    try:
        return datetime.strptime(raw, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _str(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    return str(value).strip()


@dataclass
class PackageManifest:
    name: str
    version: str
    description: str
    author: str
    repository: str
    entry: str | None = None
    tags: list[str] = field(default_factory=list)
    license: str | None = None
    homepage: str | None = None

    @property
    def entry_file(self) -> str:
        return self.entry or DEFAULT_ENTRY

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "PackageManifest":
        tags = raw.get("tags")
        return cls(
            name=_str(raw, "name"),
            version=_str(raw, "version"),
            description=_str(raw, "description"),
            author=_str(raw, "author"),
            repository=_str(raw, "repository"),
            entry=_str(raw, "entry") or None,
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            license=_str(raw, "license") or None,
            homepage=_str(raw, "homepage") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "repository": self.repository,
        }
        if self.entry:
            out["entry"] = self.entry
        if self.tags:
            out["tags"] = list(self.tags)
        if self.license:
            out["license"] = self.license
        if self.homepage:
            out["homepage"] = self.homepage
        return out

    def missing_fields(self) -> list[str]:
        return [f for f in REQUIRED_MANIFEST_FIELDS if not getattr(self, f)]


@dataclass
class LockEntry:
    name: str
    version: str
    source: str
    resolved: str = ""
    commit: str | None = None
    installed_at: datetime | None = None
    updated_at: datetime | None = None
    dependencies: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    def copy(self) -> "LockEntry":
        return copy.deepcopy(self)

    def validate(self) -> None:
        if not self.name:
            raise InvalidInputError("Lock entry name is required.")
        if not self.version:
            raise InvalidInputError(f"Lock entry {self.name!r}: version is required.")
        if not self.source:
            raise InvalidInputError(f"Lock entry {self.name!r}: source is required.")
        if self.installed_at is None:
            raise InvalidInputError(f"Lock entry {self.name!r}: installed_at is required.")
        if self.updated_at is None:
            raise InvalidInputError(f"Lock entry {self.name!r}: updated_at is required.")
        if self.updated_at < self.installed_at:
            raise InvalidInputError(f"Lock entry {self.name!r}: updated_at is earlier than installed_at.")

    @classmethod
    def from_dict(cls, name: str, raw: dict[str, Any]) -> "LockEntry":
        deps = raw.get("dependencies")
        meta = raw.get("metadata")
        return cls(
            name=_str(raw, "name") or name,
            version=_str(raw, "version"),
            source=_str(raw, "source"),
            resolved=_str(raw, "resolved"),
            commit=_str(raw, "commit") or None,
            installed_at=parse_timestamp(raw.get("installed_at")),
            updated_at=parse_timestamp(raw.get("updated_at")),
            dependencies=[str(d) for d in deps] if isinstance(deps, list) else [],
            metadata={str(k): str(v) for k, v in meta.items()} if isinstance(meta, dict) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "source": self.source,
            "resolved": self.resolved,
            "commit": self.commit or "",
            "installed_at": format_timestamp(self.installed_at) if self.installed_at else "",
            "updated_at": format_timestamp(self.updated_at) if self.updated_at else "",
            "dependencies": list(self.dependencies),
            "metadata": {k: self.metadata[k] for k in sorted(self.metadata)},
        }


@dataclass(frozen=True)
class FetchResult:
    commit: str | None = None
    ref: str | None = None


class Fetcher(Protocol):
    """Puts the tree of `url` at `ref` (default branch when None) into the new directory `target`."""

    def fetch(self, url: str, target: PurePath, ref: str | None = None) -> FetchResult:
        ...

    def list_tags(self, url: str) -> list[str]:
        ...
