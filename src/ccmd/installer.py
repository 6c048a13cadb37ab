from __future__ import annotations

import logging
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import PurePath
from typing import Iterator

import yaml

from .errors import (
    AlreadyExistsError,
    CcmdError,
    FileError,
    InvalidInputError,
    ItemFailure,
    NotFoundError,
    best_effort,
    raise_for_batch,
)
from .fs import FileSystem, OSFileSystem
from .lock import LockStore
from .models import MANIFEST_FILENAME, Fetcher, FetchResult, LockEntry, PackageManifest
from .project import ConfigStore
from .repo_spec import DEFAULT_HOST, extract_repo_path, parse_repository_spec
from .validation import read_manifest, validate_package
from .versions import is_commit_hash, is_version_constraint, resolve_ref

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_DIR = PurePath(".claude") / "commands"
STAGING_DIRNAME = ".tmp"

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def check_command_name(name: str) -> str:
    value = (name or "").strip()
    if not _NAME_RE.match(value) or value.endswith(".md"):
        raise InvalidInputError(f"Invalid command name: {name!r}")
    return value


@dataclass(frozen=True)
class InstallResult:
    name: str
    version: str
    source: str
    commit: str | None
    path: PurePath
    replaced: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RemoveResult:
    name: str
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class UpdateResult:
    name: str
    updated: bool
    previous_version: str
    version: str
    previous_commit: str | None = None
    commit: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class BatchResult:
    installed: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failed: tuple[ItemFailure, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class _Staged:
    name: str
    path: PurePath
    manifest: PackageManifest
    fetched: FetchResult
    original_name: str | None
    entry_document: bytes


class Installer:
    def __init__(
        self,
        *,
        project_root: PurePath | str,
        lock: LockStore,
        config: ConfigStore,
        fetcher: Fetcher,
        fs: FileSystem | None = None,
        install_dir: PurePath | str | None = None,
        default_host: str = DEFAULT_HOST,
    ) -> None:
        self.project_root = PurePath(project_root)
        self.lock = lock
        self.config = config
        self.fetcher = fetcher
        self.fs = fs or OSFileSystem()
        install = PurePath(install_dir) if install_dir is not None else DEFAULT_INSTALL_DIR
        self.install_dir = install if install.is_absolute() else self.project_root / install
        self.default_host = default_host

    def command_dir(self, name: str) -> PurePath:
        return self.install_dir / name

    def companion_path(self, name: str) -> PurePath:
        return self.install_dir / f"{name}.md"

    def install(
        self,
        spec: str,
        *,
        version: str | None = None,
        name: str | None = None,
        force: bool = False,
        save_config: bool = True,
        save_lock: bool = True,
    ) -> InstallResult:
        repo = parse_repository_spec(spec, version=version, name=name, default_host=self.default_host)
        if repo.name:
            check_command_name(repo.name)
            if not force:
                self._ensure_free(repo.name)

        existing = self._installed_name_for(repo.normalized_url)
        if existing and not force and existing != repo.name:
            raise AlreadyExistsError(
                f"Repository {repo.normalized_url} is already installed as command {existing!r} (use --force to reinstall)."
            )

        ref = self._resolve_ref(repo.normalized_url, repo.version)
        logger.info("installing %s%s", repo.normalized_url, f"@{ref}" if ref else "")

        with self._staging() as staging:
            staged = self._fetch_and_validate(staging, repo.normalized_url, ref, name=repo.name)
            replaced = self._place(staged, staging, force=force)

        warnings: list[str] = []
        if existing and existing != staged.name:
            warnings.extend(self._drop_previous_name(existing))
            replaced = True

        lock_version = ref or staged.manifest.version
        entry = LockEntry(
            name=staged.name,
            version=lock_version,
            source=repo.normalized_url,
            resolved=f"{repo.normalized_url}@{lock_version}",
            commit=staged.fetched.commit,
            metadata=self._entry_metadata(staged, ref=ref, requested=repo.version),
        )
        self.lock.add_command(entry)
        if save_lock:
            self.lock.save()

        if save_config and self.config.exists:
            msg = best_effort(
                "update project manifest",
                self._declare,
                repo.repo_path or repo.normalized_url,
                repo.version,
                logger=logger,
            )
            if msg:
                warnings.append(msg)

        logger.info("installed %s %s into %s", staged.name, lock_version, self.command_dir(staged.name))
        return InstallResult(
            name=staged.name,
            version=lock_version,
            source=repo.normalized_url,
            commit=staged.fetched.commit,
            path=self.command_dir(staged.name),
            replaced=replaced,
            warnings=tuple(warnings),
        )

    def install_from_config(self, *, force: bool = False) -> BatchResult:
        installed: list[str] = []
        skipped: list[str] = []
        failures: list[ItemFailure] = []
        warnings: list[str] = []

        for declared in self.config.entries():
            name = declared.command_name
            locked = self.lock.has_command(name)
            if locked and not force:
                skipped.append(name)
                continue
            source = self.lock.get_command(name).source if locked else declared.repository
            try:
                result = self.install(
                    source,
                    version=declared.version,
                    name=name,
                    force=force,
                    save_config=False,
                    save_lock=False,
                )
            except (CcmdError, OSError) as e:
                logger.warning("failed to install %s: %s", declared.repository, e)
                failures.append(ItemFailure(name=name, operation="install", error=e))
                continue
            installed.append(result.name)
            warnings.extend(result.warnings)

        if installed:
            self.lock.save()

        result = BatchResult(
            installed=tuple(installed),
            skipped=tuple(skipped),
            failed=tuple(failures),
            warnings=tuple(warnings),
        )
        raise_for_batch(result, failures, attempted=len(installed) + len(failures), what="install")
        return result

    def remove(self, name: str, *, save_config: bool = False, save_lock: bool = True) -> RemoveResult:
        if not self.lock.has_command(name):
            raise NotFoundError(f"Command {name!r} is not installed.")
        entry = self.lock.get_command(name)

        target = self.command_dir(name)
        if self.fs.exists(target):
            try:
                self.fs.remove_all(target)
            except OSError as e:
                raise FileError("remove command directory", target, str(e)) from e

        warnings: list[str] = []
        companion = self.companion_path(name)
        if self.fs.exists(companion):
            msg = best_effort("remove standalone file", self.fs.remove, companion, logger=logger)
            if msg:
                warnings.append(msg)

        self.lock.remove_command(name)
        if save_lock:
            self.lock.save()

        if save_config and self.config.exists:
            repo_path = extract_repo_path(entry.source)
            if repo_path:
                msg = best_effort("update project manifest", self._undeclare, repo_path, logger=logger)
                if msg:
                    warnings.append(msg)

        logger.info("removed %s", name)
        return RemoveResult(name=name, warnings=tuple(warnings))

    def update(self, name: str, *, force: bool = False, save_lock: bool = True) -> UpdateResult:
        entry = self.lock.get_command(name)
        tracked = entry.metadata.get("requested") or entry.metadata.get("ref") or None

        if is_commit_hash(tracked) and not force:
            return UpdateResult(
                name=name,
                updated=False,
                previous_version=entry.version,
                version=entry.version,
                previous_commit=entry.commit,
                commit=entry.commit,
                reason=f"pinned to commit {tracked}",
            )

        ref = self._resolve_ref(entry.source, tracked)
        with self._staging() as staging:
            staged = self._fetch_and_validate(staging, entry.source, ref, name=name)
            commit = staged.fetched.commit
            if not force and commit and commit == entry.commit:
                logger.info("%s is up to date (%s)", name, commit[:12])
                return UpdateResult(
                    name=name,
                    updated=False,
                    previous_version=entry.version,
                    version=entry.version,
                    previous_commit=entry.commit,
                    commit=commit,
                    reason="already up to date",
                )
            self._place(staged, staging, force=True)

        new_version = ref or staged.manifest.version
        metadata = self._entry_metadata(staged, ref=ref, requested=tracked)

        def _apply(e: LockEntry) -> None:
            e.version = new_version
            e.commit = commit
            e.resolved = f"{e.source}@{new_version}"
            e.metadata = metadata

        self.lock.update_command(name, _apply)
        if save_lock:
            self.lock.save()
        logger.info("updated %s %s -> %s", name, entry.version, new_version)
        return UpdateResult(
            name=name,
            updated=True,
            previous_version=entry.version,
            version=new_version,
            previous_commit=entry.commit,
            commit=commit,
        )

    def update_all(self, *, force: bool = False) -> BatchResult:
        updated: list[str] = []
        skipped: list[str] = []
        failures: list[ItemFailure] = []
        warnings: list[str] = []

        for name in self.lock.names():
            try:
                result = self.update(name, force=force, save_lock=False)
            except (CcmdError, OSError) as e:
                logger.warning("failed to update %s: %s", name, e)
                failures.append(ItemFailure(name=name, operation="update", error=e))
                continue
            if result.updated:
                updated.append(name)
            else:
                skipped.append(name)
                if result.reason and result.reason.startswith("pinned"):
                    warnings.append(f"{name}: {result.reason}")

        if updated:
            self.lock.save()

        result = BatchResult(
            updated=tuple(updated),
            skipped=tuple(skipped),
            failed=tuple(failures),
            warnings=tuple(warnings),
        )
        raise_for_batch(result, failures, attempted=len(updated) + len(skipped) + len(failures), what="update")
        return result

    def _resolve_ref(self, url: str, requested: str | None) -> str | None:
        if not is_version_constraint(requested):
            return requested
        tags = self.fetcher.list_tags(url)
        return resolve_ref(requested, tags)

    def _installed_name_for(self, url: str) -> str | None:
        """Name of the locked command installed from the same repository, if any."""
        repo_path = extract_repo_path(url)
        for entry in self.lock.list_commands():
            if repo_path and extract_repo_path(entry.source) == repo_path:
                return entry.name
            if not repo_path and entry.source == url:
                return entry.name
        return None

    def _drop_previous_name(self, name: str) -> list[str]:
        warnings: list[str] = []
        for path in (self.command_dir(name), self.companion_path(name)):
            if self.fs.exists(path):
                msg = best_effort(f"remove previous install {path}", self.fs.remove_all, path, logger=logger)
                if msg:
                    warnings.append(msg)
        self.lock.remove_command(name)
        logger.info("dropped previous install %s of the same repository", name)
        return warnings

    def _ensure_free(self, name: str) -> None:
        if self.fs.exists(self.command_dir(name)) or self.fs.exists(self.companion_path(name)):
            raise AlreadyExistsError(f"Command {name!r} is already installed (use --force to reinstall).")

    @contextmanager
    def _staging(self) -> Iterator[PurePath]:
        created_install_dir = not self.fs.exists(self.install_dir)
        tmp_root = self.install_dir / STAGING_DIRNAME
        staging = tmp_root / f"ccmd-install-{uuid.uuid4().hex[:12]}"
        try:
            self.fs.mkdir_all(staging)
        except OSError as e:
            raise FileError("create staging directory", staging, str(e)) from e
        try:
            yield staging
        finally:
            try:
                self.fs.remove_all(staging)
                if not self.fs.read_dir(tmp_root):
                    self.fs.remove(tmp_root)
                if created_install_dir and not self.fs.read_dir(self.install_dir):
                    self.fs.remove(self.install_dir)
            except OSError as e:
                logger.warning("could not clean up staging directory %s: %s", staging, e)

    def _fetch_and_validate(self, staging: PurePath, url: str, ref: str | None, *, name: str | None) -> _Staged:
        checkout = staging / "checkout"
        fetched = self.fetcher.fetch(url, checkout, ref)

        manifest = read_manifest(checkout, fs=self.fs)
        cmd_name = check_command_name(name or manifest.name)
        staged = staging / cmd_name
        try:
            self.fs.rename(checkout, staged)
        except OSError as e:
            raise FileError("stage command", staged, str(e)) from e

        original_name: str | None = None
        if manifest.name != cmd_name:
            original_name = manifest.name
            self._rewrite_manifest_name(staged, cmd_name)

        manifest = validate_package(staged, fs=self.fs)
        git_dir = staged / ".git"
        if self.fs.exists(git_dir):
            self.fs.remove_all(git_dir)
        try:
            entry_document = self.fs.read_file(staged / manifest.entry_file)
        except OSError as e:
            raise FileError("read entry document", staged / manifest.entry_file, str(e)) from e
        return _Staged(
            name=cmd_name,
            path=staged,
            manifest=manifest,
            fetched=fetched,
            original_name=original_name,
            entry_document=entry_document,
        )

    def _rewrite_manifest_name(self, pkg: PurePath, name: str) -> None:
        path = pkg / MANIFEST_FILENAME
        raw = yaml.safe_load(self.fs.read_file(path).decode("utf-8"))
        raw["name"] = name
        self.fs.write_file(path, yaml.safe_dump(raw, sort_keys=False, allow_unicode=True).encode("utf-8"))

    def _place(self, staged: _Staged, staging: PurePath, *, force: bool) -> bool:
        """Move the staged package into place. Returns True when a previous install was replaced."""
        target = self.command_dir(staged.name)
        companion = self.companion_path(staged.name)
        had_dir = self.fs.exists(target)
        had_companion = self.fs.exists(companion)
        if (had_dir or had_companion) and not force:
            raise AlreadyExistsError(f"Command {staged.name!r} is already installed (use --force to reinstall).")

        aside_dir = staging / ".previous"
        aside_companion = staging / ".previous.md"
        moved: list[tuple[PurePath, PurePath]] = []
        placed: list[PurePath] = []
        try:
            self.fs.mkdir_all(self.install_dir)
            if had_dir:
                self.fs.rename(target, aside_dir)
                moved.append((target, aside_dir))
            if had_companion:
                self.fs.rename(companion, aside_companion)
                moved.append((companion, aside_companion))
            self.fs.rename(staged.path, target)
            placed.append(target)
            placed.append(companion)
            self.fs.write_file(companion, staged.entry_document)
        except OSError as e:
            logger.warning("placing %s failed, rolling back: %s", staged.name, e)
            self._rollback(placed, moved)
            raise FileError("place command", target, str(e)) from e
        return had_dir or had_companion

    def _rollback(self, placed: list[PurePath], moved: list[tuple[PurePath, PurePath]]) -> None:
        for path in placed:
            best_effort(f"remove partial {path}", self.fs.remove_all, path, logger=logger)
        for original, aside in reversed(moved):
            best_effort(f"restore {original}", self.fs.rename, aside, original, logger=logger)

    def _entry_metadata(self, staged: _Staged, *, ref: str | None, requested: str | None) -> dict[str, str]:
        meta = {
            "description": staged.manifest.description,
            "author": staged.manifest.author,
            "manifest_version": staged.manifest.version,
        }
        if ref:
            meta["ref"] = ref
        if requested and requested != ref:
            meta["requested"] = requested
        if staged.original_name:
            meta["original_name"] = staged.original_name
        return {k: v for k, v in meta.items() if v}

    def _declare(self, repo: str, version: str | None) -> None:
        self.config.add_command(repo, version)
        self.config.save()

    def _undeclare(self, repo: str) -> None:
        if self.config.remove_command(repo):
            self.config.save()
