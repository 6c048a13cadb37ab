from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .errors import CcmdError, ItemFailure, raise_for_batch
from .installer import Installer
from .project import ProjectConfigEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncPlan:
    to_install: tuple[ProjectConfigEntry, ...] = ()
    to_remove: tuple[str, ...] = ()

    @property
    def in_sync(self) -> bool:
        return not self.to_install and not self.to_remove


@dataclass(frozen=True)
class SyncResult:
    plan: SyncPlan
    dry_run: bool = False
    installed: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failed: tuple[ItemFailure, ...] = ()
    warnings: tuple[str, ...] = ()


class Reconciler:
    """
    Converges the lock store (and install directory) on the project manifest.

    Declared commands without a lock entry are installed; lock entries nobody
    declares are removed.
    """

    def __init__(self, installer: Installer) -> None:
        self.installer = installer

    def analyze(self) -> SyncPlan:
        declared = self.installer.config.entries()
        locked = set(self.installer.lock.names())

        to_install: list[ProjectConfigEntry] = []
        wanted: set[str] = set()
        for entry in declared:
            name = entry.command_name
            wanted.add(name)
            if name not in locked:
                to_install.append(entry)

        to_remove = sorted(name for name in locked if name not in wanted)
        return SyncPlan(to_install=tuple(to_install), to_remove=tuple(to_remove))

    def sync(
        self,
        *,
        dry_run: bool = False,
        force: bool = False,
        confirm: Callable[[str], bool] | None = None,
    ) -> SyncResult:
        plan = self.analyze()
        if dry_run or plan.in_sync:
            return SyncResult(plan=plan, dry_run=dry_run)

        installed: list[str] = []
        removed: list[str] = []
        skipped: list[str] = []
        failures: list[ItemFailure] = []
        warnings: list[str] = []

        for entry in plan.to_install:
            name = entry.command_name
            try:
                result = self.installer.install(
                    entry.repository,
                    version=entry.version,
                    name=name,
                    force=False,
                    save_config=False,
                    save_lock=False,
                )
            except (CcmdError, OSError) as e:
                logger.warning("failed to install %s: %s", entry.spec(), e)
                failures.append(ItemFailure(name=name, operation="install", error=e))
                continue
            installed.append(result.name)
            warnings.extend(result.warnings)

        for name in plan.to_remove:
            if not force and confirm is not None and not confirm(name):
                logger.info("keeping %s (removal declined)", name)
                skipped.append(name)
                continue
            try:
                result = self.installer.remove(name, save_config=False, save_lock=False)
            except (CcmdError, OSError) as e:
                logger.warning("failed to remove %s: %s", name, e)
                failures.append(ItemFailure(name=name, operation="remove", error=e))
                continue
            removed.append(name)
            warnings.extend(result.warnings)

        if installed or removed:
            self.installer.lock.save()

        result = SyncResult(
            plan=plan,
            installed=tuple(installed),
            removed=tuple(removed),
            skipped=tuple(skipped),
            failed=tuple(failures),
            warnings=tuple(warnings),
        )
        raise_for_batch(result, failures, attempted=len(installed) + len(removed) + len(failures), what="sync")
        return result
