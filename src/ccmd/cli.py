from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from contextlib import contextmanager
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Iterator

from ._version import __version__
from .archive import ArchiveFetcher
from .config import Settings, apply_env, coerce_setting, config_path, load_settings, redact_token, save_settings
from .errors import CcmdError, PartialFailureError
from .fs import OSFileSystem
from .git import GitFetcher
from .installer import Installer
from .lock import LockStore, migrate_legacy_lock
from .models import Fetcher
from .project import ConfigStore, find_project_root
from .sync import Reconciler
from .validation import check_dual_structure

logger = logging.getLogger("ccmd")


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _print_warnings(warnings: Any) -> None:
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ccmd",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install and manage git-hosted command packages for a project.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              CCMD_CONFIG_PATH, CCMD_DEFAULT_HOST, CCMD_INSTALL_DIR, CCMD_FETCHER,
              CCMD_GIT_BINARY, CCMD_TIMEOUT_S, CCMD_LOG_LEVEL, GITHUB_TOKEN
            """
        ),
    )

    def _add_runtime_overrides(parser: argparse.ArgumentParser) -> None:
        # Accepted both before and after the subcommand:
        #   ccmd --project ./app sync
        #   ccmd sync --project ./app
        parser.add_argument("--project", default=argparse.SUPPRESS, help="Project root (default: nearest ancestor with ccmd.yaml)")
        parser.add_argument("--install-dir", default=argparse.SUPPRESS, help="Install directory relative to the project root")
        parser.add_argument("--fetcher", choices=("git", "archive"), default=argparse.SUPPRESS, help="How packages are fetched")
        parser.add_argument("--default-host", default=argparse.SUPPRESS, help="Host used for owner/repo shorthand")
        parser.add_argument("--timeout-s", type=float, default=argparse.SUPPRESS, help="git/HTTP timeout in seconds")
        parser.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help="Debug logging")
        parser.add_argument(
            "--verbose-errors",
            action="store_true",
            default=argparse.SUPPRESS,
            help="Print the chain of underlying causes on error",
        )

    _add_runtime_overrides(p)
    p.add_argument("--version", action="version", version=f"ccmd {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage user settings")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print settings path")
    cfg_sub.add_parser("show", help="Show settings (token redacted)")
    cfg_set = cfg_sub.add_parser("set", help="Set settings fields")
    cfg_set.add_argument("--default-host")
    cfg_set.add_argument("--install-dir")
    cfg_set.add_argument("--fetcher", choices=("git", "archive"))
    cfg_set.add_argument("--git-binary")
    cfg_set.add_argument("--timeout-s", type=float)
    cfg_set.add_argument("--log-level")
    cfg_set.add_argument("--github-token", help="Token for the GitHub API (archive fetcher)")

    install = sub.add_parser(
        "install",
        aliases=["i"],
        help="Install a command, or every command declared in ccmd.yaml",
    )
    _add_runtime_overrides(install)
    install.add_argument("repo", nargs="?", help="owner/repo, host/owner/repo, URL or SSH address, optionally @version")
    install.add_argument("--version", dest="ref", help="Tag, branch, commit or constraint (overrides @version)")
    install.add_argument("--name", help="Install under this command name")
    install.add_argument("--force", action="store_true", help="Reinstall over an existing command")
    install.add_argument("--no-save", action="store_true", help="Do not add the command to ccmd.yaml")
    install.add_argument("--json", action="store_true", help="Output JSON")

    remove = sub.add_parser("remove", aliases=["rm", "uninstall"], help="Remove an installed command")
    _add_runtime_overrides(remove)
    remove.add_argument("name", help="Command name")
    remove.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    remove.add_argument("--save", action="store_true", help="Also remove the command from ccmd.yaml")

    sync = sub.add_parser("sync", help="Install declared commands and remove undeclared ones")
    _add_runtime_overrides(sync)
    sync.add_argument("--dry-run", action="store_true", help="Only print what would change")
    sync.add_argument("--force", action="store_true", help="Remove without asking")
    sync.add_argument("--json", action="store_true", help="Output JSON")

    update = sub.add_parser("update", help="Re-fetch installed commands at their tracked ref")
    _add_runtime_overrides(update)
    update.add_argument("name", nargs="?", help="Command name")
    update.add_argument("--all", action="store_true", help="Update every installed command")
    update.add_argument("--force", action="store_true", help="Re-place even when unchanged or pinned to a commit")
    update.add_argument("--json", action="store_true", help="Output JSON")

    check = sub.add_parser("check", help="Verify installed commands on disk")
    _add_runtime_overrides(check)
    check.add_argument("name", nargs="?", help="Command name (default: all)")

    return p


def _merge_settings(base: Settings, args: argparse.Namespace) -> Settings:
    # Env overrides the settings file; CLI overrides both.
    merged = apply_env(base)
    changes: dict[str, Any] = {}
    for key in ("install_dir", "fetcher", "default_host", "timeout_s"):
        value = getattr(args, key, None)
        if value is not None:
            changes[key] = coerce_setting(key, value)
    return replace(merged, **changes) if changes else merged


def _make_fetcher(settings: Settings) -> Fetcher:
    if settings.fetcher == "archive":
        return ArchiveFetcher(token=settings.github_token, timeout_s=settings.timeout_s)
    return GitFetcher(git_binary=settings.git_binary, timeout_s=settings.timeout_s)


def _build_installer(args: argparse.Namespace, settings: Settings) -> Installer:
    project = getattr(args, "project", None)
    root = Path(project).expanduser().resolve() if project else find_project_root()
    fs = OSFileSystem()

    lock = LockStore.for_project(root, fs=fs)
    if not fs.exists(lock.path):
        migrated = migrate_legacy_lock(root, lock)
        if migrated:
            print(f"Migrated {len(migrated)} command(s) from the legacy lock file.", file=sys.stderr)
    if not lock.loaded:
        lock.load()

    config = ConfigStore.for_project(root, fs=fs)
    config.load()

    return Installer(
        project_root=root,
        lock=lock,
        config=config,
        fetcher=_make_fetcher(settings),
        fs=fs,
        install_dir=settings.install_dir,
        default_host=settings.default_host,
    )


@contextmanager
def _session(args: argparse.Namespace, settings: Settings) -> Iterator[Installer]:
    installer = _build_installer(args, settings)
    try:
        yield installer
    finally:
        close = getattr(installer.fetcher, "close", None)
        if callable(close):
            close()


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        settings = load_settings()
        d = asdict(settings)
        d["github_token"] = redact_token(settings.github_token)
        print(json.dumps(d, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        settings = load_settings()
        changes: dict[str, Any] = {}
        for key in ("default_host", "install_dir", "fetcher", "git_binary", "timeout_s", "log_level", "github_token"):
            value = getattr(args, key, None)
            if value is not None:
                changes[key] = coerce_setting(key, value)
        path = save_settings(replace(settings, **changes))
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def _install_payload(result: Any) -> dict[str, Any]:
    return {
        "name": result.name,
        "version": result.version,
        "source": result.source,
        "commit": result.commit,
        "path": str(result.path),
        "replaced": result.replaced,
        "warnings": list(result.warnings),
    }


def _print_batch(result: Any, failures: Any = ()) -> None:
    rows = [["ACTION", "COUNT"]]
    for action in ("installed", "updated", "removed", "skipped"):
        if hasattr(result, action):
            rows.append([action, str(len(getattr(result, action)))])
    rows.append(["failed", str(len(failures))])
    _print_table(rows)
    for action in ("installed", "updated", "removed", "skipped"):
        for name in getattr(result, action, ()):
            print(f"{action}: {name}")


def _batch_payload(result: Any, failures: Any = ()) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for action in ("installed", "updated", "removed", "skipped"):
        if hasattr(result, action):
            payload[action] = list(getattr(result, action))
    payload["failed"] = [{"name": f.name, "operation": f.operation, "error": str(f.error)} for f in failures]
    payload["warnings"] = list(result.warnings)
    return payload


def _run_batch(fn: Any, *, as_json: bool) -> int:
    try:
        result = fn()
        failures: Any = ()
    except PartialFailureError as e:
        result, failures = e.result, e.failures
    if as_json:
        print(json.dumps(_batch_payload(result, failures), indent=2, sort_keys=True))
    else:
        _print_batch(result, failures)
    _print_warnings(result.warnings)
    _print_warnings(str(f) for f in failures)
    return 0


def cmd_install(args: argparse.Namespace, settings: Settings) -> int:
    with _session(args, settings) as installer:
        if not args.repo:
            if args.ref or args.name:
                raise CcmdError("--version and --name require a repository.")
            return _run_batch(lambda: installer.install_from_config(force=args.force), as_json=args.json)

        result = installer.install(
            args.repo,
            version=args.ref,
            name=args.name,
            force=args.force,
            save_config=not args.no_save,
        )

    if args.json:
        print(json.dumps(_install_payload(result), indent=2, sort_keys=True))
    else:
        verb = "Reinstalled" if result.replaced else "Installed"
        print(f"{verb} {result.name} {result.version} -> {result.path}")
        if result.commit:
            print(f"commit: {result.commit}")
    _print_warnings(result.warnings)
    return 0


def cmd_remove(args: argparse.Namespace, settings: Settings) -> int:
    with _session(args, settings) as installer:
        installer.lock.get_command(args.name)
        if not args.force and not _confirm(f"Remove command {args.name!r}?"):
            print("Aborted.")
            return 0
        result = installer.remove(args.name, save_config=args.save)
    print(f"Removed {result.name}")
    _print_warnings(result.warnings)
    return 0


def cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    with _session(args, settings) as installer:
        reconciler = Reconciler(installer)
        if args.dry_run:
            plan = reconciler.analyze()
            if args.json:
                payload = {
                    "to_install": [e.spec() for e in plan.to_install],
                    "to_remove": list(plan.to_remove),
                }
                print(json.dumps(payload, indent=2, sort_keys=True))
                return 0
            if plan.in_sync:
                print("Everything is in sync.")
            for entry in plan.to_install:
                print(f"would install: {entry.spec()}")
            for name in plan.to_remove:
                print(f"would remove: {name}")
            return 0

        confirm = None if args.force else (lambda name: _confirm(f"Remove {name!r} (not declared in ccmd.yaml)?"))
        return _run_batch(lambda: reconciler.sync(force=args.force, confirm=confirm), as_json=args.json)


def cmd_update(args: argparse.Namespace, settings: Settings) -> int:
    if bool(args.name) == bool(args.all):
        raise CcmdError("Specify a command name or --all.")
    with _session(args, settings) as installer:
        if args.all:
            return _run_batch(lambda: installer.update_all(force=args.force), as_json=args.json)
        result = installer.update(args.name, force=args.force)

    if args.json:
        print(json.dumps(asdict(result), indent=2, sort_keys=True))
    elif result.updated:
        print(f"Updated {result.name} {result.previous_version} -> {result.version}")
    else:
        print(f"{result.name}: {result.reason}")
    return 0


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    with _session(args, settings) as installer:
        names = [args.name] if args.name else installer.lock.names()
        if args.name:
            installer.lock.get_command(args.name)
        failed = 0
        for name in names:
            issues = check_dual_structure(installer.install_dir, name, fs=installer.fs)
            if not issues:
                print(f"ok: {name}")
                continue
            failed += 1
            for issue in issues:
                print(f"problem: {name}: {issue}")
    if not names:
        print("No commands installed.")
    return 1 if failed else 0


def _format_error(err: BaseException, *, verbose: bool) -> str:
    lines = [f"error: {err}"]
    if verbose:
        cause = err.__cause__ or err.__context__
        while cause is not None:
            lines.append(f"  caused by: {type(cause).__name__}: {cause}")
            cause = cause.__cause__ or cause.__context__
    return "\n".join(lines)


def _configure_logging(args: argparse.Namespace, settings: Settings) -> None:
    level = logging.DEBUG if getattr(args, "debug", False) else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    verbose = bool(getattr(args, "verbose_errors", False))
    try:
        if args.cmd == "config":
            return cmd_config(args)

        settings = _merge_settings(load_settings(), args)
        _configure_logging(args, settings)
        if args.cmd in ("install", "i"):
            return cmd_install(args, settings)
        if args.cmd in ("remove", "rm", "uninstall"):
            return cmd_remove(args, settings)
        if args.cmd == "sync":
            return cmd_sync(args, settings)
        if args.cmd == "update":
            return cmd_update(args, settings)
        if args.cmd == "check":
            return cmd_check(args, settings)
        raise AssertionError("unreachable")
    except (CcmdError, OSError, ValueError) as e:
        print(_format_error(e, verbose=verbose), file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
