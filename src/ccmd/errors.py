from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable


class CcmdError(RuntimeError):
    pass


class InvalidInputError(CcmdError):
    pass


class NotFoundError(CcmdError):
    pass


class AlreadyExistsError(CcmdError):
    pass


class ValidationError(CcmdError):
    """
    Structural problem with a command package.

    `kind` is a stable machine-readable label (e.g. "manifest_not_found"),
    `detail` is the human-facing part (usually the offending path or values).
    """

    RETRYABLE_KINDS = frozenset({"manifest_unreadable", "entry_unreadable"})

    def __init__(self, kind: str, detail: str) -> None:
        super().__init__(f"validation error [{kind}]: {detail}")
        self.kind = kind
        self.detail = detail

    @property
    def retryable(self) -> bool:
        return self.kind in self.RETRYABLE_KINDS


class FileError(CcmdError):
    def __init__(self, op: str, path: Any, reason: str | None = None) -> None:
        msg = f"Failed to {op}: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.op = op
        self.path = path


class LockFileError(FileError):
    pass


class LockNotLoadedError(CcmdError):
    def __init__(self) -> None:
        super().__init__("Lock file not loaded. Call load() first.")


class GitError(CcmdError):
    def __init__(self, op: str, detail: str) -> None:
        super().__init__(f"git {op} failed: {detail}")
        self.op = op
        self.detail = detail


@dataclass(frozen=True)
class ItemFailure:
    name: str
    operation: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.operation} {self.name}: {self.error}"


class PartialFailureError(CcmdError):
    """Some (not all) items of a batch operation failed. `result` holds the full outcome."""

    def __init__(self, result: Any, failures: list[ItemFailure] | tuple[ItemFailure, ...]) -> None:
        self.result = result
        self.failures = tuple(failures)
        lines = [f"{len(self.failures)} item(s) failed:"]
        lines.extend(f"  - {f}" for f in self.failures)
        super().__init__("\n".join(lines))


def raise_for_batch(result: Any, failures: list[ItemFailure], *, attempted: int, what: str) -> None:
    if not failures:
        return
    if len(failures) < attempted:
        raise PartialFailureError(result, failures)
    first = failures[0]
    detail = "; ".join(str(f) for f in failures)
    raise CcmdError(f"All {attempted} {what} operation(s) failed: {detail}") from first.error


def best_effort(action: str, fn: Callable[..., Any], *args: Any, logger: logging.Logger | None = None, **kwargs: Any) -> str | None:
    """
    Run a secondary step whose failure must not fail the primary operation.

    Returns None on success, otherwise a warning message (already logged).
    """
    log = logger or logging.getLogger(__name__)
    try:
        fn(*args, **kwargs)
    except (CcmdError, OSError) as e:
        msg = f"{action} failed: {e}"
        log.warning(msg)
        return msg
    return None
