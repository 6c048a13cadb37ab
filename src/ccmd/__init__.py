from ._version import __version__
from .errors import (
    AlreadyExistsError,
    CcmdError,
    FileError,
    GitError,
    InvalidInputError,
    LockFileError,
    LockNotLoadedError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from .installer import Installer
from .lock import LockStore
from .project import ConfigStore
from .repo_spec import parse_repository_spec
from .sync import Reconciler
from .validation import check_dual_structure, validate_package

__all__ = [
    "__version__",
    "AlreadyExistsError",
    "CcmdError",
    "ConfigStore",
    "FileError",
    "GitError",
    "Installer",
    "InvalidInputError",
    "LockFileError",
    "LockNotLoadedError",
    "LockStore",
    "NotFoundError",
    "PartialFailureError",
    "Reconciler",
    "ValidationError",
    "check_dual_structure",
    "parse_repository_spec",
    "validate_package",
]
