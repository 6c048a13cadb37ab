from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

from .errors import InvalidInputError
from .repo_spec import DEFAULT_HOST

DEFAULT_TIMEOUT_S = 120.0
DEFAULT_INSTALL_DIR = ".claude/commands"
FETCHERS = ("git", "archive")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class Settings:
    default_host: str = DEFAULT_HOST
    install_dir: str = DEFAULT_INSTALL_DIR  # relative to the project root
    fetcher: str = "git"  # "git" or "archive"
    git_binary: str = "git"
    timeout_s: float = DEFAULT_TIMEOUT_S
    log_level: str = "WARNING"
    github_token: str | None = None  # archive fetcher only


_ENV = {
    "default_host": "CCMD_DEFAULT_HOST",
    "install_dir": "CCMD_INSTALL_DIR",
    "fetcher": "CCMD_FETCHER",
    "git_binary": "CCMD_GIT_BINARY",
    "timeout_s": "CCMD_TIMEOUT_S",
    "log_level": "CCMD_LOG_LEVEL",
    "github_token": "GITHUB_TOKEN",
}


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("CCMD_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("ccmd") / "config.json"


def coerce_setting(key: str, value: Any) -> Any:
    """Convert a raw (string) value for `key`, raising InvalidInputError when it is not acceptable."""
    names = {f.name for f in fields(Settings)}
    if key not in names:
        raise InvalidInputError(f"Unknown setting {key!r} (expected one of: {', '.join(sorted(names))}).")
    if key == "timeout_s":
        try:
            timeout = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"timeout_s must be a number, got {value!r}.") from e
        if timeout <= 0:
            raise InvalidInputError("timeout_s must be positive.")
        return timeout
    text = "" if value is None else str(value).strip()
    if key == "fetcher" and text not in FETCHERS:
        raise InvalidInputError(f"fetcher must be one of: {', '.join(FETCHERS)}.")
    if key == "log_level":
        text = text.upper()
        if text not in LOG_LEVELS:
            raise InvalidInputError(f"log_level must be one of: {', '.join(LOG_LEVELS)}.")
    if key == "github_token":
        return text or None
    if not text:
        raise InvalidInputError(f"{key} must not be empty.")
    return text


def load_settings(path_override: str | Path | None = None) -> Settings:
    path = config_path(path_override)
    if not path.exists():
        return Settings()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Settings()

    allowed = {f.name for f in fields(Settings)}
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Settings(**filtered)


def apply_env(base: Settings) -> Settings:
    # Env overrides the config file; CLI flags override both.
    changes: dict[str, Any] = {}
    for key, var in _ENV.items():
        value = os.getenv(var)
        if value:
            changes[key] = coerce_setting(key, value)
    return replace(base, **changes) if changes else base


def save_settings(settings: Settings, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(settings), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # Best-effort permissions hardening (the file may hold a token).
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def redact_token(token: str | None) -> str | None:
    if not token:
        return token
    if len(token) <= 10:
        return token[:2] + "..." + token[-2:]
    return token[:6] + "..." + token[-4:]
