from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path, PurePath

from .errors import GitError
from .models import FetchResult
from .versions import is_commit_hash

logger = logging.getLogger(__name__)


class GitFetcher:
    """Fetch command packages with the git command line client."""

    def __init__(self, *, git_binary: str = "git", timeout_s: float | None = 120.0) -> None:
        self.git_binary = git_binary
        self.timeout_s = timeout_s

    def _run(self, args: Sequence[str], *, op: str, cwd: Path | None = None) -> str:
        cmd = [self.git_binary, *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                check=True,
                timeout=self.timeout_s,
            )
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip() or f"exit code {e.returncode}"
            raise GitError(op, detail) from e
        except subprocess.TimeoutExpired as e:
            raise GitError(op, f"timed out after {self.timeout_s}s") from e
        except FileNotFoundError as e:
            raise GitError(op, f"git executable not found: {self.git_binary}") from e
        return result.stdout

    def fetch(self, url: str, target: PurePath, ref: str | None = None) -> FetchResult:
        dest = Path(target)
        if ref and is_commit_hash(ref):
            # Shallow clones cannot check out an arbitrary commit by name.
            self._run(["clone", "--quiet", url, str(dest)], op="clone")
            self._run(["checkout", "--quiet", ref], op="checkout", cwd=dest)
        else:
            args = ["clone", "--quiet", "--depth", "1"]
            if ref:
                args += ["--branch", ref]
            self._run([*args, url, str(dest)], op="clone")
        commit = self._run(["rev-parse", "HEAD"], op="rev-parse", cwd=dest).strip()
        return FetchResult(commit=commit or None, ref=ref)

    def list_tags(self, url: str) -> list[str]:
        out = self._run(["ls-remote", "--tags", "--refs", url], op="ls-remote")
        tags: list[str] = []
        for line in out.splitlines():
            parts = line.split()
            if len(parts) != 2 or not parts[1].startswith("refs/tags/"):
                continue
            tags.append(parts[1][len("refs/tags/") :])
        return tags

