from __future__ import annotations

import io
import logging
import os
import shutil
import zipfile
from pathlib import Path, PurePath
from urllib.parse import quote

import httpx

from .errors import CcmdError, InvalidInputError
from .models import FetchResult
from .repo_spec import extract_repo_path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0
CODELOAD_URL = "https://codeload.github.com"
GITHUB_API_URL = "https://api.github.com"


class ArchiveHTTPError(CcmdError):
    def __init__(self, status_code: int, url: str, body: str) -> None:
        super().__init__(f"HTTP {status_code} for {url}: {body[:200]}")
        self.status_code = status_code
        self.url = url
        self.body = body


def _safe_extract_zip(zip_bytes: bytes, dest: Path) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    try:
        zf = zipfile.ZipFile(io.BytesIO(zip_bytes), "r")
    except zipfile.BadZipFile as e:
        raise CcmdError(f"Downloaded archive is not a zip file: {e}") from e
    with zf:
        base = dest.resolve()
        for info in zf.infolist():
            name = info.filename
            if not name:
                continue
            if name.startswith("/"):
                raise CcmdError(f"Archive contains an absolute path entry: {name!r}")
            target = (dest / name).resolve()
            if not str(target).startswith(str(base) + os.sep) and target != base:
                raise CcmdError(f"Archive contains an invalid path entry: {name!r}")

            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, "r") as src, target.open("wb") as out:
                shutil.copyfileobj(src, out)


def github_repo_path(url: str) -> str:
    """"owner/repo" for a github.com URL; other hosts have no archive endpoint."""
    if "github.com" not in url:
        raise InvalidInputError(f"Archive downloads are only supported for github.com repositories: {url}")
    path = extract_repo_path(url)
    if not path:
        raise InvalidInputError(f"Cannot derive owner/repo from {url!r}.")
    return path


class ArchiveFetcher:
    """
    Fetch command packages as GitHub source archives over HTTPS.

    No git executable is needed, but no commit is known for the fetched tree.
    """

    def __init__(self, *, token: str | None = None, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.token = token
        self.timeout_s = timeout_s
        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ArchiveFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get(self, url: str, *, params: dict[str, object] | None = None, api: bool = False) -> httpx.Response:
        headers: dict[str, str] = {}
        if api:
            headers["Accept"] = "application/vnd.github+json"
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self._http.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise CcmdError(f"Request failed: {e}") from e
        if resp.status_code >= 400:
            raise ArchiveHTTPError(resp.status_code, url, resp.text)
        return resp

    def fetch(self, url: str, target: PurePath, ref: str | None = None) -> FetchResult:
        repo = github_repo_path(url)
        owner, name = repo.split("/", 1)
        archive_url = f"{CODELOAD_URL}/{quote(owner, safe='')}/{quote(name, safe='')}/zip/{quote(ref or 'HEAD', safe='')}"
        logger.debug("downloading %s", archive_url)
        try:
            resp = self._get(archive_url)
        except ArchiveHTTPError as e:
            if e.status_code == 404:
                raise CcmdError(f"Repository or ref not found: {repo}@{ref or 'HEAD'}") from e
            raise

        dest = Path(target)
        unpack_root = dest.with_name(dest.name + ".unpacked")
        try:
            _safe_extract_zip(resp.content, unpack_root)
            # GitHub wraps the tree in a single "<repo>-<ref>/" directory.
            source_root = unpack_root
            children = list(unpack_root.iterdir())
            if len(children) == 1 and children[0].is_dir():
                source_root = children[0]
            shutil.move(str(source_root), str(dest))
        finally:
            if unpack_root.exists():
                shutil.rmtree(unpack_root, ignore_errors=True)
        return FetchResult(commit=None, ref=ref)

    def list_tags(self, url: str) -> list[str]:
        repo = github_repo_path(url)
        api_url = f"{GITHUB_API_URL}/repos/{repo}/tags"
        tags: list[str] = []
        page = 1
        while True:
            resp = self._get(api_url, params={"page": page, "per_page": 100}, api=True)
            data = resp.json()
            if not isinstance(data, list):
                raise CcmdError(f"Unexpected response listing tags for {repo}.")
            for item in data:
                if isinstance(item, dict) and isinstance(item.get("name"), str):
                    tags.append(item["name"])
            if "next" not in resp.links or not data:
                break
            page += 1
        return tags
