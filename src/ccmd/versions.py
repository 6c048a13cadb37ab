from __future__ import annotations

import logging
import re

from .errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

_COMPARATOR_RE = re.compile(r"^(>=|<=|>|<|==|=)?\s*v?([0-9][0-9A-Za-z.\-+]*)$")
_COMMIT_RE = re.compile(r"^[0-9a-f]{7,40}$")


def strip_v(value: str) -> str:
    raw = value.strip()
    if raw[:1] in ("v", "V") and raw[1:2].isdigit():
        return raw[1:]
    return raw


def _split_version(version: str) -> tuple[tuple[int, ...], tuple[str, ...] | None]:
    if not isinstance(version, str):
        raise ValueError("version must be str")
    raw = strip_v(version)
    if not raw:
        raise ValueError("empty version")
    raw = raw.split("+", 1)[0]  # ignore build metadata
    if "-" in raw:
        main_s, pre_s = raw.split("-", 1)
        pre_parts = tuple(p for p in pre_s.split(".") if p != "")
    else:
        main_s = raw
        pre_parts = None
    main_parts = main_s.split(".")
    if any(not p.isdigit() for p in main_parts):
        raise ValueError(f"Unsupported version format: {version!r}")
    nums = [int(p) for p in main_parts]
    while len(nums) < 3:
        nums.append(0)
    return tuple(nums), pre_parts


def is_version(value: str) -> bool:
    try:
        _split_version(value)
    except ValueError:
        return False
    return True


def compare_versions(a: str, b: str) -> int:
    try:
        ma, pa = _split_version(a)
        mb, pb = _split_version(b)
    except ValueError:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    if ma < mb:
        return -1
    if ma > mb:
        return 1

    if pa is None and pb is None:
        return 0
    if pa is None:
        return 1
    if pb is None:
        return -1

    for i in range(max(len(pa), len(pb))):
        if i >= len(pa):
            return -1
        if i >= len(pb):
            return 1
        x = pa[i]
        y = pb[i]
        x_num = x.isdigit()
        y_num = y.isdigit()
        if x_num and y_num:
            if int(x) != int(y):
                return -1 if int(x) < int(y) else 1
            continue
        if x_num != y_num:
            return -1 if x_num else 1
        if x != y:
            return -1 if x < y else 1
    return 0


def _expand_caret(spec: str) -> list[str]:
    major, minor, patch = _split_version(spec[1:])[0][:3]
    lower = f">={major}.{minor}.{patch}"
    if major > 0:
        upper = f"<{major + 1}.0.0"
    elif minor > 0:
        upper = f"<0.{minor + 1}.0"
    else:
        upper = f"<0.0.{patch + 1}"
    return [lower, upper]


def _expand_tilde(spec: str) -> list[str]:
    major, minor, patch = _split_version(spec[1:])[0][:3]
    return [f">={major}.{minor}.{patch}", f"<{major}.{minor + 1}.0"]


def _split_specifier(specifier: str) -> list[str]:
    s = specifier.strip().replace(",", " ")
    tokens = [t for t in s.split() if t]
    if not tokens:
        return ["latest"]
    out: list[str] = []
    for token in tokens:
        if token.startswith(("^", "~")):
            try:
                out.extend(_expand_caret(token) if token[0] == "^" else _expand_tilde(token))
            except ValueError as e:
                raise InvalidInputError(f"Invalid version constraint: {token!r}") from e
            continue
        out.append(token)
    return out


def version_satisfies(version: str, specifier: str) -> bool:
    for token in _split_specifier(specifier):
        if token.lower() in ("latest", "*"):
            continue
        m = _COMPARATOR_RE.match(token)
        if not m:
            return False
        op = m.group(1) or "="
        cmp = compare_versions(version, m.group(2))
        if op in ("=", "==") and cmp != 0:
            return False
        if op == ">" and cmp <= 0:
            return False
        if op == ">=" and cmp < 0:
            return False
        if op == "<" and cmp >= 0:
            return False
        if op == "<=" and cmp > 0:
            return False
    return True


def is_commit_hash(ref: str | None) -> bool:
    return bool(ref) and bool(_COMMIT_RE.match(ref or "")) and not (ref or "").isdigit()


def is_version_constraint(ref: str | None) -> bool:
    """True for refs that must be resolved against tags ("latest", "^1.2", ">=1 <2"), not passed to git."""
    raw = (ref or "").strip()
    if not raw:
        return False
    if raw.lower() in ("latest", "*"):
        return True
    return raw[0] in "^~<>=" or " " in raw or "," in raw


def resolve_ref(ref: str | None, tags: list[str]) -> str:
    """
    Pick the highest tag satisfying the constraint `ref`.

    Tags that are not versions are ignored. The tag is returned as published
    (keeping a "v" prefix when it has one).
    """
    spec = (ref or "latest").strip()
    candidates = [t for t in tags if is_version(t)]
    # Prereleases only satisfy a constraint that names one.
    if "-" not in spec:
        candidates = [t for t in candidates if _split_version(t)[1] is None]
    matching = [t for t in candidates if version_satisfies(strip_v(t), spec)]
    if not matching:
        raise NotFoundError(f"No tag satisfies {spec!r} (available: {', '.join(tags) or '<none>'}).")

    best = matching[0]
    for tag in matching[1:]:
        if compare_versions(tag, best) > 0:
            best = tag
    logger.debug("resolved %r to tag %s", spec, best)
    return best
