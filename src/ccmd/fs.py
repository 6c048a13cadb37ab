from __future__ import annotations

import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Protocol


@dataclass(frozen=True)
class FileInfo:
    name: str
    is_dir: bool
    size: int

    @property
    def is_file(self) -> bool:
        return not self.is_dir


class FileSystem(Protocol):
    """
    Narrow filesystem capability used by the stores, the validator and the installer.

    Missing paths raise FileNotFoundError, like the os module does.
    """

    def read_file(self, path: PurePath) -> bytes:
        ...

    def write_file(self, path: PurePath, data: bytes) -> None:
        ...

    def stat(self, path: PurePath) -> FileInfo:
        ...

    def mkdir_all(self, path: PurePath) -> None:
        ...

    def rename(self, src: PurePath, dst: PurePath) -> None:
        ...

    def remove(self, path: PurePath) -> None:
        ...

    def remove_all(self, path: PurePath) -> None:
        ...

    def read_dir(self, path: PurePath) -> list[FileInfo]:
        ...

    def exists(self, path: PurePath) -> bool:
        ...


class OSFileSystem:
    def read_file(self, path: PurePath) -> bytes:
        return Path(path).read_bytes()

    def write_file(self, path: PurePath, data: bytes) -> None:
        Path(path).write_bytes(data)

    def stat(self, path: PurePath) -> FileInfo:
        p = Path(path)
        st = p.stat()
        return FileInfo(name=p.name, is_dir=p.is_dir(), size=st.st_size)

    def mkdir_all(self, path: PurePath) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def rename(self, src: PurePath, dst: PurePath) -> None:
        os.replace(src, dst)

    def remove(self, path: PurePath) -> None:
        p = Path(path)
        if p.is_dir() and not p.is_symlink():
            p.rmdir()
        else:
            p.unlink()

    def remove_all(self, path: PurePath) -> None:
        p = Path(path)
        if p.is_dir() and not p.is_symlink():
            shutil.rmtree(p)
        elif p.exists() or p.is_symlink():
            p.unlink()

    def read_dir(self, path: PurePath) -> list[FileInfo]:
        out: list[FileInfo] = []
        for child in sorted(Path(path).iterdir()):
            out.append(FileInfo(name=child.name, is_dir=child.is_dir(), size=0 if child.is_dir() else child.stat().st_size))
        return out

    def exists(self, path: PurePath) -> bool:
        return Path(path).exists()


def _key(path: PurePath | str) -> str:
    return os.path.normpath(os.fspath(path))


class MemoryFileSystem:
    """
    In-memory FileSystem for tests.

    `fail_rename` / `fail_write` hold paths (destination for renames) whose
    operation raises PermissionError, to exercise atomic-write and rollback paths.
    """

    def __init__(self) -> None:
        self._files: dict[str, bytes] = {}
        self._dirs: set[str] = {os.sep}
        self._lock = threading.Lock()
        self.fail_rename: set[str] = set()
        self.fail_write: set[str] = set()

    def _parent_must_exist(self, key: str) -> None:
        parent = os.path.dirname(key)
        if parent and parent not in self._dirs:
            raise FileNotFoundError(parent)

    def read_file(self, path: PurePath) -> bytes:
        key = _key(path)
        with self._lock:
            if key in self._dirs:
                raise IsADirectoryError(key)
            try:
                return self._files[key]
            except KeyError:
                raise FileNotFoundError(key) from None

    def write_file(self, path: PurePath, data: bytes) -> None:
        key = _key(path)
        with self._lock:
            if key in self.fail_write:
                raise PermissionError(key)
            if key in self._dirs:
                raise IsADirectoryError(key)
            self._parent_must_exist(key)
            self._files[key] = bytes(data)

    def stat(self, path: PurePath) -> FileInfo:
        key = _key(path)
        with self._lock:
            name = os.path.basename(key)
            if key in self._dirs:
                return FileInfo(name=name, is_dir=True, size=0)
            if key in self._files:
                return FileInfo(name=name, is_dir=False, size=len(self._files[key]))
        raise FileNotFoundError(key)

    def mkdir_all(self, path: PurePath) -> None:
        key = _key(path)
        with self._lock:
            parts = []
            cur = key
            while cur and cur not in self._dirs:
                if cur in self._files:
                    raise FileExistsError(cur)
                parts.append(cur)
                nxt = os.path.dirname(cur)
                if nxt == cur:
                    break
                cur = nxt
            self._dirs.update(parts)

    def rename(self, src: PurePath, dst: PurePath) -> None:
        s, d = _key(src), _key(dst)
        with self._lock:
            if d in self.fail_rename:
                raise PermissionError(d)
            self._parent_must_exist(d)
            if s in self._files:
                if d in self._dirs:
                    raise IsADirectoryError(d)
                self._files[d] = self._files.pop(s)
                return
            if s not in self._dirs:
                raise FileNotFoundError(s)
            if d in self._files or self._children(d):
                raise FileExistsError(d)
            prefix = s + os.sep
            for k in [k for k in self._files if k.startswith(prefix)]:
                self._files[d + k[len(s):]] = self._files.pop(k)
            for k in [k for k in self._dirs if k == s or k.startswith(prefix)]:
                self._dirs.discard(k)
                self._dirs.add(d + k[len(s):])

    def remove(self, path: PurePath) -> None:
        key = _key(path)
        with self._lock:
            if key in self._files:
                del self._files[key]
                return
            if key in self._dirs:
                if self._children(key):
                    raise OSError(f"directory not empty: {key}")
                self._dirs.discard(key)
                return
        raise FileNotFoundError(key)

    def remove_all(self, path: PurePath) -> None:
        key = _key(path)
        prefix = key + os.sep
        with self._lock:
            self._files.pop(key, None)
            for k in [k for k in self._files if k.startswith(prefix)]:
                del self._files[k]
            for k in [k for k in self._dirs if k == key or k.startswith(prefix)]:
                self._dirs.discard(k)

    def read_dir(self, path: PurePath) -> list[FileInfo]:
        key = _key(path)
        with self._lock:
            if key not in self._dirs:
                raise FileNotFoundError(key)
            out = []
            for child in sorted(self._children(key)):
                full = os.path.join(key, child)
                if full in self._dirs:
                    out.append(FileInfo(name=child, is_dir=True, size=0))
                else:
                    out.append(FileInfo(name=child, is_dir=False, size=len(self._files[full])))
            return out

    def exists(self, path: PurePath) -> bool:
        key = _key(path)
        with self._lock:
            return key in self._files or key in self._dirs

    def _children(self, key: str) -> set[str]:
        prefix = key.rstrip(os.sep) + os.sep
        names: set[str] = set()
        for k in list(self._files) + list(self._dirs):
            if k.startswith(prefix) and k != key:
                names.add(k[len(prefix):].split(os.sep, 1)[0])
        return names

