"""
Filesystem capability used by every exporter component.

Components never call ``os`` directly for reads or mutations; they receive a
``Filesystem`` so tests can substitute an in-memory implementation.
"""

import os
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, Optional, Protocol


@dataclass(frozen=True)
class TreeEntry:
    """One filesystem entry produced by ``Filesystem.walk``."""

    path: str
    is_dir: bool
    is_file: bool
    is_symlink: bool
    readable: bool


class Filesystem(Protocol):
    def exists(self, path: str) -> bool:
        ...

    def is_file(self, path: str) -> bool:
        ...

    def is_dir(self, path: str) -> bool:
        ...

    def is_readable(self, path: str) -> bool:
        ...

    def is_writable(self, path: str) -> bool:
        ...

    def is_executable(self, path: str) -> bool:
        ...

    def size(self, path: str) -> int:
        ...

    def mtime(self, path: str) -> float:
        ...

    def realpath(self, path: str) -> Optional[str]:
        """Canonical path with symlinks resolved, or None if it does not exist."""
        ...

    def mkdir(self, path: str) -> None:
        ...

    def write_text(self, path: str, content: str) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def open_read(self, path: str) -> BinaryIO:
        ...

    def open_write(self, path: str) -> BinaryIO:
        ...

    def walk(
        self, root: str, prune: Optional[Callable[[TreeEntry], bool]] = None
    ) -> Iterator[TreeEntry]:
        """Yield entries below ``root`` parent-first; ``prune`` stops descent."""
        ...


class LocalFilesystem:
    """Real-disk implementation of the ``Filesystem`` capability."""

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def is_file(self, path: str) -> bool:
        return os.path.isfile(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def is_readable(self, path: str) -> bool:
        return os.access(path, os.R_OK)

    def is_writable(self, path: str) -> bool:
        return os.access(path, os.W_OK)

    def is_executable(self, path: str) -> bool:
        return os.path.isfile(path) and os.access(path, os.X_OK)

    def size(self, path: str) -> int:
        return os.path.getsize(path)

    def mtime(self, path: str) -> float:
        return os.path.getmtime(path)

    def realpath(self, path: str) -> Optional[str]:
        if not os.path.exists(path):
            return None
        return os.path.realpath(path)

    def mkdir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def write_text(self, path: str, content: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

    def delete(self, path: str) -> None:
        os.remove(path)

    def open_read(self, path: str) -> BinaryIO:
        return open(path, "rb")

    def open_write(self, path: str) -> BinaryIO:
        return open(path, "wb")

    def _entry(self, dir_entry: os.DirEntry) -> TreeEntry:
        is_symlink = dir_entry.is_symlink()
        try:
            is_dir = dir_entry.is_dir()
            is_file = dir_entry.is_file()
        except OSError:
            is_dir = is_file = False
        return TreeEntry(
            path=dir_entry.path,
            is_dir=is_dir,
            is_file=is_file,
            is_symlink=is_symlink,
            readable=os.access(dir_entry.path, os.R_OK),
        )

    def walk(
        self, root: str, prune: Optional[Callable[[TreeEntry], bool]] = None
    ) -> Iterator[TreeEntry]:
        # Errors opening the root propagate; errors below it only skip a subtree
        with os.scandir(root) as it:
            children = sorted(it, key=lambda e: e.name)

        for dir_entry in children:
            entry = self._entry(dir_entry)
            yield entry

            if not entry.is_dir or entry.is_symlink or not entry.readable:
                continue
            if prune is not None and prune(entry):
                continue

            try:
                yield from self.walk(entry.path, prune)
            except PermissionError:
                continue


def delete_if_exists(fs: Filesystem, path: str) -> bool:
    """
    Delete ``path`` treating an already-missing file as success.

    Returns False only when the file is still present after a failed delete.
    """
    if not fs.exists(path):
        return True

    try:
        fs.delete(path)
    except FileNotFoundError:
        return True
    except OSError:
        return not fs.exists(path)

    return True
