"""
Path safety validation for every file the exporter reads, serves or deletes.

This module blocks directory traversal, symlink swaps and disallowed file
types before any filesystem access touches a user-influenced path.
"""

import posixpath
import re
from typing import Iterable, Optional

from ..core.activity_log import ExportLogger
from ..core.result import ErrorKind, Result
from .filesystem import Filesystem
from .naming import sanitize_file_name

# Closed set: never extended at runtime
ALLOWED_EXTENSIONS = frozenset({"zip", "sql"})

TRAVERSAL_TOKENS = ("..", "/./", "\\")
UNSAFE_PARENT_TOKENS = ("..", "wp-config")

INVALID_PATH_MESSAGE = "Invalid file path."


def normalize_path(path: str) -> str:
    """Collapse repeated separators into one."""
    return re.sub(r"/+", "/", path)


def file_extension(path: str) -> str:
    """Lower-cased text after the last dot of the final component."""
    name = posixpath.basename(path)
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def with_trailing_separator(path: str) -> str:
    return path.rstrip("/") + "/"


class PathGuard:
    """Validates candidate paths against an allowed base directory and extension set."""

    def __init__(self, fs: Filesystem, log: ExportLogger):
        self.fs = fs
        self.log = log.bind(__name__)

    def _reject(self, path: str, reason: str, code: str = "invalid_path") -> Result:
        self.log.security("Rejected file path %r: %s", path, reason)
        return Result.failure(ErrorKind.VALIDATION, code, INVALID_PATH_MESSAGE)

    def check_path_traversal(self, path: str) -> bool:
        """Return False if ``path`` contains a sequence that is never safe."""
        return not any(token in path for token in TRAVERSAL_TOKENS)

    def validate_file_extension(
        self, path: str, allowed_extensions: Iterable[str] = ALLOWED_EXTENSIONS
    ) -> bool:
        allowed = {ext.lower().lstrip(".") for ext in allowed_extensions}
        return file_extension(path) in allowed

    def is_within_base(self, real_path: str, real_base: str) -> bool:
        """Prefix test with a trailing separator on both sides so /foo-evil is not under /foo."""
        return with_trailing_separator(real_path).startswith(
            with_trailing_separator(real_base)
        )

    def sanitize_filename(self, filename: str) -> Optional[str]:
        sanitized = sanitize_file_name(filename)
        if not sanitized or any(token in sanitized for token in ("..", "/", "\\")):
            return None
        return sanitized

    def validate(
        self,
        candidate: str,
        base_dir: str,
        allowed_extensions: Iterable[str] = ALLOWED_EXTENSIONS,
    ) -> Result:
        """
        Validate ``candidate`` and return its canonical path.

        Args:
            candidate: Absolute path to check (may not exist yet)
            base_dir: Directory the path must resolve inside
            allowed_extensions: Extensions accepted, without dots

        Returns:
            Result holding the canonical path, or a VALIDATION error
        """
        if not isinstance(candidate, str) or not candidate or "\x00" in candidate:
            return self._reject(repr(candidate), "empty or malformed path")

        # Backslashes are rejected before normalisation could rewrite them
        if not self.check_path_traversal(candidate):
            return self._reject(candidate, "directory traversal sequence")

        normalized = normalize_path(candidate)
        if not self.check_path_traversal(normalized):
            return self._reject(candidate, "directory traversal sequence")

        if not normalized.startswith("/"):
            return self._reject(candidate, "path is not absolute")

        if not self.validate_file_extension(normalized, allowed_extensions):
            return self._reject(
                candidate,
                f"invalid extension {file_extension(normalized)!r}",
                code="invalid_extension",
            )

        real_base = self.fs.realpath(normalize_path(base_dir))
        if real_base is None:
            return self._reject(candidate, f"base directory {base_dir!r} not resolvable")

        if self.fs.exists(normalized):
            return self._validate_existing(candidate, normalized, real_base)

        return self._validate_nonexistent(
            candidate, normalized, normalize_path(base_dir), real_base, allowed_extensions
        )

    def _validate_existing(self, candidate: str, normalized: str, real_base: str) -> Result:
        real_path = self.fs.realpath(normalized)
        if real_path is None:
            return self._reject(candidate, "path could not be resolved")

        if real_path != normalized:
            return self._reject(
                candidate, "canonical path differs (symlink or path manipulation)"
            )

        if not self.is_within_base(real_path, real_base):
            return self._reject(candidate, f"outside allowed directory {real_base!r}")

        return Result.success(real_path)

    def _validate_nonexistent(
        self,
        candidate: str,
        normalized: str,
        base_dir: str,
        real_base: str,
        allowed_extensions: Iterable[str],
    ) -> Result:
        parent_dir = posixpath.dirname(normalized)
        filename = posixpath.basename(normalized)

        if any(token in parent_dir for token in UNSAFE_PARENT_TOKENS):
            return self._reject(candidate, "unsafe parent directory")

        # Textual containment first so arbitrary locations are never resolved
        if not (
            self.is_within_base(parent_dir, base_dir)
            or self.is_within_base(parent_dir, real_base)
        ):
            return self._reject(candidate, "parent directory outside allowed directory")

        real_parent = self.fs.realpath(parent_dir)
        if real_parent is None:
            return self._reject(candidate, "parent directory could not be resolved")

        if not self.is_within_base(real_parent, real_base):
            return self._reject(candidate, "parent directory resolves outside allowed directory")

        sanitized = self.sanitize_filename(filename)
        if sanitized is None:
            return self._reject(candidate, "filename contains invalid characters")

        if not self.validate_file_extension(sanitized, allowed_extensions):
            return self._reject(candidate, "sanitized filename has invalid extension")

        return Result.success(posixpath.join(real_parent, sanitized))
