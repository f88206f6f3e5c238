"""
Tagged result type shared by every fallible exporter operation.

Operations return ``Result`` instead of raising, so callers can branch on
``result.ok`` and translate the ``ExportError`` into a notice or an HTTP
status without inspecting exception types.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure categories for export and artifact operations."""

    CONFIGURATION = "configuration_error"
    TOOL_UNAVAILABLE = "tool_unavailable"
    DUMP_FAILED = "dump_failed"
    ARCHIVE_OPEN = "archive_open"
    ARCHIVE_ENTRY = "archive_entry"
    ARCHIVE_FINALIZE = "archive_finalize"
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ExportError:
    """A failure with a stable machine code and a user-facing message."""

    kind: ErrorKind
    code: str
    message: str

    def __str__(self) -> str:
        return self.message


class ExportFailure(Exception):
    """Raised by ``Result.unwrap`` when the result holds an error."""

    def __init__(self, error: ExportError):
        super().__init__(error.message)
        self.error = error


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ExportError] = None

    @classmethod
    def success(cls, value: Any = True) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, code: str, message: str) -> "Result":
        return cls(error=ExportError(kind, code, message))

    @classmethod
    def from_error(cls, error: ExportError) -> "Result":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ExportFailure(self.error)
        return self.value
