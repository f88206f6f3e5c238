from .result import ErrorKind, ExportError, ExportFailure, Result
from .context import Requester, current_requester, requester_scope
from .state_store import StateStore, MemoryStateStore, SQLiteStateStore
from .activity_log import ActivityLog, ExportLogger, LogEntry
from .rate_limiter import DownloadRateLimiter
from .models import ArchiveArtifact, DatabaseDumpFile, ExportPaths

__all__ = [
    "ErrorKind",
    "ExportError",
    "ExportFailure",
    "Result",
    "Requester",
    "current_requester",
    "requester_scope",
    "StateStore",
    "MemoryStateStore",
    "SQLiteStateStore",
    "ActivityLog",
    "ExportLogger",
    "LogEntry",
    "DownloadRateLimiter",
    "ArchiveArtifact",
    "DatabaseDumpFile",
    "ExportPaths",
]
