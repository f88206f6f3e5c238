from .access import (
    DELETE_ACTION,
    DOWNLOAD_ACTION,
    EXPORT_ACTION,
    MANAGE_CAPABILITY,
    AccessPolicy,
    ActionTokenService,
)
from .dump_runner import BinaryLocator, DatabaseDumpRunner, ShellRunner
from .location import EXPORT_DIR_NAME, ExportLocation
from .lifecycle import (
    ArtifactLifecycle,
    ArtifactRequest,
    DeleteResponse,
    DownloadResponse,
    ExportFileValidator,
    Notice,
)
from .orchestrator import ExecutionBudget, ExportOrchestrator, ExportOutcome, ExportState

__all__ = [
    "DELETE_ACTION",
    "DOWNLOAD_ACTION",
    "EXPORT_ACTION",
    "MANAGE_CAPABILITY",
    "AccessPolicy",
    "ActionTokenService",
    "BinaryLocator",
    "DatabaseDumpRunner",
    "ShellRunner",
    "EXPORT_DIR_NAME",
    "ExportLocation",
    "ArtifactLifecycle",
    "ArtifactRequest",
    "DeleteResponse",
    "DownloadResponse",
    "ExportFileValidator",
    "Notice",
    "ExecutionBudget",
    "ExportOrchestrator",
    "ExportOutcome",
    "ExportState",
]
