"""
Export run orchestration.

One run walks a linear state machine:

    IDLE -> ENVIRONMENT_CHECKED -> DIRECTORIES_READY -> DATABASE_DUMPED
         -> ARCHIVED -> SCHEDULED -> DONE

and drops to FAILED from any step after IDLE. The database dump is an
intermediate artifact and is removed whether or not the archive step
succeeds.
"""

import posixpath
import re
import resource
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import psutil

from ..colored_logger import get_colored_logger
from ..core.activity_log import ExportLogger
from ..core.context import Requester, requester_scope
from ..core.models import ArchiveArtifact, ExportPaths
from ..core.result import ErrorKind, ExportError, Result
from ..io_ops.archive_builder import ArchiveBuilder
from ..io_ops.filesystem import Filesystem, delete_if_exists
from ..io_ops.path_guard import PathGuard
from .access import EXPORT_ACTION, AccessPolicy, ActionTokenService
from .dump_runner import DatabaseDumpRunner
from .lifecycle import ArtifactLifecycle, Notice
from .location import ExportLocation

logger = get_colored_logger(__name__)

EXECUTION_TIME_TARGET = 1800
DEFAULT_EXECUTION_TIME = 30
MIN_FREE_DISK_BYTES = 512 * 1024 * 1024

GUARD_FILE_NAME = "index.php"
GUARD_FILE_CONTENT = "<?php // Silence is golden."
SITE_ROOT_PLACEHOLDER = "[site-root]/"


class ExportState(Enum):
    IDLE = "idle"
    ENVIRONMENT_CHECKED = "environment_checked"
    DIRECTORIES_READY = "directories_ready"
    DATABASE_DUMPED = "database_dumped"
    ARCHIVED = "archived"
    SCHEDULED = "scheduled"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportOutcome:
    """What one export run reports back to its caller."""

    state: ExportState
    notice: Notice
    artifact: Optional[ArchiveArtifact] = None
    error: Optional[ExportError] = None
    download_url: str = ""
    delete_url: str = ""
    display_path: str = ""
    transitions: List[ExportState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is ExportState.DONE


class ExecutionBudget:
    """
    The host's execution-time ceiling, observed but never enforced.

    A configured value wins; otherwise the soft CPU limit of the process is
    used. Zero means unlimited.
    """

    def __init__(self, configured: Optional[int] = None):
        self.configured = configured

    def limit(self) -> int:
        if self.configured is not None:
            return max(0, int(self.configured))

        try:
            soft, _hard = resource.getrlimit(resource.RLIMIT_CPU)
        except (OSError, ValueError):
            return DEFAULT_EXECUTION_TIME

        if soft == resource.RLIM_INFINITY:
            return 0
        return int(soft)

    def is_sufficient(self, target: int = EXECUTION_TIME_TARGET) -> bool:
        limit = self.limit()
        return limit == 0 or limit >= target


def display_path(filepath: str, site_root: str) -> str:
    """Replace the site root with a placeholder so notices do not leak it."""
    root = site_root.rstrip("/") + "/"
    if root != "/" and filepath.startswith(root):
        filepath = SITE_ROOT_PLACEHOLDER + filepath[len(root):]
    return re.sub(r"/+", "/", filepath)


class ExportOrchestrator:
    """Drives one export run from environment check to scheduled cleanup."""

    def __init__(
        self,
        fs: Filesystem,
        location: ExportLocation,
        guard: PathGuard,
        dump_runner: DatabaseDumpRunner,
        builder: ArchiveBuilder,
        lifecycle: ArtifactLifecycle,
        tokens: ActionTokenService,
        policy: AccessPolicy,
        log: ExportLogger,
        site_root: str,
        budget: Optional[ExecutionBudget] = None,
        disk_usage: Callable = psutil.disk_usage,
    ):
        self.fs = fs
        self.location = location
        self.guard = guard
        self.dump_runner = dump_runner
        self.builder = builder
        self.lifecycle = lifecycle
        self.tokens = tokens
        self.policy = policy
        self.log = log.bind(__name__)
        self.site_root = site_root
        self.budget = budget or ExecutionBudget()
        self._disk_usage = disk_usage

        self.state = ExportState.IDLE
        self.transitions: List[ExportState] = []

    def _transition(self, state: ExportState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug("Export state -> %s", state.value)

    def check_environment(self) -> None:
        """Advisory only: a short budget or low disk space never stops the run."""
        limit = self.budget.limit()
        if 0 < limit < EXECUTION_TIME_TARGET:
            self.log.warning(
                "Execution time limit (%ds) may be insufficient for large exports (target %ds).",
                limit,
                EXECUTION_TIME_TARGET,
            )
        else:
            self.log.info("Execution time limit (%s) appears adequate.", limit or "unlimited")

        disk_path = self.location.uploads_dir or self.site_root
        while disk_path and not self.fs.exists(disk_path) and disk_path != "/":
            disk_path = posixpath.dirname(disk_path.rstrip("/"))
        try:
            free = self._disk_usage(disk_path or "/").free
        except OSError as e:
            logger.debug("Could not read free disk space at %s: %s", disk_path, e)
            return

        if free < MIN_FREE_DISK_BYTES:
            self.log.warning(
                "Low free disk space for export: %.0f MB available.", free / (1024 * 1024)
            )

    def create_index_file(self, directory: str) -> None:
        """Write the listing-guard file if it is missing."""
        index_path = posixpath.join(directory, GUARD_FILE_NAME)
        if self.fs.exists(index_path):
            return

        if not self.fs.is_writable(directory):
            self.log.error("Export directory not writable, guard file not created: %s", directory)
            return

        try:
            self.fs.write_text(index_path, GUARD_FILE_CONTENT)
        except OSError as e:
            self.log.error("Failed to create guard file in %s: %s", directory, e)

    def prepare_directories(self) -> Result:
        """Create the export directory and return its canonical ExportPaths."""
        paths = self.location.resolve()
        if not paths.ok:
            return paths

        export_dir = paths.value.export_dir
        try:
            self.fs.mkdir(export_dir)
        except OSError as e:
            self.log.error("Failed to create export directory %s: %s", export_dir, e)
            return Result.failure(
                ErrorKind.CONFIGURATION,
                "export_dir_error",
                "Could not create the export directory.",
            )

        # Resolve again now that the directory exists on disk
        paths = self.location.resolve()
        if not paths.ok:
            return paths

        self.create_index_file(paths.value.export_dir)
        return paths

    def cleanup_files(self, filepaths: List[str], export_dir: str) -> None:
        """Remove intermediate files, only ever from inside the export directory."""
        for filepath in filepaths:
            validated = self.guard.validate(filepath, export_dir, frozenset({"sql"}))
            if not validated.ok:
                self.log.warning("Skipped cleanup of unvalidated path: %s", filepath)
                continue

            if delete_if_exists(self.fs, validated.value):
                self.log.info("Cleaned up temporary file: %s", validated.value)
            else:
                self.log.error("Failed to clean up temporary file: %s", validated.value)

    def _fail(self, error: ExportError) -> ExportOutcome:
        self._transition(ExportState.FAILED)
        self.log.error("Export error: %s", error.message)
        return ExportOutcome(
            state=ExportState.FAILED,
            notice=Notice("error", f"Export failed: {error.message}"),
            error=error,
            transitions=list(self.transitions),
        )

    def run(self, requester: Requester) -> ExportOutcome:
        """Run one export on behalf of ``requester``."""
        with requester_scope(requester):
            self.state = ExportState.IDLE
            self.transitions = [ExportState.IDLE]

            self.check_environment()
            self._transition(ExportState.ENVIRONMENT_CHECKED)

            prepared = self.prepare_directories()
            if not prepared.ok:
                return self._fail(prepared.error)
            paths: ExportPaths = prepared.value
            self._transition(ExportState.DIRECTORIES_READY)

            dumped = self.dump_runner.dump(paths.export_dir)
            if not dumped.ok:
                return self._fail(dumped.error)
            dump_file = dumped.value
            self._transition(ExportState.DATABASE_DUMPED)

            try:
                archived = self.builder.build(self.site_root, paths.export_dir, dump_file)
            finally:
                self.cleanup_files([dump_file.filepath], paths.export_dir)

            if not archived.ok:
                return self._fail(archived.error)
            artifact: ArchiveArtifact = archived.value
            self._transition(ExportState.ARCHIVED)

            if not self.lifecycle.schedule_deletion(artifact):
                logger.debug("Deletion already scheduled for %s", artifact.filepath)
            self._transition(ExportState.SCHEDULED)

            real_root = self.fs.realpath(self.site_root) or self.site_root
            shown_path = display_path(artifact.filepath, real_root)
            self.log.info("Export successful. File saved to %s", artifact.filepath)
            self._transition(ExportState.DONE)

            return ExportOutcome(
                state=ExportState.DONE,
                notice=Notice(
                    "success",
                    f"Export successful! Archive {artifact.filename} saved to "
                    f"{shown_path}. It will be deleted automatically in 5 minutes.",
                ),
                artifact=artifact,
                download_url=self.lifecycle.download_url(artifact.filename, requester),
                delete_url=self.lifecycle.delete_url(artifact.filename, requester),
                display_path=shown_path,
                transitions=list(self.transitions),
            )

    def handle_request(self, requester: Requester, token: str) -> ExportOutcome:
        """Authenticate an export request, then run it."""
        with requester_scope(requester):
            if not self.tokens.verify(token, EXPORT_ACTION, requester.user_id):
                self.log.security("Export blocked - token verification failed")
                error = ExportError(
                    ErrorKind.VALIDATION, "invalid_token", "Security check failed. Please try again."
                )
            elif not self.policy.is_privileged(requester):
                self.log.security("Export blocked - insufficient privileges")
                error = ExportError(
                    ErrorKind.VALIDATION,
                    "insufficient_privileges",
                    "You do not have permission to export this site.",
                )
            else:
                return self.run(requester)

            self.transitions = [ExportState.IDLE]
            return ExportOutcome(
                state=ExportState.FAILED,
                notice=Notice("error", error.message),
                error=error,
                transitions=[ExportState.IDLE, ExportState.FAILED],
            )
