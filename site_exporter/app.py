"""Wires exporter components together from Settings."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .core.activity_log import ActivityLog, ExportLogger
from .core.context import Requester
from .core.rate_limiter import DownloadRateLimiter
from .core.state_store import MemoryStateStore, SQLiteStateStore, StateStore
from .export.access import MANAGE_CAPABILITY, AccessPolicy, ActionTokenService
from .export.dump_runner import BinaryLocator, DatabaseDumpRunner, ShellRunner
from .export.lifecycle import ArtifactLifecycle, ExportFileValidator
from .export.location import ExportLocation
from .export.orchestrator import ExecutionBudget, ExportOrchestrator
from .io_ops.archive_builder import ArchiveBuilder
from .io_ops.filesystem import Filesystem, LocalFilesystem
from .io_ops.path_guard import PathGuard
from .scheduler.job_queue import JobQueue
from .settings import MEMORY_STATE_DB, Settings

logger = logging.getLogger(__name__)


@dataclass
class Exporter:
    """Every long-lived component of one exporter instance."""

    settings: Settings
    fs: Filesystem
    store: StateStore
    activity_log: ActivityLog
    log: ExportLogger
    jobs: JobQueue
    tokens: ActionTokenService
    policy: AccessPolicy
    lifecycle: ArtifactLifecycle
    orchestrator: ExportOrchestrator

    def operator(self) -> Requester:
        """The requester used for commands issued from the operator's shell."""
        return Requester(
            user_id=self.settings.cli_user_id,
            ip="cli",
            capabilities=frozenset({MANAGE_CAPABILITY}),
            referer=self.settings.admin_url,
        )

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


def build_exporter(
    settings: Settings,
    fs: Optional[Filesystem] = None,
    store: Optional[StateStore] = None,
    shell: Optional[ShellRunner] = None,
    clock: Callable[[], float] = time.time,
) -> Exporter:
    fs = fs or LocalFilesystem()
    if store is None:
        if settings.state_db == MEMORY_STATE_DB:
            logger.warning(
                "Using in-memory state; scheduled deletions and logs are lost on exit."
            )
            store = MemoryStateStore(clock=clock)
        else:
            store = SQLiteStateStore(settings.state_db, clock=clock)
    shell = shell or ShellRunner()

    activity_log = ActivityLog(store, clock=clock)
    log = ExportLogger(activity_log)
    guard = PathGuard(fs, log)
    location = ExportLocation(fs, settings.uploads_dir, settings.uploads_url)
    tokens = ActionTokenService(settings.token_secret, clock=clock)
    policy = AccessPolicy(settings.admin_url)
    jobs = JobQueue(store, log, clock=clock)

    lifecycle = ArtifactLifecycle(
        fs=fs,
        validator=ExportFileValidator(fs, guard, policy, location, log),
        rate_limiter=DownloadRateLimiter(store, clock=clock),
        tokens=tokens,
        policy=policy,
        jobs=jobs,
        log=log,
        clock=clock,
    )
    dump_runner = DatabaseDumpRunner(
        shell,
        BinaryLocator(shell, fs),
        fs,
        log,
        site_root=settings.site_root,
        site_name=settings.site_name,
        clock=clock,
    )
    orchestrator = ExportOrchestrator(
        fs=fs,
        location=location,
        guard=guard,
        dump_runner=dump_runner,
        builder=ArchiveBuilder(fs, guard, log, settings.site_name, clock=clock),
        lifecycle=lifecycle,
        tokens=tokens,
        policy=policy,
        log=log,
        site_root=settings.site_root,
        budget=ExecutionBudget(settings.max_execution_time),
    )

    return Exporter(
        settings=settings,
        fs=fs,
        store=store,
        activity_log=activity_log,
        log=log,
        jobs=jobs,
        tokens=tokens,
        policy=policy,
        lifecycle=lifecycle,
        orchestrator=orchestrator,
    )
