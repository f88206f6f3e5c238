"""
Deferred one-shot jobs persisted in the state store.

A job is identified by its hook name plus its JSON-encoded arguments, so
scheduling the same hook with the same arguments twice registers only one
job. Jobs are removed before their handler runs and are never retried.
"""

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..colored_logger import get_colored_logger
from ..core.activity_log import ExportLogger
from ..core.state_store import StateStore

logger = get_colored_logger(__name__)

JOBS_STORE_KEY = "sse_scheduled_jobs"


def job_key(hook: str, args: Dict[str, Any]) -> str:
    return f"{hook}:{json.dumps(args, sort_keys=True)}"


@dataclass
class ScheduledJob:
    """A handler invocation due at ``run_at`` (epoch seconds)."""

    hook: str
    run_at: float
    args: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.hook:
            raise ValueError("Job hook cannot be empty")

    @property
    def key(self) -> str:
        return job_key(self.hook, self.args)


@dataclass
class JobRun:
    """Outcome of firing one job."""

    job: ScheduledJob
    succeeded: bool
    error: Optional[str] = None


class JobQueue:
    """Message-passing queue of deferred jobs with idempotent registration."""

    def __init__(
        self,
        store: StateStore,
        log: ExportLogger,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.log = log.bind(__name__)
        self._clock = clock
        self._handlers: Dict[str, Callable[..., Any]] = {}

    def register(self, hook: str, handler: Callable[..., Any]) -> None:
        """Route jobs named ``hook`` to ``handler(**args)``."""
        self._handlers[hook] = handler

    def _load(self) -> List[ScheduledJob]:
        jobs = []
        for item in self.store.get(JOBS_STORE_KEY, []) or []:
            try:
                jobs.append(ScheduledJob(**item))
            except (TypeError, ValueError) as e:
                logger.warning("Dropping malformed scheduled job %r: %s", item, e)
        return jobs

    def _save(self, jobs: List[ScheduledJob]) -> None:
        self.store.set(JOBS_STORE_KEY, [asdict(job) for job in jobs])

    def pending(self) -> List[ScheduledJob]:
        return sorted(self._load(), key=lambda job: job.run_at)

    def is_scheduled(self, hook: str, args: Dict[str, Any]) -> bool:
        key = job_key(hook, args)
        return any(job.key == key for job in self._load())

    def schedule(self, hook: str, run_at: float, args: Dict[str, Any]) -> bool:
        """
        Register a one-shot job.

        Returns:
            False if an identical job is already pending
        """
        jobs = self._load()
        job = ScheduledJob(hook=hook, run_at=run_at, args=dict(args))

        if any(existing.key == job.key for existing in jobs):
            logger.debug("Job already scheduled: %s", job.key)
            return False

        jobs.append(job)
        self._save(jobs)
        logger.debug("Scheduled %s at %.0f", job.key, run_at)
        return True

    def unschedule(self, hook: str, args: Dict[str, Any]) -> bool:
        key = job_key(hook, args)
        jobs = self._load()
        remaining = [job for job in jobs if job.key != key]
        if len(remaining) == len(jobs):
            return False
        self._save(remaining)
        return True

    def run_due(self, now: Optional[float] = None) -> List[JobRun]:
        """Fire every job whose time has come, each exactly once."""
        now = self._clock() if now is None else now
        runs: List[JobRun] = []

        for job in self.pending():
            if job.run_at > now:
                continue

            # Remove first: a failing handler must not be fired again
            self.unschedule(job.hook, job.args)

            handler = self._handlers.get(job.hook)
            if handler is None:
                self.log.error("No handler registered for scheduled job: %s", job.hook)
                runs.append(JobRun(job, False, "no handler registered"))
                continue

            try:
                result = handler(**job.args)
            except Exception as e:
                self.log.error("Scheduled job %s failed: %s", job.hook, e)
                runs.append(JobRun(job, False, str(e)))
                continue

            # Handlers that return nothing are treated as successful
            if result is None or result:
                runs.append(JobRun(job, True))
            else:
                runs.append(JobRun(job, False, "handler reported failure"))

        return runs
