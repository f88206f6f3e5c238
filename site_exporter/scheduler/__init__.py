"""
Scheduler module for deferred artifact cleanup.

This module provides:
- One-shot jobs registered by hook name and arguments
- Idempotent registration keyed by hook + arguments
- Persistence through the injected state store
"""

from .job_queue import JobQueue, JobRun, ScheduledJob, job_key

__all__ = ["JobQueue", "JobRun", "ScheduledJob", "job_key"]
