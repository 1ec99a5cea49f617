"""
Jobfire
=======

In-process asyncio job scheduler.

This package provides:
- Interval, run-once and cron scheduling
- Bounded-concurrency execution queue
- Per-attempt timeouts, cooperative cancellation and immediate retries
- Pluggable execution history stores (memory, Redis, MongoDB)
"""

from jobfire_core.scheduling import (
    RUN_ONCE,
    AlreadyCompleteError,
    ConcurrentExecutionRejectedError,
    DuplicateJobError,
    InvalidScheduleError,
    Job,
    JobContext,
    JobExecutionStats,
    JobNotFoundError,
    JobOptions,
    JobResult,
    JobScheduler,
    JobSchedulerError,
    JobTimeoutError,
)
from jobfire_core.storage import InMemoryJobStore, JobStore

__version__ = "1.0.0"

__all__ = [
    "RUN_ONCE",
    "AlreadyCompleteError",
    "ConcurrentExecutionRejectedError",
    "DuplicateJobError",
    "InvalidScheduleError",
    "Job",
    "JobContext",
    "JobExecutionStats",
    "JobNotFoundError",
    "JobOptions",
    "JobResult",
    "JobScheduler",
    "JobSchedulerError",
    "JobTimeoutError",
    "InMemoryJobStore",
    "JobStore",
]
