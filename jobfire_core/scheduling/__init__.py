# Job scheduling: job state machine, scheduler loop, cron matching

from jobfire_core.scheduling.base import (
    RUN_ONCE,
    AlreadyCompleteError,
    ConcurrentExecutionRejectedError,
    DuplicateJobError,
    ExecutionRecord,
    InvalidScheduleError,
    JobContext,
    JobExecutionError,
    JobExecutionStats,
    JobNotFoundError,
    JobOptions,
    JobResult,
    JobSchedulerError,
    JobTimeoutError,
)
from jobfire_core.scheduling.job import Job
from jobfire_core.scheduling.scheduler import JobScheduler

__all__ = [
    "RUN_ONCE",
    "AlreadyCompleteError",
    "ConcurrentExecutionRejectedError",
    "DuplicateJobError",
    "ExecutionRecord",
    "InvalidScheduleError",
    "Job",
    "JobContext",
    "JobExecutionError",
    "JobExecutionStats",
    "JobNotFoundError",
    "JobOptions",
    "JobResult",
    "JobScheduler",
    "JobSchedulerError",
    "JobTimeoutError",
]
