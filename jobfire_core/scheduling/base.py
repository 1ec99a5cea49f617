"""
Scheduling Base Types
=====================

Shared data structures, options and exceptions for the job scheduler.

Author: Jobfire Team
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field


# Literal interval meaning "run exactly once, no repeating timer".
RUN_ONCE = 0

TIMEOUT_MARKER = "timed out"


# =============================================================================
# Options
# =============================================================================


class JobOptions(BaseModel):
    """Execution policy for a job, set once at registration."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    interval_ms: Optional[int] = Field(
        default=None,
        description="Fixed period in milliseconds; 0 runs the job exactly once",
    )
    cron: Optional[str] = Field(default=None, description="Cron expression")
    retries: int = Field(default=0, ge=0)
    timeout_ms: int = Field(default=0, description="Per-attempt timeout, <= 0 disables it")
    repeat: bool = True
    allow_concurrent: bool = False
    params: Any = None
    run_on_start: bool = False

    @property
    def is_cron(self) -> bool:
        return self.cron is not None

    @property
    def is_interval(self) -> bool:
        return self.interval_ms is not None


# =============================================================================
# Context & Results
# =============================================================================


@dataclass
class JobContext:
    """
    Context handed to a work function for one attempt.

    The cancel event is set when the attempt times out; work functions are
    expected to observe it and stop promptly.
    """

    job_id: str
    logger: Any = None
    params: Any = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``asyncio.CancelledError`` if the attempt has been cancelled."""
        if self.cancel_event.is_set():
            raise asyncio.CancelledError(f"Job {self.job_id} was cancelled")

    async def wait_cancelled(self) -> None:
        await self.cancel_event.wait()

    def with_fresh_token(self) -> "JobContext":
        return JobContext(job_id=self.job_id, logger=self.logger, params=self.params)


WorkFunction = Callable[[JobContext, Any], Union[Awaitable[Any], Any]]


@dataclass
class JobResult:
    """Outcome of one ``Job.run`` call, after retries."""

    success: bool
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error)

    @property
    def is_timeout(self) -> bool:
        message = self.error_message
        return message is not None and TIMEOUT_MARKER in message

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "value": self.value}
        if self.error is not None:
            data["error"] = {
                "type": type(self.error).__name__,
                "message": str(self.error),
            }
        return data


@dataclass
class ExecutionRecord:
    """A single completed invocation of a job."""

    timestamp: datetime
    duration_ms: float
    result: Dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.result.get("success"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            timestamp=timestamp,
            duration_ms=float(data.get("duration_ms", 0)),
            result=dict(data.get("result") or {}),
        )


@dataclass
class JobExecutionStats:
    """Aggregate execution statistics for a job."""

    job_id: str
    success_count: int = 0
    failure_count: int = 0
    timeout_count: int = 0
    retry_failure_count: int = 0
    total_duration_ms: float = 0.0
    executions: List[ExecutionRecord] = field(default_factory=list)

    @property
    def total_runs(self) -> int:
        return self.success_count + self.failure_count

    @property
    def avg_duration_ms(self) -> float:
        if not self.total_runs:
            return 0.0
        return self.total_duration_ms / self.total_runs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "timeout_count": self.timeout_count,
            "retry_failure_count": self.retry_failure_count,
            "total_duration_ms": self.total_duration_ms,
            "executions": [record.to_dict() for record in self.executions],
        }


def get_default_logger() -> Any:
    return structlog.get_logger("jobfire.scheduler")


# =============================================================================
# Exceptions
# =============================================================================


class JobSchedulerError(Exception):
    """Base exception for scheduler errors."""
    pass


class DuplicateJobError(JobSchedulerError):
    """A job with the same id is already registered."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job with ID {job_id} already exists")


class JobNotFoundError(JobSchedulerError):
    """No job with the given id is registered."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job with ID {job_id} does not exist")


class InvalidScheduleError(JobSchedulerError):
    """Job options do not name exactly one schedule."""
    pass


class JobExecutionError(JobSchedulerError):
    """Base class for errors reported in a JobResult."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message)


class ConcurrentExecutionRejectedError(JobExecutionError):
    """The job is already running and does not allow concurrency."""

    def __init__(self, job_id: str):
        super().__init__(job_id, "Concurrent execution not allowed")


class AlreadyCompleteError(JobExecutionError):
    """A non-repeating job has already finished."""

    def __init__(self, job_id: str):
        super().__init__(
            job_id,
            f"Job {job_id} is already complete and will not retry further.",
        )


class JobTimeoutError(JobExecutionError):
    """An attempt exceeded its timeout."""

    def __init__(self, job_id: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(job_id, f"Job {job_id} {TIMEOUT_MARKER} after {timeout_ms}ms")


__all__ = [
    "RUN_ONCE",
    "TIMEOUT_MARKER",
    "JobOptions",
    "JobContext",
    "WorkFunction",
    "JobResult",
    "ExecutionRecord",
    "JobExecutionStats",
    "get_default_logger",
    "JobSchedulerError",
    "DuplicateJobError",
    "JobNotFoundError",
    "InvalidScheduleError",
    "JobExecutionError",
    "ConcurrentExecutionRejectedError",
    "AlreadyCompleteError",
    "JobTimeoutError",
]
