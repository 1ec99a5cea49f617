"""
Job Result Storage
==================

Storage contract for per-job execution outcomes and aggregate counters.

Backends:
    - InMemoryJobStore: process-local, default
    - RedisJobStore: Redis hashes and lists
    - MongoJobStore: one MongoDB document per job

Usage:
    store = InMemoryJobStore()
    await store.save_job_result("nightly-report", result, duration_ms=12.5)
    stats = await store.get_job_history("nightly-report")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jobfire_core.scheduling.base import (
    ExecutionRecord,
    JobExecutionStats,
    JobResult,
)


class JobStore(ABC):
    """Abstract base class for job result stores."""

    @abstractmethod
    async def save_job_result(
        self,
        job_id: str,
        result: JobResult,
        duration_ms: float,
    ) -> None:
        """Record one completed invocation.

        Safe for unseen job ids (creates fresh stats) and for existing ones
        (increments counters and appends an execution record).

        Args:
            job_id: Job identifier
            result: Outcome of the invocation
            duration_ms: Wall-clock duration in milliseconds
        """
        pass

    @abstractmethod
    async def get_job_history(self, job_id: str) -> Optional[JobExecutionStats]:
        """Get aggregate stats and execution records for a job.

        Returns:
            The stats, or None if nothing was ever recorded for the job
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


def counter_increments(result: JobResult, duration_ms: float) -> Dict[str, Any]:
    """Counter deltas for one result.

    Failures are split into timeouts (error message mentions "timed out")
    and all other failures.
    """
    increments: Dict[str, Any] = {
        "success_count": 0,
        "failure_count": 0,
        "timeout_count": 0,
        "retry_failure_count": 0,
        "total_duration_ms": float(duration_ms),
    }
    if result.success:
        increments["success_count"] = 1
    else:
        increments["failure_count"] = 1
        if result.is_timeout:
            increments["timeout_count"] = 1
        else:
            increments["retry_failure_count"] = 1
    return increments


def build_execution_record(
    result: JobResult,
    duration_ms: float,
    timestamp: Optional[datetime] = None,
) -> ExecutionRecord:
    """Build the history entry for one result, stamped in naive UTC."""
    return ExecutionRecord(
        timestamp=timestamp or datetime.now(timezone.utc).replace(tzinfo=None),
        duration_ms=float(duration_ms),
        result=result.to_dict(),
    )


def apply_result(
    stats: JobExecutionStats,
    result: JobResult,
    duration_ms: float,
) -> JobExecutionStats:
    """Accumulate one result into ``stats`` in place."""
    increments = counter_increments(result, duration_ms)
    stats.success_count += increments["success_count"]
    stats.failure_count += increments["failure_count"]
    stats.timeout_count += increments["timeout_count"]
    stats.retry_failure_count += increments["retry_failure_count"]
    stats.total_duration_ms += increments["total_duration_ms"]
    stats.executions.append(build_execution_record(result, duration_ms))
    return stats


__all__ = [
    "JobStore",
    "counter_increments",
    "build_execution_record",
    "apply_result",
]
