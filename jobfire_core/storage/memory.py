"""In-memory job result store."""

from __future__ import annotations

from typing import Dict, List, Optional

from jobfire_core.scheduling.base import JobExecutionStats, JobResult
from jobfire_core.storage.base import JobStore, apply_result


class InMemoryJobStore(JobStore):
    """Process-local store for development, tests and single-process use.

    Warning: history is lost when the process exits.
    """

    def __init__(self):
        self._stats: Dict[str, JobExecutionStats] = {}

    async def save_job_result(
        self,
        job_id: str,
        result: JobResult,
        duration_ms: float,
    ) -> None:
        stats = self._stats.get(job_id)
        if stats is None:
            stats = JobExecutionStats(job_id=job_id)
            self._stats[job_id] = stats
        apply_result(stats, result, duration_ms)

    async def get_job_history(self, job_id: str) -> Optional[JobExecutionStats]:
        return self._stats.get(job_id)

    def job_ids(self) -> List[str]:
        return list(self._stats)

    def clear(self) -> None:
        self._stats.clear()
