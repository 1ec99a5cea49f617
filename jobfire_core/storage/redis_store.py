"""
Redis Job Result Store
======================

Stores job statistics in Redis so several processes can share history.

Layout per job:
    {prefix}:{job_id}:stats              hash of aggregate counters
    {prefix}:{job_id}:stats:executions   list of JSON execution records

Usage:
    store = RedisJobStore.from_url("redis://localhost:6379/0")
    scheduler = JobScheduler(store=store)
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import redis.asyncio as redis
import structlog

from jobfire_core.scheduling.base import (
    ExecutionRecord,
    JobExecutionStats,
    JobResult,
)
from jobfire_core.storage.base import (
    JobStore,
    build_execution_record,
    counter_increments,
)

logger = structlog.get_logger(__name__)

_INT_COUNTERS = (
    "success_count",
    "failure_count",
    "timeout_count",
    "retry_failure_count",
)


class RedisJobStore(JobStore):
    """Redis-backed job result store.

    Counters are updated with HINCRBY inside a MULTI/EXEC pipeline, so
    concurrent writers never lose increments.
    """

    def __init__(
        self,
        client: "redis.Redis",
        key_prefix: str = "job",
    ):
        """Initialize the store.

        Args:
            client: Redis client created with ``decode_responses=True``
            key_prefix: Prefix for Redis keys
        """
        self._redis = client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str = "redis://localhost:6379/0", key_prefix: str = "job") -> "RedisJobStore":
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        return cls(client, key_prefix=key_prefix)

    def _stats_key(self, job_id: str) -> str:
        return f"{self._key_prefix}:{job_id}:stats"

    def _executions_key(self, job_id: str) -> str:
        return f"{self._stats_key(job_id)}:executions"

    async def save_job_result(
        self,
        job_id: str,
        result: JobResult,
        duration_ms: float,
    ) -> None:
        increments = counter_increments(result, duration_ms)
        record = build_execution_record(result, duration_ms)
        stats_key = self._stats_key(job_id)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(stats_key, "job_id", job_id)
            for name in _INT_COUNTERS:
                pipe.hincrby(stats_key, name, increments[name])
            pipe.hincrbyfloat(stats_key, "total_duration_ms", increments["total_duration_ms"])
            pipe.rpush(self._executions_key(job_id), json.dumps(record.to_dict(), default=str))
            await pipe.execute()

        logger.debug("redis_job_result_saved", job_id=job_id, success=result.success)

    async def get_job_history(self, job_id: str) -> Optional[JobExecutionStats]:
        stats: Dict[str, Any] = await self._redis.hgetall(self._stats_key(job_id))
        if not stats:
            return None

        raw_executions = await self._redis.lrange(self._executions_key(job_id), 0, -1)
        executions = [ExecutionRecord.from_dict(json.loads(raw)) for raw in raw_executions]

        return JobExecutionStats(
            job_id=job_id,
            success_count=int(stats.get("success_count", 0)),
            failure_count=int(stats.get("failure_count", 0)),
            timeout_count=int(stats.get("timeout_count", 0)),
            retry_failure_count=int(stats.get("retry_failure_count", 0)),
            total_duration_ms=float(stats.get("total_duration_ms", 0)),
            executions=executions,
        )

    async def delete_job_history(self, job_id: str) -> None:
        await self._redis.delete(self._stats_key(job_id), self._executions_key(job_id))

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()
