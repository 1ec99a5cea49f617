"""MongoDB job result store, one document per job id."""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from pymongo import AsyncMongoClient

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


class MongoJobStore(JobStore):
    """MongoDB-backed job result store.

    Each result is written with a single upserting ``update_one`` using
    ``$inc`` for counters and ``$push`` for the execution record.
    """

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017",
        database: str = "jobfire",
        collection: str = "job_stats",
        client: Optional[AsyncMongoClient] = None,
        **kwargs: Any,
    ):
        self.client = client if client is not None else AsyncMongoClient(uri, **kwargs)
        self.db = self.client[database]
        self.collection = self.db[collection]

    async def connect(self) -> None:
        """Verify the server is reachable."""
        await self.client.admin.command("ping")
        logger.info("mongo_job_store_connected", database=self.db.name)

    async def save_job_result(
        self,
        job_id: str,
        result: JobResult,
        duration_ms: float,
    ) -> None:
        increments = counter_increments(result, duration_ms)
        record = build_execution_record(result, duration_ms)

        await self.collection.update_one(
            {"_id": job_id},
            {
                "$inc": increments,
                "$push": {"executions": record.to_dict()},
                "$setOnInsert": {"job_id": job_id},
            },
            upsert=True,
        )

    async def get_job_history(self, job_id: str) -> Optional[JobExecutionStats]:
        doc: Optional[Dict[str, Any]] = await self.collection.find_one({"_id": job_id})
        if not doc:
            return None

        return JobExecutionStats(
            job_id=job_id,
            success_count=int(doc.get("success_count", 0)),
            failure_count=int(doc.get("failure_count", 0)),
            timeout_count=int(doc.get("timeout_count", 0)),
            retry_failure_count=int(doc.get("retry_failure_count", 0)),
            total_duration_ms=float(doc.get("total_duration_ms", 0)),
            executions=[ExecutionRecord.from_dict(item) for item in doc.get("executions", [])],
        )

    async def delete_job_history(self, job_id: str) -> None:
        await self.collection.delete_one({"_id": job_id})

    async def close(self) -> None:
        await self.client.close()
