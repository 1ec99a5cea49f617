"""
Job execution state machine.

A Job owns one task's execution policy and run-time state and executes the
work function with timeout and retry handling.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Any, Optional

import structlog

from jobfire_core.scheduling import cron as cron_matcher
from jobfire_core.scheduling.base import (
    AlreadyCompleteError,
    ConcurrentExecutionRejectedError,
    JobContext,
    JobOptions,
    JobResult,
    JobTimeoutError,
    WorkFunction,
)

logger = structlog.get_logger(__name__)


class Job:
    """
    A schedulable unit of work.

    ``run`` never raises for work-function failures: every outcome, including
    timeouts and rejected concurrent calls, is reported as a JobResult.
    """

    def __init__(self, job_id: str, func: WorkFunction, options: Optional[JobOptions] = None):
        self._id = job_id
        self._func = func
        self._options = options or JobOptions()
        self.retries_remaining = self._options.retries
        self._active_runs = 0
        self._is_complete = False

    def __repr__(self) -> str:
        return (
            f"Job(id={self._id!r}, running={self.is_running}, "
            f"complete={self._is_complete})"
        )

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def should_run(self, instant: Optional[datetime] = None) -> bool:
        """True if this is a cron job whose expression fires at ``instant``."""
        if self._options.cron is None:
            return False
        return cron_matcher.matches(self._options.cron, instant or datetime.now())

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def run(self, context: JobContext) -> JobResult:
        log = context.logger or logger.bind(job_id=self._id)

        if self._is_complete and not self._options.repeat:
            log.warning("job_already_complete")
            return JobResult(success=False, error=AlreadyCompleteError(self._id))

        if self.is_running and not self._options.allow_concurrent:
            log.warning("job_concurrent_execution_rejected")
            return JobResult(success=False, error=ConcurrentExecutionRejectedError(self._id))

        self._active_runs += 1
        self.retries_remaining = self._options.retries
        retries_left = self._options.retries
        attempt_context = context

        try:
            while True:
                try:
                    value = await self.execute_with_timeout(attempt_context)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if retries_left > 0:
                        log.warning(
                            "job_attempt_failed",
                            error=str(e),
                            retries_left=retries_left,
                        )
                        retries_left -= 1
                        self.retries_remaining = retries_left
                        attempt_context = context.with_fresh_token()
                        continue

                    log.error("job_failed_after_retries", error=str(e), retries=self._options.retries)
                    if not self._options.repeat:
                        self._is_complete = True
                    return JobResult(success=False, error=e)

                if not self._options.repeat:
                    self._is_complete = True
                return JobResult(success=True, value=value)
        finally:
            self._active_runs -= 1

    async def execute_with_timeout(self, context: JobContext) -> Any:
        """
        Run one attempt of the work function.

        With a positive timeout the attempt is raced against the deadline. If
        the deadline wins, the context's cancel event is set and JobTimeoutError
        is raised without waiting for the work function any further.
        """
        timeout_ms = self._options.timeout_ms
        if timeout_ms <= 0:
            return await self._invoke(context)

        task = asyncio.ensure_future(self._invoke(context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            context.cancel()
            task.cancel()
            raise

        if task in done:
            return task.result()

        context.cancel()
        task.add_done_callback(self._discard_orphan)
        raise JobTimeoutError(self._id, timeout_ms)

    async def _invoke(self, context: JobContext) -> Any:
        result = self._func(context, self._options.params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _discard_orphan(self, task: "asyncio.Future[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        logger.debug(
            "job_orphaned_attempt_finished",
            job_id=self._id,
            error=str(error) if error else None,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def options(self) -> JobOptions:
        return self._options

    @property
    def interval_ms(self) -> Optional[int]:
        return self._options.interval_ms

    @property
    def cron(self) -> Optional[str]:
        return self._options.cron

    @property
    def is_cron(self) -> bool:
        return self._options.cron is not None

    @property
    def retries(self) -> int:
        return self._options.retries

    @property
    def timeout_ms(self) -> int:
        return self._options.timeout_ms

    @property
    def repeat(self) -> bool:
        return self._options.repeat

    @property
    def allow_concurrent(self) -> bool:
        return self._options.allow_concurrent

    @property
    def run_on_start(self) -> bool:
        return self._options.run_on_start

    @property
    def params(self) -> Any:
        return self._options.params

    @property
    def is_running(self) -> bool:
        return self._active_runs > 0

    @property
    def is_complete(self) -> bool:
        return self._is_complete


__all__ = ["Job"]
