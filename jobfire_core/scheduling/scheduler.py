"""
Job Scheduler
=============

In-process asyncio scheduler for interval and cron jobs with bounded
concurrency.

Features:
- Fixed-interval and cron scheduling
- Run-once jobs
- FIFO admission queue with a concurrency ceiling
- Per-attempt timeouts with cooperative cancellation
- Immediate retries
- Pluggable result storage

Author: Jobfire Team
Version: 1.0.0
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from jobfire_core.config import SchedulerSettings, get_settings
from jobfire_core.scheduling import cron as cron_matcher
from jobfire_core.scheduling.base import (
    DuplicateJobError,
    InvalidScheduleError,
    JobContext,
    JobExecutionStats,
    JobNotFoundError,
    JobOptions,
    JobResult,
    JobSchedulerError,
    WorkFunction,
    get_default_logger,
)
from jobfire_core.scheduling.job import Job
from jobfire_core.storage.base import JobStore
from jobfire_core.storage.memory import InMemoryJobStore


class JobScheduler:
    """
    Central job scheduling system.

    Owns the job registries, the cron tick, per-job interval timers and the
    bounded execution queue. All scheduling state is mutated from the event
    loop thread only.

    Usage:
        async with JobScheduler(max_concurrent_jobs=2) as scheduler:

            @scheduler.job("cleanup", interval_ms=60_000, timeout_ms=5_000)
            async def cleanup(context: JobContext, params: Any) -> None:
                await purge_expired(stop=context.cancel_event)

            scheduler.add_job("report", build_report, cron="0 9 * * 1-5", retries=2)
    """

    def __init__(
        self,
        config: Optional[SchedulerSettings] = None,
        *,
        store: Optional[JobStore] = None,
        logger: Any = None,
        max_concurrent_jobs: Optional[int] = None,
        debug: Optional[bool] = None,
    ):
        settings = config or get_settings()

        self._interval_jobs: Dict[str, Job] = {}
        self._cron_jobs: Dict[str, Job] = {}
        self._queue: Deque[Job] = deque()
        self._running_jobs: Counter = Counter()
        self._job_timers: Dict[str, asyncio.Task] = {}
        self._tick_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._last_cron_fire: Dict[str, datetime] = {}

        self._max_concurrent_jobs = (
            settings.max_concurrent_jobs if max_concurrent_jobs is None else max_concurrent_jobs
        )
        if self._max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        self._debug = settings.debug if debug is None else debug
        self._tick_interval = settings.tick_interval_seconds
        self._store: JobStore = store if store is not None else InMemoryJobStore()
        self._logger = logger if logger is not None else get_default_logger()

        self._started = False
        self._is_processing = False
        self._is_stopping = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the cron tick. Must be called from a running event loop."""
        if self._started:
            return
        loop = self._get_loop()
        self._started = True
        self._tick_task = loop.create_task(self._tick_loop())
        self._log_debug("scheduler_started", max_concurrent_jobs=self._max_concurrent_jobs)

    def clear_all_timers(self) -> None:
        """Cancel the cron tick and every interval timer.

        In-flight executions keep running and already-queued jobs stay queued.
        """
        self._cancel_timers()
        self._log_debug("scheduler_timers_cleared")

    async def shutdown(self, wait: bool = True) -> None:
        """Stop all timers, then wait for (or cancel) in-flight executions.

        With ``wait=True`` the queue is drained first: jobs still queued are
        started as slots free up and awaited too. With ``wait=False`` the
        queue is discarded and running executions are cancelled.
        """
        timers = self._cancel_timers()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

        if not wait:
            self._is_stopping = True
            self._queue.clear()

        awaited = 0
        try:
            # Finishing executions re-drain the queue, so keep going until
            # no execution task is left.
            while self._tasks:
                tasks = list(self._tasks)
                if not wait:
                    for task in tasks:
                        task.cancel()
                awaited += len(tasks)
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._is_stopping = False

        self._log_debug("scheduler_stopped", executions_awaited=awaited)

    async def __aenter__(self) -> "JobScheduler":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown(wait=True)

    @property
    def is_running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    # -------------------------------------------------------------------------
    # Job Registration
    # -------------------------------------------------------------------------

    def add_job(
        self,
        job_id: str,
        func: WorkFunction,
        options: Optional[JobOptions] = None,
        **option_kwargs: Any,
    ) -> Job:
        """
        Register a job.

        Args:
            job_id: Unique job identifier
            func: Work function called as ``func(context, params)``
            options: Job options; keyword arguments override its fields
            **option_kwargs: JobOptions fields (interval_ms, cron, retries, ...)

        Returns:
            The registered Job

        Raises:
            DuplicateJobError: If the id is already registered
            InvalidScheduleError: Unless exactly one of cron / interval_ms is set
        """
        if job_id in self._interval_jobs or job_id in self._cron_jobs:
            raise DuplicateJobError(job_id)

        if options is None:
            options = JobOptions(**option_kwargs)
        elif option_kwargs:
            options = JobOptions.model_validate({**options.model_dump(), **option_kwargs})
        self._validate_schedule(job_id, options)

        self.start()
        job = Job(job_id, func, options)

        if options.is_cron:
            self._cron_jobs[job_id] = job
            self._log_debug("cron_job_scheduled", job_id=job_id, cron=options.cron)
        else:
            self._interval_jobs[job_id] = job
            self._schedule_interval_job(job)

        if options.run_on_start:
            self.enqueue_job(job)

        self.process_queue()
        return job

    def job(
        self,
        job_id: str,
        options: Optional[JobOptions] = None,
        **option_kwargs: Any,
    ) -> Callable[[WorkFunction], WorkFunction]:
        """Decorator to register a work function as a job"""
        def decorator(func: WorkFunction) -> WorkFunction:
            self.add_job(job_id, func, options, **option_kwargs)
            return func
        return decorator

    def remove_job(self, job_id: str) -> None:
        """
        Stop scheduling a job.

        An in-flight invocation is not cancelled.

        Raises:
            JobNotFoundError: If no job with this id is registered
        """
        timer = self._job_timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()

        job = self._interval_jobs.pop(job_id, None) or self._cron_jobs.pop(job_id, None)
        if job is None:
            raise JobNotFoundError(job_id)

        self._last_cron_fire.pop(job_id, None)
        if job in self._queue:
            self._queue.remove(job)
        self._log_debug("job_removed", job_id=job_id)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._interval_jobs.get(job_id) or self._cron_jobs.get(job_id)

    @property
    def jobs(self) -> List[Job]:
        return list(self._interval_jobs.values()) + list(self._cron_jobs.values())

    def _validate_schedule(self, job_id: str, options: JobOptions) -> None:
        if options.is_cron == options.is_interval:
            raise InvalidScheduleError(
                f"Job {job_id} must specify either an interval or a cron pattern."
            )
        if options.is_interval and options.interval_ms < 0:
            raise InvalidScheduleError(
                f"Job {job_id} has a negative interval: {options.interval_ms}ms"
            )
        if options.is_cron and not cron_matcher.is_valid(options.cron):
            self._logger.warning("cron_expression_invalid", job_id=job_id, cron=options.cron)

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def _schedule_interval_job(self, job: Job) -> None:
        if not job.interval_ms:
            self.enqueue_job(job)
            return

        loop = self._get_loop()
        self._job_timers[job.id] = loop.create_task(self._interval_loop(job))
        self._log_debug("interval_job_scheduled", job_id=job.id, interval_ms=job.interval_ms)

    async def _interval_loop(self, job: Job) -> None:
        interval = job.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                if job.is_complete and not job.repeat:
                    if self._job_timers.get(job.id) is asyncio.current_task():
                        del self._job_timers[job.id]
                    self._log_debug("job_schedule_finished", job_id=job.id)
                    return

                if self._can_dispatch(job):
                    self.enqueue_job(job)
                else:
                    self._logger.warning("job_firing_skipped_running", job_id=job.id)
            except Exception as e:
                self._logger.error("interval_timer_error", job_id=job.id, error=str(e))

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            try:
                self.tick()
            except Exception as e:
                self._logger.error("scheduler_tick_error", error=str(e))

    def tick(self, now: Optional[datetime] = None) -> None:
        """Enqueue every cron job that fires at ``now``, once per minute."""
        now = now or datetime.now()
        minute = now.replace(second=0, microsecond=0)

        for job in list(self._cron_jobs.values()):
            if job.is_complete and not job.repeat:
                continue
            if self._last_cron_fire.get(job.id) == minute:
                continue
            if job.should_run(now):
                self._last_cron_fire[job.id] = minute
                self.enqueue_job(job)

    def _cancel_timers(self) -> List[asyncio.Task]:
        timers = list(self._job_timers.values())
        if self._tick_task is not None:
            timers.append(self._tick_task)
            self._tick_task = None
        self._job_timers = {}

        for timer in timers:
            timer.cancel()
        return timers

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def enqueue_job(self, job: Job) -> None:
        """Queue a job for execution unless it is already queued."""
        if job not in self._queue:
            self._queue.append(job)
        self.process_queue()

    def process_queue(self) -> None:
        """Dispatch queued jobs while concurrency slots are free."""
        if self._is_processing or self._is_stopping:
            return
        self._is_processing = True

        try:
            while self._queue and self.running_count < self._max_concurrent_jobs:
                job = self._queue.popleft()
                if self._can_dispatch(job):
                    self._dispatch(job)
                else:
                    self._logger.warning("job_dispatch_skipped_running", job_id=job.id)
        except Exception as e:
            self._logger.error("queue_processing_error", error=str(e))
        finally:
            self._is_processing = False

    def _can_dispatch(self, job: Job) -> bool:
        if job.allow_concurrent:
            return True
        return not job.is_running and job.id not in self._running_jobs

    def _dispatch(self, job: Job) -> None:
        self._running_jobs[job.id] += 1
        task = self._get_loop().create_task(self._execute(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_job(self, job: Job) -> JobResult:
        """Run a job now, bypassing the queue but holding a concurrency slot."""
        self._running_jobs[job.id] += 1
        return await self._execute(job)

    async def _execute(self, job: Job) -> JobResult:
        context = JobContext(
            job_id=job.id,
            logger=self._logger.bind(job_id=job.id),
            params=job.params,
        )
        self._log_debug("job_executing", job_id=job.id)
        started = time.perf_counter()

        try:
            try:
                result = await job.run(context)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                result = JobResult(success=False, error=e)
            duration_ms = (time.perf_counter() - started) * 1000

            try:
                await self._store.save_job_result(job.id, result, duration_ms)
            except Exception as e:
                self._logger.error("job_result_save_failed", job_id=job.id, error=str(e))

            if result.success:
                self._log_debug("job_completed", job_id=job.id, duration_ms=round(duration_ms, 2))
            else:
                self._logger.error(
                    "job_failed",
                    job_id=job.id,
                    duration_ms=round(duration_ms, 2),
                    error=result.error_message,
                )
            return result
        finally:
            self._release(job.id)
            self.process_queue()

    def _release(self, job_id: str) -> None:
        self._running_jobs[job_id] -= 1
        if self._running_jobs[job_id] <= 0:
            del self._running_jobs[job_id]

    # -------------------------------------------------------------------------
    # History & Status
    # -------------------------------------------------------------------------

    async def get_job_history(self, job_id: str) -> Optional[JobExecutionStats]:
        """Get execution stats for a job, or None if it never ran."""
        return await self._store.get_job_history(job_id)

    @property
    def running_count(self) -> int:
        return sum(self._running_jobs.values())

    @property
    def running_job_ids(self) -> Set[str]:
        return set(self._running_jobs)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def max_concurrent_jobs(self) -> int:
        return self._max_concurrent_jobs

    @property
    def store(self) -> JobStore:
        return self._store

    def get_metrics(self) -> Dict[str, Any]:
        """Get scheduler metrics"""
        return {
            "interval_jobs": len(self._interval_jobs),
            "cron_jobs": len(self._cron_jobs),
            "active_timers": len(self._job_timers),
            "queue_size": len(self._queue),
            "running": self.running_count,
            "running_job_ids": sorted(self._running_jobs),
            "max_concurrent_jobs": self._max_concurrent_jobs,
        }

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status"""
        return {
            "running": self.is_running,
            "metrics": self.get_metrics(),
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError as e:
            raise JobSchedulerError(
                "JobScheduler must be used from within a running event loop"
            ) from e

    def _log_debug(self, event: str, **kwargs: Any) -> None:
        if self._debug:
            self._logger.debug(event, **kwargs)


__all__ = ["JobScheduler"]
