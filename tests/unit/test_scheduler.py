"""
Unit Tests for the Job Scheduler

Tests for registration, timers, the admission queue and result reporting.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from jobfire_core.config import SchedulerSettings
from jobfire_core.scheduling.base import (
    RUN_ONCE,
    DuplicateJobError,
    InvalidScheduleError,
    JobContext,
    JobNotFoundError,
    JobOptions,
    JobSchedulerError,
)
from jobfire_core.scheduling.scheduler import JobScheduler
from jobfire_core.storage.memory import InMemoryJobStore


def logged_events(logger: MagicMock, level: str):
    return [c.args[0] for c in getattr(logger, level).call_args_list]


# =============================================================================
# Initialization
# =============================================================================


class TestSchedulerInitialization:
    """Tests for construction."""

    def test_uses_settings(self, settings, store, mock_logger):
        scheduler = JobScheduler(settings, store=store, logger=mock_logger)

        assert scheduler.max_concurrent_jobs == 2
        assert scheduler.store is store
        assert scheduler.is_running is False

    def test_keyword_overrides(self):
        scheduler = JobScheduler(
            SchedulerSettings(max_concurrent_jobs=5),
            max_concurrent_jobs=3,
        )

        assert scheduler.max_concurrent_jobs == 3
        assert isinstance(scheduler.store, InMemoryJobStore)

    def test_explicit_zero_concurrency_rejected(self):
        with pytest.raises(ValueError):
            JobScheduler(SchedulerSettings(max_concurrent_jobs=3), max_concurrent_jobs=0)

    def test_add_job_requires_event_loop(self):
        scheduler = JobScheduler(SchedulerSettings())

        with pytest.raises(JobSchedulerError):
            scheduler.add_job("job", AsyncMock(), interval_ms=1000)

        assert scheduler.get_job("job") is None


# =============================================================================
# Registration
# =============================================================================


class TestJobRegistration:
    """Tests for add_job / remove_job."""

    @pytest.mark.asyncio
    async def test_add_interval_job(self, scheduler):
        job = scheduler.add_job("job1", AsyncMock(), interval_ms=1000)

        assert scheduler._interval_jobs["job1"] is job
        assert "job1" not in scheduler._cron_jobs
        assert "job1" in scheduler._job_timers
        assert scheduler.is_running is True

    @pytest.mark.asyncio
    async def test_add_cron_job(self, scheduler):
        job = scheduler.add_job("job2", AsyncMock(), cron="0 0 1 1 *")

        assert scheduler._cron_jobs["job2"] is job
        assert "job2" not in scheduler._interval_jobs
        assert "job2" not in scheduler._job_timers

    @pytest.mark.asyncio
    async def test_add_with_options_object(self, scheduler):
        options = JobOptions(interval_ms=1000, retries=2)

        job = scheduler.add_job("job", AsyncMock(), options, timeout_ms=250)

        assert job.retries == 2
        assert job.timeout_ms == 250

    @pytest.mark.asyncio
    async def test_keyword_overrides_are_validated(self, scheduler):
        options = JobOptions(interval_ms=1000)

        with pytest.raises(ValidationError):
            scheduler.add_job("job", AsyncMock(), options, retries=-1)

        assert scheduler.get_job("job") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, scheduler):
        scheduler.add_job("job3", AsyncMock(), interval_ms=1000)

        with pytest.raises(DuplicateJobError, match="Job with ID job3 already exists"):
            scheduler.add_job("job3", AsyncMock(), interval_ms=1000)
        with pytest.raises(DuplicateJobError):
            scheduler.add_job("job3", AsyncMock(), cron="* * * * *")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "options",
        [
            {},
            {"retries": 3},
            {"interval_ms": 1000, "cron": "* * * * *"},
            {"interval_ms": -5},
        ],
    )
    async def test_invalid_schedule_rejected(self, scheduler, options):
        with pytest.raises(InvalidScheduleError):
            scheduler.add_job("bad", AsyncMock(), **options)

        assert scheduler.get_job("bad") is None

    @pytest.mark.asyncio
    async def test_remove_interval_job(self, scheduler):
        scheduler.add_job("job", AsyncMock(), interval_ms=1000)
        timer = scheduler._job_timers["job"]

        scheduler.remove_job("job")
        await asyncio.sleep(0)

        assert scheduler.get_job("job") is None
        assert "job" not in scheduler._job_timers
        assert timer.cancelled()

    @pytest.mark.asyncio
    async def test_remove_cron_job(self, scheduler):
        scheduler.add_job("job", AsyncMock(), cron="* * * * *")

        scheduler.remove_job("job")

        assert scheduler.jobs == []

    @pytest.mark.asyncio
    async def test_remove_unknown_job(self, scheduler):
        with pytest.raises(JobNotFoundError, match="Job with ID ghost does not exist"):
            scheduler.remove_job("ghost")

    @pytest.mark.asyncio
    async def test_remove_does_not_cancel_in_flight_run(self, scheduler, store, wait_until):
        gate = asyncio.Event()

        async def work(ctx, params):
            await gate.wait()
            return "finished"

        scheduler.add_job("job", work, interval_ms=RUN_ONCE)
        assert await wait_until(lambda: scheduler.running_count == 1)

        scheduler.remove_job("job")
        gate.set()

        assert await wait_until(lambda: scheduler.running_count == 0)
        stats = await store.get_job_history("job")
        assert stats.success_count == 1

    @pytest.mark.asyncio
    async def test_decorator_registration(self, scheduler, store, wait_until):
        @scheduler.job("decorated", interval_ms=RUN_ONCE, params={"n": 2})
        async def double(ctx: JobContext, params):
            return params["n"] * 2

        assert scheduler.get_job("decorated") is not None
        assert await wait_until(lambda: "decorated" in store.job_ids())
        stats = await scheduler.get_job_history("decorated")
        assert stats.executions[0].result["value"] == 4


# =============================================================================
# Timers
# =============================================================================


class TestSchedulerTimers:
    """Tests for interval timers and the cron tick."""

    @pytest.mark.asyncio
    async def test_run_once_job_executes_once(self, scheduler, store, wait_until):
        func = AsyncMock(return_value="ok")

        scheduler.add_job("once", func, interval_ms=RUN_ONCE)

        assert "once" not in scheduler._job_timers
        assert await wait_until(lambda: func.await_count == 1)
        await asyncio.sleep(0.05)
        assert func.await_count == 1
        assert (await store.get_job_history("once")).success_count == 1

    @pytest.mark.asyncio
    async def test_interval_job_repeats(self, scheduler, store, wait_until):
        func = AsyncMock(return_value="ok")

        scheduler.add_job("tick", func, interval_ms=20)

        assert await wait_until(lambda: func.await_count >= 3)
        stats = await store.get_job_history("tick")
        assert stats.success_count >= 2

    @pytest.mark.asyncio
    async def test_non_repeating_interval_job_stops_timer(self, scheduler, wait_until):
        func = AsyncMock(return_value="ok")

        scheduler.add_job("single", func, interval_ms=20, repeat=False)

        assert await wait_until(lambda: "single" not in scheduler._job_timers)
        await asyncio.sleep(0.06)
        assert func.await_count == 1
        assert scheduler.get_job("single").is_complete is True

    @pytest.mark.asyncio
    async def test_running_job_firing_skipped(self, scheduler, mock_logger, wait_until):
        gate = asyncio.Event()
        calls = []

        async def slow(ctx, params):
            calls.append(1)
            await gate.wait()

        scheduler.add_job("slow", slow, interval_ms=15)

        assert await wait_until(lambda: len(calls) == 1)
        await asyncio.sleep(0.08)

        assert len(calls) == 1
        assert scheduler.queue_size == 0
        assert "job_firing_skipped_running" in logged_events(mock_logger, "warning")
        gate.set()

    @pytest.mark.asyncio
    async def test_run_on_start_enqueues_immediately(self, scheduler, wait_until):
        func = AsyncMock()

        scheduler.add_job("eager", func, cron="0 0 1 1 *", run_on_start=True)

        assert await wait_until(lambda: func.await_count == 1)

    @pytest.mark.asyncio
    async def test_tick_enqueues_matching_cron_jobs(self, scheduler, store, wait_until):
        every_minute = AsyncMock()
        never_now = AsyncMock()
        scheduler.add_job("every-minute", every_minute, cron="* * * * *")
        scheduler.add_job("new-year", never_now, cron="0 0 1 1 *")
        scheduler.clear_all_timers()

        scheduler.tick(datetime(2024, 6, 1, 12, 0, 5))

        assert await wait_until(lambda: every_minute.await_count == 1)
        never_now.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cron_fires_once_per_minute(self, scheduler, wait_until):
        func = AsyncMock()
        scheduler.add_job("cron", func, cron="* * * * *")
        scheduler.clear_all_timers()

        scheduler.tick(datetime(2024, 6, 1, 12, 0, 1))
        assert await wait_until(lambda: func.await_count == 1)
        scheduler.tick(datetime(2024, 6, 1, 12, 0, 2))
        scheduler.tick(datetime(2024, 6, 1, 12, 0, 59))
        await asyncio.sleep(0.02)
        assert func.await_count == 1

        scheduler.tick(datetime(2024, 6, 1, 12, 1, 0))
        assert await wait_until(lambda: func.await_count == 2)

    @pytest.mark.asyncio
    async def test_tick_loop_drives_cron_jobs(self, scheduler, wait_until):
        func = AsyncMock()

        scheduler.add_job("cron", func, cron="* * * * *")

        assert await wait_until(lambda: func.await_count >= 1, timeout=1.0)

    @pytest.mark.asyncio
    async def test_clear_all_timers(self, scheduler):
        scheduler.add_job("a", AsyncMock(), interval_ms=1000)
        scheduler.add_job("b", AsyncMock(), interval_ms=1000)
        scheduler.add_job("c", AsyncMock(), cron="* * * * *")
        timers = list(scheduler._job_timers.values())

        scheduler.clear_all_timers()
        await asyncio.sleep(0)

        assert scheduler._job_timers == {}
        assert scheduler.is_running is False
        assert all(t.cancelled() for t in timers)
        assert len(scheduler.jobs) == 3


# =============================================================================
# Concurrency
# =============================================================================


class TestSchedulerConcurrency:
    """Tests for the bounded execution queue."""

    @pytest.mark.asyncio
    async def test_max_concurrent_jobs_enforced(self, scheduler, wait_until):
        gates = {name: asyncio.Event() for name in ("j1", "j2", "j3")}
        started = []

        def make(name):
            async def work(ctx, params):
                started.append(name)
                await gates[name].wait()
            return work

        for name in gates:
            scheduler.add_job(name, make(name), interval_ms=RUN_ONCE)

        assert await wait_until(lambda: len(started) == 2)
        await asyncio.sleep(0.03)
        assert started == ["j1", "j2"]
        assert scheduler.running_count == 2
        assert scheduler.queue_size == 1

        gates["j1"].set()

        assert await wait_until(lambda: len(started) == 3)
        assert started[2] == "j3"
        assert scheduler.running_job_ids == {"j2", "j3"}

        gates["j2"].set()
        gates["j3"].set()
        assert await wait_until(lambda: scheduler.running_count == 0)

    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent(self, scheduler):
        gate = asyncio.Event()

        async def blocked(ctx, params):
            await gate.wait()

        scheduler.add_job("a", blocked, interval_ms=RUN_ONCE)
        scheduler.add_job("b", blocked, interval_ms=RUN_ONCE)
        job = scheduler.add_job("c", AsyncMock(), cron="0 0 1 1 *")

        scheduler.enqueue_job(job)
        scheduler.enqueue_job(job)

        assert scheduler.running_count == 2
        assert scheduler.queue_size == 1
        gate.set()

    @pytest.mark.asyncio
    async def test_concurrent_job_can_overlap(self, settings, store, mock_logger, wait_until):
        scheduler = JobScheduler(settings, store=store, logger=mock_logger, max_concurrent_jobs=5)
        gate = asyncio.Event()
        calls = []

        async def work(ctx, params):
            calls.append(1)
            await gate.wait()

        job = scheduler.add_job("overlap", work, interval_ms=RUN_ONCE, allow_concurrent=True)
        await asyncio.sleep(0.01)
        scheduler.enqueue_job(job)

        assert await wait_until(lambda: len(calls) == 2)
        assert scheduler.running_count == 2

        gate.set()
        assert await wait_until(lambda: scheduler.running_count == 0)
        await scheduler.shutdown()


# =============================================================================
# Execution & Reporting
# =============================================================================


class TestSchedulerExecution:
    """Tests for result reporting and error isolation."""

    @pytest.mark.asyncio
    async def test_context_passed_to_work_function(self, scheduler, wait_until):
        seen = {}

        async def work(ctx, params):
            seen["job_id"] = ctx.job_id
            seen["params"] = params
            seen["cancelled"] = ctx.cancelled

        scheduler.add_job("ctx", work, interval_ms=RUN_ONCE, params={"region": "eu"})

        assert await wait_until(lambda: "job_id" in seen)
        assert seen == {"job_id": "ctx", "params": {"region": "eu"}, "cancelled": False}

    @pytest.mark.asyncio
    async def test_failing_job_recorded_and_isolated(self, scheduler, store, mock_logger, wait_until):
        healthy = AsyncMock(return_value="ok")
        scheduler.add_job("broken", AsyncMock(side_effect=RuntimeError("boom")), interval_ms=RUN_ONCE, retries=2)
        scheduler.add_job("healthy", healthy, interval_ms=RUN_ONCE)

        assert await wait_until(lambda: len(store.job_ids()) == 2)
        broken = await store.get_job_history("broken")
        assert broken.failure_count == 1
        assert broken.retry_failure_count == 1
        assert broken.executions[0].result["error"]["message"] == "boom"
        assert (await store.get_job_history("healthy")).success_count == 1
        assert "job_failed" in logged_events(mock_logger, "error")

    @pytest.mark.asyncio
    async def test_timeout_recorded(self, scheduler, store, wait_until):
        scheduler.add_job(
            "hung",
            lambda ctx, params: asyncio.Event().wait(),
            interval_ms=RUN_ONCE,
            timeout_ms=30,
        )

        assert await wait_until(lambda: "hung" in store.job_ids(), timeout=1.0)
        stats = await store.get_job_history("hung")
        assert stats.timeout_count == 1
        assert stats.retry_failure_count == 0
        assert stats.total_duration_ms >= 25
        assert scheduler.running_count == 0

    @pytest.mark.asyncio
    async def test_store_failure_releases_slot(self, settings, mock_logger, wait_until):
        store = MagicMock()
        store.save_job_result = AsyncMock(side_effect=ConnectionError("store down"))
        scheduler = JobScheduler(settings, store=store, logger=mock_logger)
        func = AsyncMock()

        scheduler.add_job("job", func, interval_ms=RUN_ONCE)

        assert await wait_until(lambda: store.save_job_result.await_count == 1)
        assert await wait_until(lambda: scheduler.running_count == 0)
        assert "job_result_save_failed" in logged_events(mock_logger, "error")
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_execute_job_directly(self, scheduler, store):
        job = scheduler.add_job("direct", AsyncMock(return_value=7), cron="0 0 1 1 *")

        result = await scheduler.execute_job(job)

        assert result.success is True
        assert result.value == 7
        assert scheduler.running_count == 0
        assert (await store.get_job_history("direct")).success_count == 1

    @pytest.mark.asyncio
    async def test_history_for_unknown_job(self, scheduler):
        assert await scheduler.get_job_history("nothing") is None

    @pytest.mark.asyncio
    async def test_debug_events_only_when_enabled(self, store, mock_logger, wait_until):
        scheduler = JobScheduler(SchedulerSettings(debug=False), store=store, logger=mock_logger)

        scheduler.add_job("quiet", AsyncMock(), interval_ms=RUN_ONCE)
        assert await wait_until(lambda: "quiet" in store.job_ids())

        assert logged_events(mock_logger, "debug") == []
        await scheduler.shutdown()


# =============================================================================
# Lifecycle & Status
# =============================================================================


class TestSchedulerLifecycle:
    """Tests for start / shutdown and status reporting."""

    @pytest.mark.asyncio
    async def test_context_manager(self, settings, store, mock_logger):
        func = AsyncMock()

        async with JobScheduler(settings, store=store, logger=mock_logger) as scheduler:
            assert scheduler.is_running is True
            scheduler.add_job("job", func, interval_ms=RUN_ONCE)

        assert scheduler.is_running is False
        func.assert_awaited_once()
        assert (await store.get_job_history("job")).success_count == 1

    @pytest.mark.asyncio
    async def test_shutdown_drains_queued_jobs(self, settings, store, mock_logger):
        """Test jobs still queued at exit are started and awaited."""
        finished = []

        def make(name):
            async def work(ctx, params):
                await asyncio.sleep(0.05)
                finished.append(name)
            return work

        async with JobScheduler(
            settings, store=store, logger=mock_logger, max_concurrent_jobs=1
        ) as scheduler:
            scheduler.add_job("a", make("a"), interval_ms=RUN_ONCE)
            scheduler.add_job("b", make("b"), interval_ms=RUN_ONCE)
            assert scheduler.queue_size == 1

        assert finished == ["a", "b"]
        assert scheduler.running_count == 0
        assert scheduler.queue_size == 0
        assert (await store.get_job_history("b")).success_count == 1

    @pytest.mark.asyncio
    async def test_shutdown_without_wait_discards_queue(self, settings, store, mock_logger):
        """Test cancelling executions does not start queued jobs."""
        started = []

        def make(name):
            async def work(ctx, params):
                started.append(name)
                await asyncio.Event().wait()
            return work

        scheduler = JobScheduler(settings, store=store, logger=mock_logger, max_concurrent_jobs=1)
        scheduler.add_job("a", make("a"), interval_ms=RUN_ONCE)
        scheduler.add_job("b", make("b"), interval_ms=RUN_ONCE)
        await asyncio.sleep(0.01)

        await scheduler.shutdown(wait=False)
        await asyncio.sleep(0.01)

        assert started == ["a"]
        assert scheduler.running_count == 0
        assert scheduler.queue_size == 0
        assert scheduler._tasks == set()

    @pytest.mark.asyncio
    async def test_shutdown_without_wait_cancels_executions(self, scheduler):
        scheduler.add_job("hang", lambda ctx, params: asyncio.Event().wait(), interval_ms=RUN_ONCE)
        await asyncio.sleep(0.01)
        assert scheduler.running_count == 1

        await scheduler.shutdown(wait=False)

        assert scheduler.running_count == 0
        assert scheduler.get_job("hang").is_running is False

    @pytest.mark.asyncio
    async def test_metrics(self, scheduler):
        scheduler.add_job("a", AsyncMock(), interval_ms=1000)
        scheduler.add_job("b", AsyncMock(), cron="0 0 1 1 *")

        metrics = scheduler.get_metrics()

        assert metrics["interval_jobs"] == 1
        assert metrics["cron_jobs"] == 1
        assert metrics["active_timers"] == 1
        assert metrics["queue_size"] == 0
        assert metrics["running"] == 0
        assert metrics["max_concurrent_jobs"] == 2
        assert scheduler.get_status()["running"] is True
