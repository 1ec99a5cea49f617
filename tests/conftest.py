"""Shared pytest fixtures for testing."""

import asyncio
from typing import AsyncGenerator, Awaitable, Callable
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
import structlog

from jobfire_core.config import SchedulerSettings
from jobfire_core.scheduling.base import JobContext
from jobfire_core.scheduling.scheduler import JobScheduler
from jobfire_core.storage.memory import InMemoryJobStore


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll ``predicate`` on the event loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


@pytest.fixture(autouse=True)
def reset_structlog():
    """Keep structlog configuration from leaking between tests."""
    yield
    structlog.reset_defaults()


# =============================================================================
# Scheduler Fixtures
# =============================================================================


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[bool]]:
    return _wait_until


@pytest.fixture
def settings() -> SchedulerSettings:
    """Settings with a fast tick for tests."""
    return SchedulerSettings(
        max_concurrent_jobs=2,
        debug=True,
        tick_interval_seconds=0.05,
    )


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def mock_logger() -> MagicMock:
    """structlog-compatible logger whose bound children log to itself."""
    logger = MagicMock()
    logger.bind.return_value = logger
    return logger


@pytest_asyncio.fixture
async def scheduler(
    settings: SchedulerSettings,
    store: InMemoryJobStore,
    mock_logger: MagicMock,
) -> AsyncGenerator[JobScheduler, None]:
    sched = JobScheduler(settings, store=store, logger=mock_logger)
    yield sched
    await sched.shutdown(wait=False)


@pytest.fixture
def context(mock_logger: MagicMock) -> JobContext:
    return JobContext(job_id="test-job", logger=mock_logger)
