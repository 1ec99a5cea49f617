# Core utilities shared across the scheduler

from jobfire_core.core.logging import (
    LogFormat,
    LogLevel,
    get_logger,
    setup_logging,
)

__all__ = [
    "LogFormat",
    "LogLevel",
    "get_logger",
    "setup_logging",
]
