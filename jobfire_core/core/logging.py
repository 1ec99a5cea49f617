"""
Standardized Logging Configuration

Structured logging setup for the scheduler, built on structlog with the
standard library as the output backend. Supports JSON logging for production
and human-readable output for development.
"""

import logging
import sys
from enum import Enum
from typing import Any, Optional

import structlog


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    PRETTY = "pretty"


def setup_logging(
    level: str = LogLevel.INFO.value,
    format: str = LogFormat.PRETTY.value,
    service_name: Optional[str] = None,
) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json, pretty)
        service_name: Optional service name added to every entry
    """
    log_level = getattr(logging, str(level).upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)

    if format == LogFormat.JSON or format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if service_name:
        processors.append(_add_service(service_name))
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _add_service(service_name: str):
    def processor(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def get_logger(name: str) -> Any:
    """
    Get a structlog logger with the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)


__all__ = [
    "LogLevel",
    "LogFormat",
    "setup_logging",
    "get_logger",
]
