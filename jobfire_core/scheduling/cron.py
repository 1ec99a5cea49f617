"""
Cron matching helpers.

Evaluates whether a cron expression fires at a given instant, at minute
granularity. Expressions are parsed with ``croniter`` and cached.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import lru_cache
from typing import Optional

import structlog
from croniter import croniter

logger = structlog.get_logger(__name__)


@lru_cache(maxsize=256)
def is_valid(expression: str) -> bool:
    """Check whether ``expression`` is a parseable cron expression."""
    if not expression or not expression.strip():
        return False
    try:
        return bool(croniter.is_valid(expression))
    except (ValueError, KeyError, TypeError):
        return False


def matches(expression: str, instant: Optional[datetime] = None) -> bool:
    """
    Check if ``instant`` is a fire point of ``expression``.

    Seconds are ignored, so any instant inside a matching minute matches.
    Invalid expressions never match.
    """
    if not is_valid(expression):
        logger.debug("cron_expression_invalid", expression=expression)
        return False

    minute = (instant or datetime.now()).replace(second=0, microsecond=0)
    try:
        # The next fire point strictly after the previous minute must be this minute.
        fire = croniter(expression, minute - timedelta(minutes=1)).get_next(datetime)
    except (ValueError, KeyError, TypeError):
        return False
    return fire.replace(second=0, microsecond=0) == minute


def next_fire_time(expression: str, after: Optional[datetime] = None) -> Optional[datetime]:
    """Return the next fire point strictly after ``after``, or None if invalid."""
    if not is_valid(expression):
        return None
    base = after or datetime.now()
    try:
        return croniter(expression, base).get_next(datetime)
    except (ValueError, KeyError, TypeError):
        return None


__all__ = ["is_valid", "matches", "next_fire_time"]
