"""Database start-up helpers."""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

from app_logging import get_logger

T = TypeVar("T")

_logger = get_logger("mealtracker.db")


def retry_with_backoff(func: Callable[[], T], attempts: int = 3, base_delay: float = 0.1,
                       max_total_delay: float = 2.0) -> T:
    """Call ``func``, retrying while the database is unreachable.

    Only :class:`~sqlalchemy.exc.OperationalError` (server down, file
    locked, connection refused) is retried. Delays double from
    ``base_delay`` and their sum never exceeds ``max_total_delay``, so a
    dead database fails start-up quickly instead of hanging it.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    slept = 0.0
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except OperationalError as exc:
            budget = max_total_delay - slept
            if attempt == attempts or budget <= 0:
                _logger.error("database still unavailable, giving up",
                              extra={"attempt": attempt, "error": str(exc.orig)})
                raise
            pause = min(base_delay * 2 ** (attempt - 1), budget)
            _logger.warning("database unavailable, retrying",
                            extra={"attempt": attempt, "retry_in_s": pause, "error": str(exc.orig)})
            time.sleep(pause)
            slept += pause
    raise AssertionError("unreachable")


__all__ = ["retry_with_backoff"]
