"""Domain exceptions raised by the service modules.

These carry no HTTP knowledge; ``app.py`` maps each family to a status code
when rendering problem-details responses.
"""

from __future__ import annotations


class MealTrackerError(Exception):
    """Base class for all expected, caller-facing failures."""

    title = "Meal tracker error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(MealTrackerError):
    """Malformed input, detected before any database access."""

    title = "Validation error"


class InvalidPeriodError(ValidationError):
    """Unknown period type or a period value that cannot be parsed."""

    title = "Invalid period"


class NotFoundError(MealTrackerError):
    title = "Not found"


class ConflictError(MealTrackerError):
    title = "Conflict"


__all__ = [
    "ConflictError",
    "InvalidPeriodError",
    "MealTrackerError",
    "NotFoundError",
    "ValidationError",
]
