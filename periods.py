"""Calendar period resolution for the admin dashboard.

Every range is computed in UTC at calendar-day granularity. A
:class:`DateRange` reports the inclusive ``end`` (``23:59:59.999`` of the
last day) that the dashboard shows to users, and the exclusive ``stop``
(the following midnight) that database queries filter on.

Semesters are anchored to an academic year that starts in September: the
1st semester runs from September 1 to January 31, the 2nd from February 1
to July 31 of the following calendar year.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from config import utc_now
from errors import InvalidPeriodError

DAILY = 'daily'
WEEKLY = 'weekly'
MONTHLY = 'monthly'
SEMESTRAL = 'semestral'

PERIOD_TYPES = (DAILY, WEEKLY, MONTHLY, SEMESTRAL)

FIRST_SEMESTER = '1st'
SECOND_SEMESTER = '2nd'
SEMESTERS = (FIRST_SEMESTER, SECOND_SEMESTER)

# Zero-based month index of September; on or after it we are in the
# academic year that started this calendar year.
ACADEMIC_YEAR_START_MONTH_INDEX = 8

_END_OF_DAY = time(23, 59, 59, 999000)
_MONTH_RE = re.compile(r'^(\d{4})-(\d{1,2})$')

DateLike = Union[str, date, datetime, None]


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    @property
    def stop(self) -> datetime:
        """Exclusive upper bound: midnight after the last day."""
        return datetime.combine(self.end.date() + timedelta(days=1), time.min)

    @property
    def first_day(self) -> date:
        return self.start.date()

    @property
    def last_day(self) -> date:
        return self.end.date()

    def clip(self, other: 'DateRange') -> 'DateRange':
        """Intersection of two overlapping ranges."""
        return DateRange(max(self.start, other.start), min(self.end, other.end))

    def to_dict(self) -> dict:
        return {
            'startDate': _iso(self.start),
            'endDate': _iso(self.end),
        }


def _iso(value: datetime) -> str:
    return value.isoformat(timespec='milliseconds') + 'Z'


def day_range(day: date) -> DateRange:
    return DateRange(datetime.combine(day, time.min), datetime.combine(day, _END_OF_DAY))


def span(first: date, last: date) -> DateRange:
    return DateRange(datetime.combine(first, time.min), datetime.combine(last, _END_OF_DAY))


def week_range(day: date) -> DateRange:
    """Monday through Sunday of the week containing ``day``.

    A Sunday belongs to the week that ends on it.
    """
    monday = day - timedelta(days=day.weekday())
    return span(monday, monday + timedelta(days=6))


def month_range(year: int, month: int) -> DateRange:
    last = calendar.monthrange(year, month)[1]
    return span(date(year, month, 1), date(year, month, last))


def academic_year_start(now: datetime) -> int:
    if now.month - 1 >= ACADEMIC_YEAR_START_MONTH_INDEX:
        return now.year
    return now.year - 1


def semester_range(which: str, now: datetime) -> DateRange:
    start_year = academic_year_start(now)
    if which == FIRST_SEMESTER:
        return span(date(start_year, 9, 1), date(start_year + 1, 1, 31))
    if which == SECOND_SEMESTER:
        return span(date(start_year + 1, 2, 1), date(start_year + 1, 7, 31))
    raise InvalidPeriodError("Invalid semester value. Use '1st' or '2nd'.")


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_day(value: DateLike, message: str) -> date:
    """Parse a ``YYYY-MM-DD`` string or ISO timestamp to a UTC calendar date.

    ``date`` and ``datetime`` objects are accepted as-is; aware datetimes are
    converted to UTC first.
    """
    if isinstance(value, datetime):
        return to_utc_naive(value).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidPeriodError(message)
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return to_utc_naive(datetime.fromisoformat(text.replace('Z', '+00:00'))).date()
    except ValueError:
        raise InvalidPeriodError(message) from None


def parse_month(value: str) -> tuple:
    match = _MONTH_RE.match(value.strip())
    if not match:
        raise InvalidPeriodError('Invalid format for monthly filter. Use YYYY-MM.')
    year, month = int(match.group(1)), int(match.group(2))
    if year < 1 or not 1 <= month <= 12:
        raise InvalidPeriodError('Invalid format for monthly filter. Use YYYY-MM.')
    return year, month


def normalise_period(period_type: Optional[str]) -> str:
    if not period_type or not str(period_type).strip():
        raise InvalidPeriodError('Filter period is required.')
    normalised = str(period_type).strip().lower()
    if normalised not in PERIOD_TYPES:
        raise InvalidPeriodError(
            f"Invalid period type '{period_type}'. Use one of: {', '.join(PERIOD_TYPES)}."
        )
    return normalised


def _supplied(value: DateLike) -> bool:
    return value is not None and not (isinstance(value, str) and value == '')


def resolve_range(period_type: str, value: DateLike = None,
                  now: Optional[datetime] = None) -> DateRange:
    """Map ``(period_type, value)`` to a concrete UTC range.

    ``daily`` and ``weekly`` default to today and ``monthly`` to the current
    month when ``value`` is omitted; ``semestral`` always needs ``1st`` or
    ``2nd``. A value that is supplied but malformed raises
    :class:`InvalidPeriodError` instead of falling back to a default.
    """
    now = to_utc_naive(now) if now is not None else utc_now()
    period = normalise_period(period_type)

    if period == DAILY:
        day = parse_day(value, 'Invalid date format for daily filter. Use YYYY-MM-DD.') \
            if _supplied(value) else now.date()
        return day_range(day)

    if period == WEEKLY:
        day = parse_day(value, 'Invalid date for week period. Provide a YYYY-MM-DD date '
                               'for any day in the target week.') \
            if _supplied(value) else now.date()
        return week_range(day)

    if period == MONTHLY:
        if not _supplied(value):
            return month_range(now.year, now.month)
        if not isinstance(value, str):
            raise InvalidPeriodError('Invalid format for monthly filter. Use YYYY-MM.')
        return month_range(*parse_month(value))

    semester = value.strip().lower() if isinstance(value, str) else value
    return semester_range(semester, now)


def iter_weeks_in_month(month: DateRange):
    """Yield each Monday-start week overlapping ``month``, clipped to it."""
    cursor = month.first_day
    while cursor <= month.last_day:
        week = week_range(cursor)
        yield week.clip(month)
        cursor = week.last_day + timedelta(days=1)


def iter_months(period: DateRange):
    """Yield ``(year, month)`` for every calendar month ``period`` touches."""
    year, month = period.first_day.year, period.first_day.month
    last = (period.last_day.year, period.last_day.month)
    while (year, month) <= last:
        yield year, month
        month += 1
        if month > 12:
            year, month = year + 1, 1


__all__ = [
    "DAILY",
    "DateRange",
    "FIRST_SEMESTER",
    "MONTHLY",
    "PERIOD_TYPES",
    "SECOND_SEMESTER",
    "SEMESTERS",
    "SEMESTRAL",
    "WEEKLY",
    "academic_year_start",
    "day_range",
    "iter_months",
    "iter_weeks_in_month",
    "month_range",
    "normalise_period",
    "parse_day",
    "resolve_range",
    "semester_range",
    "week_range",
]
