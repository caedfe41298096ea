"""Claim/unclaim analytics for the admin dashboard.

Only ``CLAIMED`` and ``ELIGIBLE_BUT_NOT_CLAIMED`` records count: a bucket's
``allotted`` is the number of eligible outcomes actually recorded, i.e.
``claimed + unclaimed``. Days for which the unclaimed backfill has not been
run therefore under-report ``allotted``; :class:`CohortSizeCache` gives the
expected per-weekday figure for comparison.
"""

from __future__ import annotations

import calendar
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from flask import current_app
from sqlalchemy import and_, case, event, func
from sqlalchemy.orm import Session

from errors import ValidationError
from models import CLAIMED, ELIGIBLE_BUT_NOT_CLAIMED, MealRecord, Schedule, Student, db
from periods import (
    DAILY,
    FIRST_SEMESTER,
    MONTHLY,
    SECOND_SEMESTER,
    SEMESTRAL,
    WEEKLY,
    DateRange,
    day_range,
    iter_months,
    iter_weeks_in_month,
    month_range,
    normalise_period,
    resolve_range,
    semester_range,
    to_utc_naive,
)
from schedule import WEEKDAYS, weekday_name

GROUP_BY_PROGRAM = 'program'
GROUP_BY_YEAR_LEVEL = 'yearLevel'

_OUTCOMES = (CLAIMED, ELIGIBLE_BUT_NOT_CLAIMED)


@dataclass
class Bucket:
    id: Union[int, str]
    name: str
    claimed: int = 0
    unclaimed: int = 0

    @property
    def allotted(self) -> int:
        return self.claimed + self.unclaimed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'allotted': self.allotted,
            'claimed': self.claimed,
            'unclaimed': self.unclaimed,
        }


@dataclass
class Summary:
    filter_period: str
    value: Optional[str]
    range: DateRange
    buckets: List[Bucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        details = {'filterPeriod': self.filter_period, 'value': self.value}
        details.update(self.range.to_dict())
        return {
            'success': True,
            'filterDetails': details,
            'data': [bucket.to_dict() for bucket in self.buckets],
        }


@dataclass
class Breakdown:
    filter_period: str
    value: Optional[str]
    program: Optional[str]
    group_by: Optional[str]
    range: DateRange
    rows: List[Bucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        details = {
            'filterPeriod': self.filter_period,
            'value': self.value,
            'program': self.program,
            'groupBy': self.group_by,
        }
        details.update(self.range.to_dict())
        rows = []
        for row in self.rows:
            rows.append({
                'name': row.name,
                'claimed': row.claimed,
                'unclaimed': row.unclaimed,
                'allotted': row.allotted,
            })
        return {'success': True, 'filterDetails': details, 'data': rows}


def _claimed_count():
    return func.coalesce(func.sum(case((MealRecord.status == CLAIMED, 1), else_=0)), 0)


def _unclaimed_count():
    return func.coalesce(func.sum(case((MealRecord.status == ELIGIBLE_BUT_NOT_CLAIMED, 1), else_=0)), 0)


def _in_window(span: DateRange):
    return and_(
        MealRecord.date_checked >= span.start,
        MealRecord.date_checked < span.stop,
        MealRecord.status.in_(_OUTCOMES),
    )


def count_outcomes(span: DateRange, bucket_id: Union[int, str], name: str) -> Bucket:
    claimed, unclaimed = (
        db.session.query(_claimed_count(), _unclaimed_count())
        .filter(_in_window(span))
        .one()
    )
    return Bucket(bucket_id, name, int(claimed), int(unclaimed))


def summarize(filter_period: Optional[str], value: Optional[str] = None,
              now: Optional[datetime] = None) -> Summary:
    """Time series of claim outcomes for the requested period.

    * ``daily`` – one bucket for the day.
    * ``weekly`` – Monday…Sunday of the week containing ``value``.
    * ``monthly`` – one bucket per week, clipped to the month.
    * ``semestral`` – without ``value`` both semesters of the current
      academic year; with ``1st``/``2nd`` one bucket per calendar month.
    """
    now = to_utc_naive(now) if now is not None else current_app.config['CLOCK']()
    period = normalise_period(filter_period)
    value = value or None

    if period == DAILY:
        span = resolve_range(DAILY, value, now)
        buckets = [count_outcomes(span, span.first_day.isoformat(), weekday_name(span.first_day))]

    elif period == WEEKLY:
        span = resolve_range(WEEKLY, value, now)
        buckets = [
            count_outcomes(day_range(span.first_day + timedelta(days=offset)), offset + 1, WEEKDAYS[offset])
            for offset in range(7)
        ]

    elif period == MONTHLY:
        span = resolve_range(MONTHLY, value, now)
        buckets = [
            count_outcomes(week, number, f'Week {number}')
            for number, week in enumerate(iter_weeks_in_month(span), start=1)
        ]

    elif value is None:
        first = semester_range(FIRST_SEMESTER, now)
        second = semester_range(SECOND_SEMESTER, now)
        span = DateRange(first.start, second.end)
        buckets = [
            count_outcomes(first, FIRST_SEMESTER, '1st Semester'),
            count_outcomes(second, SECOND_SEMESTER, '2nd Semester'),
        ]

    else:
        span = resolve_range(SEMESTRAL, value, now)
        buckets = [
            count_outcomes(month_range(year, month), f'{year}-{month}', calendar.month_name[month])
            for year, month in iter_months(span)
        ]

    return Summary(filter_period, value, span, buckets)


def breakdown(filter_period: Optional[str], value: Optional[str] = None,
              program: Optional[str] = None, group_by: Optional[str] = None,
              now: Optional[datetime] = None) -> Breakdown:
    """Claim outcomes per program, or per year level within one program."""
    now = to_utc_naive(now) if now is not None else current_app.config['CLOCK']()
    normalise_period(filter_period)
    if group_by not in (None, '', GROUP_BY_PROGRAM, GROUP_BY_YEAR_LEVEL):
        raise ValidationError(f"Invalid groupBy '{group_by}'. Use 'program' or 'yearLevel'.")
    span = resolve_range(filter_period, value or None, now)
    program = program.strip().upper() if program and program.strip() else None

    by_year = group_by == GROUP_BY_YEAR_LEVEL and program is not None
    key = MealRecord.year_level_at_time_of_record if by_year else MealRecord.program_at_time_of_record

    query = (
        db.session.query(key, _claimed_count(), _unclaimed_count())
        .filter(_in_window(span))
    )
    if program:
        query = query.filter(MealRecord.program_at_time_of_record == program)

    rows = [
        Bucket(index, f'{group} year' if by_year else group, int(claimed), int(unclaimed))
        for index, (group, claimed, unclaimed) in enumerate(query.group_by(key).all())
    ]
    rows.sort(key=lambda row: row.name)
    return Breakdown(filter_period, value or None, program, group_by or None, span, rows)


class CohortSizeCache:
    """Expected allotment per weekday: students in cohorts eligible that day.

    The figure is computed on demand and reused until a ``Student`` or
    ``Schedule`` row is inserted, updated or deleted, which bumps
    :attr:`version`. A flush only marks the cache dirty for its own
    transaction; the version is bumped again when that transaction commits
    or rolls back, so figures read from uncommitted rows never outlive it.
    One instance is attached to each Flask app.
    """

    def __init__(self) -> None:
        self._version = 0
        self._computed_version: Optional[int] = None
        self._sizes: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._dirty = False
        self._watched: List[Any] = []

    @property
    def version(self) -> int:
        return self._version

    def invalidate(self, *_args: Any) -> None:
        with self._lock:
            self._version += 1
            self._dirty = True

    def _settle(self, *_args: Any) -> None:
        with self._lock:
            if self._dirty:
                self._version += 1
                self._dirty = False

    def watch(self, *models: Any) -> None:
        for model in models:
            for name in ('after_insert', 'after_update', 'after_delete'):
                event.listen(model, name, self.invalidate)
                self._watched.append((model, name, self.invalidate))
        for name in ('after_commit', 'after_rollback'):
            event.listen(Session, name, self._settle)
            self._watched.append((Session, name, self._settle))

    def unwatch(self) -> None:
        for target, name, listener in self._watched:
            event.remove(target, name, listener)
        self._watched = []

    def get(self) -> Dict[str, int]:
        with self._lock:
            version = self._version
            if self._computed_version == version:
                return dict(self._sizes)
        sizes = self._compute()
        with self._lock:
            self._sizes = sizes
            self._computed_version = version
        return dict(sizes)

    @staticmethod
    def _compute() -> Dict[str, int]:
        rows = (
            db.session.query(Schedule.day_of_week, func.count(Student.id))
            .join(Student, and_(Student.program == Schedule.program,
                                Student.year_level == Schedule.year_level))
            .filter(Schedule.is_eligible.is_(True))
            .group_by(Schedule.day_of_week)
            .all()
        )
        sizes = {day: 0 for day in WEEKDAYS}
        sizes.update({day: int(count) for day, count in rows})
        return sizes


__all__ = [
    "Breakdown",
    "Bucket",
    "CohortSizeCache",
    "GROUP_BY_PROGRAM",
    "GROUP_BY_YEAR_LEVEL",
    "Summary",
    "breakdown",
    "count_outcomes",
    "summarize",
]
