"""Weekly eligibility schedule: lookup and maintenance.

A cohort (program + year level) is eligible on a weekday only when a
schedule row says so. Lookups distinguish a row that says "no" from a
cohort that was never configured for that day, so callers can surface
configuration gaps instead of silently treating them as exclusions.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError

from app_logging import get_logger
from errors import NotFoundError, ValidationError
from models import DAYS_OF_WEEK, Program, Schedule, db, validate_cohort

_logger = get_logger("mealtracker.schedule")

WEEKDAYS = DAYS_OF_WEEK


class ScheduleStatus(enum.Enum):
    ELIGIBLE = 'ELIGIBLE'
    NOT_ELIGIBLE = 'NOT_ELIGIBLE'
    UNCONFIGURED = 'UNCONFIGURED'

    @property
    def eligible(self) -> bool:
        return self is ScheduleStatus.ELIGIBLE


def weekday_name(value: Union[date, datetime]) -> str:
    """English weekday name of a UTC date or naive-UTC datetime."""
    return WEEKDAYS[value.weekday()]


def lookup_schedule(program: str, year_level: int, day_of_week: str) -> ScheduleStatus:
    entry = Schedule.query.filter_by(
        program=program.upper(), year_level=year_level, day_of_week=day_of_week
    ).first()
    if entry is None:
        return ScheduleStatus.UNCONFIGURED
    return ScheduleStatus.ELIGIBLE if entry.is_eligible else ScheduleStatus.NOT_ELIGIBLE


def is_eligible(program: str, year_level: int, day_of_week: str) -> bool:
    return lookup_schedule(program, year_level, day_of_week).eligible


def eligible_cohorts(day_of_week: str) -> List[Tuple[str, int]]:
    """``(program, year_level)`` pairs scheduled eligible on ``day_of_week``."""
    rows = (
        db.session.query(Schedule.program, Schedule.year_level)
        .filter(Schedule.day_of_week == day_of_week, Schedule.is_eligible.is_(True))
        .all()
    )
    return [(program, year_level) for program, year_level in rows]


def _weekday_order():
    return case({day: index for index, day in enumerate(WEEKDAYS)}, value=Schedule.day_of_week)


def list_schedules(program: Optional[str] = None) -> List[Schedule]:
    query = Schedule.query
    if program:
        query = query.filter_by(program=program.strip().upper())
    return query.order_by(Schedule.year_level, Schedule.program, _weekday_order()).all()


def _coerce_year_level(value: Any) -> int:
    try:
        year_level = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Year Level must be an integer between 1 and 4.') from None
    return year_level


def upsert_schedule_days(program: Any, year_level: Any,
                         days: Iterable[Dict[str, Any]]) -> Tuple[List[Schedule], List[Dict[str, Any]]]:
    """Create or update one schedule row per ``{dayOfWeek, isEligible}``.

    An existing ``(program, year_level, day_of_week)`` row is updated in
    place, so repeating a request never conflicts. Invalid days are
    collected into the returned error list; the call only fails outright
    when the cohort itself is invalid or every day was rejected.
    """
    if not isinstance(program, str) or not program.strip():
        raise ValidationError('Program is required.')
    program = program.strip().upper()
    year_level = _coerce_year_level(year_level)
    try:
        validate_cohort(program, year_level)
    except ValueError as exc:
        raise ValidationError(str(exc)) from None

    if Program.query.filter_by(name=program).first() is None:
        raise ValidationError(f"Program '{program}' does not exist in the database.")

    if not isinstance(days, list) or not days:
        raise ValidationError('Schedule days must be a non-empty list.')

    saved: List[Schedule] = []
    errors: List[Dict[str, Any]] = []
    for day in days:
        day_of_week = day.get('dayOfWeek') if isinstance(day, dict) else None
        flag = day.get('isEligible') if isinstance(day, dict) else None
        if day_of_week not in WEEKDAYS:
            errors.append({'daySchedule': day, 'error': f'{day_of_week!r} is not a valid day of the week'})
            continue
        if not isinstance(flag, bool):
            errors.append({'daySchedule': day, 'error': 'isEligible must be a boolean'})
            continue

        lookup = dict(program=program, year_level=year_level, day_of_week=day_of_week)
        try:
            with db.session.begin_nested():
                entry = Schedule.query.filter_by(**lookup).first()
                if entry is None:
                    entry = Schedule(**lookup)
                    db.session.add(entry)
                entry.is_eligible = flag
        except IntegrityError:
            # Another writer inserted the same triple between our read and
            # flush; fold into it.
            entry = Schedule.query.filter_by(**lookup).one()
            entry.is_eligible = flag
        saved.append(entry)

    if not saved:
        db.session.rollback()
        raise ValidationError(f'Failed to create/update schedule entries. Errors: {errors}')

    db.session.commit()
    for error in errors:
        _logger.warning("schedule day rejected", extra={"program": program, "year_level": year_level,
                                                        "detail": error['error']})
    _logger.info("schedule upserted", extra={"program": program, "year_level": year_level,
                                             "saved": len(saved), "rejected": len(errors)})
    return saved, errors


def set_schedule_eligibility(schedule_id: int, is_eligible_flag: Any) -> Schedule:
    if not isinstance(is_eligible_flag, bool):
        raise ValidationError('isEligible must be a boolean.')
    entry = db.session.get(Schedule, schedule_id)
    if entry is None:
        raise NotFoundError(f'Schedule entry not found with ID: {schedule_id}')
    entry.is_eligible = is_eligible_flag
    db.session.commit()
    return entry


def delete_schedule(schedule_id: int) -> Schedule:
    entry = db.session.get(Schedule, schedule_id)
    if entry is None:
        raise NotFoundError(f'Schedule entry not found with ID: {schedule_id}')
    db.session.delete(entry)
    db.session.commit()
    return entry


__all__ = [
    "ScheduleStatus",
    "WEEKDAYS",
    "delete_schedule",
    "eligible_cohorts",
    "is_eligible",
    "list_schedules",
    "lookup_schedule",
    "set_schedule_eligibility",
    "upsert_schedule_days",
    "weekday_name",
]
