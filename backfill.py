"""Retroactive "eligible but did not claim" records.

The kitchen only writes a record when a student scans. To report how many
scheduled meals went unclaimed, an admin runs this backfill for a finished
day: every student whose cohort was eligible that weekday and who has no
record at all for the day gets an ``ELIGIBLE_BUT_NOT_CLAIMED`` record dated
at midnight UTC. Students that already have any record are skipped, which
makes repeated runs for the same day harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict

from sqlalchemy import and_, or_, select

from app_logging import get_logger
from errors import InvalidPeriodError, ValidationError
from models import ELIGIBLE_BUT_NOT_CLAIMED, MealRecord, Student, db
from periods import day_range, parse_day
from schedule import WEEKDAYS, eligible_cohorts, weekday_name

_logger = get_logger("mealtracker.backfill")


@dataclass
class BackfillResult:
    created_count: int
    message: str
    day: date
    day_of_week: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'createdCount': self.created_count,
            'message': self.message,
            'date': self.day.isoformat(),
            'dayOfWeek': self.day_of_week,
        }


def generate_unclaimed(value: Any) -> BackfillResult:
    """Insert unclaimed records for ``value`` (a date or ``YYYY-MM-DD``)."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError('A specific date (YYYY-MM-DD) is required in the request body.')
    try:
        day = parse_day(value, 'Invalid date format. Please use YYYY-MM-DD.')
    except InvalidPeriodError as exc:
        raise ValidationError(exc.detail) from None

    day_of_week = weekday_name(day)
    if day_of_week not in WEEKDAYS:
        raise ValidationError('Invalid day calculated from the provided date.')

    cohorts = eligible_cohorts(day_of_week)
    if not cohorts:
        return BackfillResult(
            0, f'No programs were scheduled as eligible on {day_of_week}. No records generated.',
            day, day_of_week,
        )

    span = day_range(day)
    cohort_filter = or_(*(
        and_(Student.program == program, Student.year_level == year_level)
        for program, year_level in cohorts
    ))
    accounted = (
        select(MealRecord.student_id)
        .where(
            MealRecord.student_id.isnot(None),
            MealRecord.date_checked >= span.start,
            MealRecord.date_checked < span.stop,
        )
        .distinct()
    )
    missing = (
        Student.query
        .filter(cohort_filter, Student.id.notin_(accounted))
        .order_by(Student.id)
        .all()
    )

    if not missing:
        return BackfillResult(
            0, 'All eligible students for the specified date have been accounted for. '
               'No new records generated.',
            day, day_of_week,
        )

    db.session.add_all(
        MealRecord.for_student(student, student.student_id_number, ELIGIBLE_BUT_NOT_CLAIMED, span.start)
        for student in missing
    )
    db.session.commit()

    _logger.info("unclaimed records generated",
                 extra={"date": day.isoformat(), "day_of_week": day_of_week,
                        "created_count": len(missing), "cohorts": len(cohorts)})
    return BackfillResult(
        len(missing),
        f"Successfully generated {len(missing)} 'unclaimed' meal records for {day.isoformat()}.",
        day, day_of_week,
    )


__all__ = ["BackfillResult", "generate_unclaimed"]
