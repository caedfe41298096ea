"""Kitchen check-in: decide whether a student gets a meal right now.

Every scan leaves exactly one :class:`~models.MealRecord` behind, except a
repeat scan after a successful claim on the same UTC day, which writes
nothing. Unknown IDs are recorded too so failed lookups can be audited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app_logging import get_logger
from errors import ValidationError
from identity import AvatarResolver
from models import (
    CLAIMED,
    INELIGIBLE_NOT_SCHEDULED,
    INELIGIBLE_STUDENT_NOT_FOUND,
    MealRecord,
    Student,
    db,
)
from periods import day_range, to_utc_naive
from schedule import ScheduleStatus, lookup_schedule, weekday_name

_logger = get_logger("mealtracker.eligibility")

ELIGIBLE = 'ELIGIBLE'
ALREADY_CLAIMED = 'ALREADY_CLAIMED'
NOT_SCHEDULED = 'NOT_SCHEDULED'
STUDENT_NOT_FOUND = 'STUDENT_NOT_FOUND'


@dataclass
class EligibilityResult:
    status: str
    reason: str
    student_info: Optional[Dict[str, Any]] = None
    record_status: Optional[str] = None
    schedule_configured: bool = True
    checked_at: Optional[datetime] = field(default=None, repr=False)

    @property
    def found(self) -> bool:
        return self.status != STUDENT_NOT_FOUND

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'success': self.found,
            'eligibilityStatus': self.status,
            'reason': self.reason,
        }
        if self.student_info is not None:
            data['studentInfo'] = self.student_info
        if self.status == NOT_SCHEDULED:
            data['scheduleConfigured'] = self.schedule_configured
        return data


def _resolve_avatar(student: Student, resolver: Optional[AvatarResolver], placeholder: str) -> str:
    if resolver is None or not student.email:
        return placeholder
    try:
        return resolver.resolve(student.email) or placeholder
    except Exception as exc:
        _logger.warning(
            "avatar lookup failed",
            extra={"student_id_number": student.student_id_number, "error": str(exc)},
        )
        return placeholder


def student_info(student: Student, resolver: Optional[AvatarResolver], placeholder: str) -> Dict[str, Any]:
    return {
        'studentIdNumber': student.student_id_number,
        'name': student.name,
        'program': student.program,
        'year': student.year_level,
        'section': student.section or 'N/A',
        'profilePictureUrl': _resolve_avatar(student, resolver, placeholder),
    }


def _has_claimed(student: Student, now: datetime) -> bool:
    today = day_range(now.date())
    return db.session.query(
        MealRecord.query.filter(
            MealRecord.student_id == student.id,
            MealRecord.status == CLAIMED,
            MealRecord.date_checked >= today.start,
            MealRecord.date_checked < today.stop,
        ).exists()
    ).scalar()


def check_eligibility(student_id_number: Any, now: Optional[datetime] = None,
                      avatar_resolver: Optional[AvatarResolver] = None,
                      placeholder_url: Optional[str] = None) -> EligibilityResult:
    """Evaluate one kitchen scan and record its outcome.

    ``now`` defaults to the application clock. The weekday is always taken
    in UTC so deployments in different regions agree on the schedule.
    """
    if not isinstance(student_id_number, str) or not student_id_number.strip():
        raise ValidationError('Student ID Number is required.')
    student_id_number = student_id_number.strip()

    config = current_app.config
    now = to_utc_naive(now) if now is not None else config['CLOCK']()
    if placeholder_url is None:
        placeholder_url = config['AVATAR_PLACEHOLDER_URL']
    day = weekday_name(now)

    student = Student.query.filter_by(student_id_number=student_id_number).first()
    if student is None:
        db.session.add(MealRecord.for_student(None, student_id_number, INELIGIBLE_STUDENT_NOT_FOUND, now))
        db.session.commit()
        _logger.warning(
            "unknown student scanned",
            extra={"event": "eligibility_not_found", "student_id_number": student_id_number},
        )
        return EligibilityResult(
            status=STUDENT_NOT_FOUND,
            reason='Student ID not found in masterlist.',
            record_status=INELIGIBLE_STUDENT_NOT_FOUND,
            checked_at=now,
        )

    info = student_info(student, avatar_resolver, placeholder_url)

    if _has_claimed(student, now):
        return EligibilityResult(
            status=ALREADY_CLAIMED,
            reason='Meal has already been claimed today.',
            student_info=info,
            checked_at=now,
        )

    schedule_status = lookup_schedule(student.program, student.year_level, day)

    if schedule_status is ScheduleStatus.ELIGIBLE:
        db.session.add(MealRecord.for_student(student, student_id_number, CLAIMED, now))
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent scan committed the day's claim first.
            db.session.rollback()
            _logger.info("duplicate claim rejected", extra={"student_id_number": student_id_number})
            return EligibilityResult(
                status=ALREADY_CLAIMED,
                reason='Meal has already been claimed today.',
                student_info=info,
                checked_at=now,
            )
        _logger.info("meal claimed", extra={"student_id_number": student_id_number,
                                            "program": student.program,
                                            "year_level": student.year_level})
        return EligibilityResult(
            status=ELIGIBLE,
            reason='Eligible for meal.',
            student_info=info,
            record_status=CLAIMED,
            checked_at=now,
        )

    configured = schedule_status is not ScheduleStatus.UNCONFIGURED
    db.session.add(MealRecord.for_student(student, student_id_number, INELIGIBLE_NOT_SCHEDULED, now))
    db.session.commit()
    if configured:
        reason = f'Not scheduled for eligibility on {day}.'
    else:
        reason = (f'Not scheduled for eligibility on {day}: no schedule is configured for '
                  f'{student.program} year {student.year_level}.')
        _logger.warning("schedule not configured",
                        extra={"program": student.program, "year_level": student.year_level,
                               "day_of_week": day})
    return EligibilityResult(
        status=NOT_SCHEDULED,
        reason=reason,
        student_info=info,
        record_status=INELIGIBLE_NOT_SCHEDULED,
        schedule_configured=configured,
        checked_at=now,
    )


__all__ = [
    "ALREADY_CLAIMED",
    "ELIGIBLE",
    "EligibilityResult",
    "NOT_SCHEDULED",
    "STUDENT_NOT_FOUND",
    "check_eligibility",
    "student_info",
]
