"""Database models for the meal eligibility tracker.

SQLAlchemy is used as the ORM layer. The models are:

* :class:`Program` – an academic program such as ``BSIS``. Drives validation
  of student and schedule programs.
* :class:`Student` – a student identified by a unique ``student_id_number``.
* :class:`Schedule` – whether a cohort (program + year level) may eat on a
  given weekday. At most one row exists per triple, enforced by a
  table-level unique constraint.
* :class:`MealRecord` – an append-only outcome of a kitchen check-in or of
  the unclaimed backfill. Program and year level are frozen into the row as
  a :class:`CohortSnapshot` so later student edits never rewrite history.
* :class:`Admin` – an operator account, created by the seed tool.
"""

from __future__ import annotations

import os
import re
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event, select
from sqlalchemy.engine import Engine
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config, utc_now


db = SQLAlchemy()


CLAIMED = 'CLAIMED'
INELIGIBLE_NOT_SCHEDULED = 'INELIGIBLE_NOT_SCHEDULED'
INELIGIBLE_STUDENT_NOT_FOUND = 'INELIGIBLE_STUDENT_NOT_FOUND'
ELIGIBLE_BUT_NOT_CLAIMED = 'ELIGIBLE_BUT_NOT_CLAIMED'

MEAL_RECORD_STATUSES = (
    CLAIMED,
    INELIGIBLE_NOT_SCHEDULED,
    INELIGIBLE_STUDENT_NOT_FOUND,
    ELIGIBLE_BUT_NOT_CLAIMED,
)

DAYS_OF_WEEK = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')

# The two-year associate track.
ACT_PROGRAM = 'ACT'
ACT_MAX_YEAR = 2
MAX_YEAR = 4

UNKNOWN_PROGRAM = 'UNKNOWN'

_ADMIN_EMAIL_DOMAIN = os.environ.get('ADMIN_EMAIL_DOMAIN', 'laverdad.edu.ph')
_ADMIN_EMAIL_RE = re.compile(r'.+@(student\.)?' + re.escape(_ADMIN_EMAIL_DOMAIN) + r'$')


def validate_cohort(program: str, year_level: int) -> None:
    """Raise ``ValueError`` if ``year_level`` is impossible for ``program``."""
    if not 1 <= year_level <= MAX_YEAR:
        raise ValueError(f'Year level must be between 1 and {MAX_YEAR}.')
    if program.upper() == ACT_PROGRAM and year_level > ACT_MAX_YEAR:
        raise ValueError(f'{ACT_PROGRAM} program is only available for Year 1 and 2.')


class TimestampMixin:
    # Mixin columns are copied onto each model, so they stay unannotated.
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class Program(TimestampMixin, db.Model):
    """An academic program. ``name`` is the upper-case acronym."""

    __tablename__ = 'program'

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(20), unique=True, nullable=False)
    description: str = db.Column(db.String(200), nullable=False)
    color: str = db.Column(db.String(9), nullable=False, default='#FFFFFF')

    @db.validates('name')
    def _normalise_name(self, _key, value: str) -> str:
        return value.strip().upper()

    def __repr__(self) -> str:
        return f"<Program {self.name}>"


class Student(TimestampMixin, db.Model):
    """A student who may be checked in at the kitchen terminal.

    ``email`` is optional but unique when present; NULLs never collide under
    a unique constraint so students without an address are fine.
    """

    __tablename__ = 'student'

    id: int = db.Column(db.Integer, primary_key=True)
    student_id_number: str = db.Column(db.String(40), unique=True, nullable=False, index=True)
    name: str = db.Column(db.String(120), nullable=False)
    email: Optional[str] = db.Column(db.String(120), unique=True, nullable=True)
    program: str = db.Column(db.String(20), nullable=False)
    year_level: int = db.Column(db.Integer, nullable=False)
    section: Optional[str] = db.Column(db.String(10), nullable=True)
    profile_picture_url: str = db.Column(db.String(255), nullable=False,
                                         default='/images/default-avatar.png')

    meal_records = db.relationship('MealRecord', back_populates='student', lazy=True,
                                   passive_deletes='all')

    __table_args__ = (
        db.CheckConstraint('year_level BETWEEN 1 AND 4', name='ck_student_year_level'),
    )

    @db.validates('program', 'section')
    def _upper(self, _key, value):
        return value.strip().upper() if value else value

    @db.validates('email')
    def _lower(self, _key, value):
        return value.strip().lower() if value else None

    @staticmethod
    def email_from_name(name: str, domain: str) -> str:
        """Derive the school address used when none was supplied."""
        return re.sub(r'\s+', '', name).lower() + '@' + domain

    def __repr__(self) -> str:
        return f"<Student {self.student_id_number} {self.program}-{self.year_level}>"


def _check_student_cohort(connection, target: Student) -> None:
    validate_cohort(target.program, target.year_level)
    known = connection.execute(select(Program.id).where(Program.name == target.program)).first()
    if known is None:
        raise ValueError(f'Unknown program {target.program!r}.')


@event.listens_for(Student, 'before_insert')
def _before_student_insert(_mapper, connection, target: Student) -> None:
    _check_student_cohort(connection, target)
    if target.email is None:
        target.email = Student.email_from_name(target.name, Config.STUDENT_EMAIL_DOMAIN)


@event.listens_for(Student, 'before_update')
def _before_student_update(_mapper, connection, target: Student) -> None:
    _check_student_cohort(connection, target)


class Schedule(TimestampMixin, db.Model):
    """Eligibility of one cohort on one weekday.

    The combination of ``program``, ``year_level`` and ``day_of_week`` is
    unique so each cohort has at most one answer per weekday. A missing row
    means the cohort was never configured for that day.
    """

    __tablename__ = 'schedule'

    id: int = db.Column(db.Integer, primary_key=True)
    program: str = db.Column(db.String(20), nullable=False)
    year_level: int = db.Column(db.Integer, nullable=False)
    day_of_week: str = db.Column(db.String(9), nullable=False)
    is_eligible: bool = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint('program', 'year_level', 'day_of_week', name='uix_schedule_cohort_day'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'program': self.program,
            'yearLevel': self.year_level,
            'dayOfWeek': self.day_of_week,
            'isEligible': self.is_eligible,
        }

    def __repr__(self) -> str:
        return (f"<Schedule {self.program}-{self.year_level} {self.day_of_week} "
                f"eligible={self.is_eligible}>")


@dataclass(frozen=True)
class CohortSnapshot:
    """Program and year level as they were when a meal record was written."""

    program: str
    year_level: int


class MealRecord(db.Model):
    """One immutable outcome of a check-in or backfill.

    ``claim_day`` is only populated for ``CLAIMED`` rows. Together with the
    unique constraint on ``(student_id, claim_day)`` it lets the database
    reject a second claim for the same student on the same UTC day, while
    the NULLs on every other status never collide.
    """

    __tablename__ = 'meal_record'

    id: int = db.Column(db.Integer, primary_key=True)
    student_id: Optional[int] = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='SET NULL'),
                                          nullable=True, index=True)
    student_id_number: str = db.Column(db.String(40), nullable=False)
    program_at_time_of_record: str = db.Column(db.String(20), nullable=False)
    year_level_at_time_of_record: int = db.Column(db.Integer, nullable=False)
    date_checked: datetime = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    status: str = db.Column(db.Enum(*MEAL_RECORD_STATUSES, name='meal_record_status',
                                    native_enum=False), nullable=False, index=True)
    claim_day: Optional[date] = db.Column(db.Date, nullable=True)
    created_at: datetime = db.Column(db.DateTime, nullable=False, default=utc_now)

    cohort = db.composite(CohortSnapshot, program_at_time_of_record, year_level_at_time_of_record)

    student = db.relationship('Student', back_populates='meal_records')

    __table_args__ = (
        db.UniqueConstraint('student_id', 'claim_day', name='uix_meal_record_one_claim_per_day'),
    )

    @classmethod
    def for_student(cls, student: Optional[Student], student_id_number: str,
                    status: str, when: datetime) -> 'MealRecord':
        """Build a record, snapshotting the student's current cohort."""
        if student is None:
            cohort = CohortSnapshot(UNKNOWN_PROGRAM, 0)
        else:
            cohort = CohortSnapshot(student.program, student.year_level)
        return cls(
            student=student,
            student_id_number=student_id_number,
            cohort=cohort,
            date_checked=when,
            status=status,
            claim_day=when.date() if status == CLAIMED else None,
        )

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'studentIdNumber': self.student_id_number,
            'programAtTimeOfRecord': self.cohort.program,
            'yearLevelAtTimeOfRecord': self.cohort.year_level,
            'dateChecked': self.date_checked.isoformat() + 'Z',
            'status': self.status,
            'student': None,
        }
        if self.student is not None:
            data['student'] = {
                'id': self.student.id,
                'name': self.student.name,
                'studentIdNumber': self.student.student_id_number,
                'program': self.student.program,
                'yearLevel': self.student.year_level,
                'section': self.student.section,
            }
        return data

    def __repr__(self) -> str:
        return (f"<MealRecord {self.student_id_number} {self.status} "
                f"at={self.date_checked.isoformat()}>")


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    # SQLite ignores ON DELETE SET NULL unless foreign keys are switched on.
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@event.listens_for(MealRecord, 'before_update')
def _reject_meal_record_update(_mapper, _connection, target: MealRecord) -> None:
    raise ValueError(f'Meal records are immutable (id={target.id}).')


class Admin(TimestampMixin, db.Model):
    """An operator account. Passwords are stored as werkzeug hashes."""

    __tablename__ = 'admin'

    id: int = db.Column(db.Integer, primary_key=True)
    name: str = db.Column(db.String(120), nullable=False)
    email: str = db.Column(db.String(120), unique=True, nullable=False)
    password_hash: str = db.Column(db.String(255), nullable=False)
    password_reset_token: Optional[str] = db.Column(db.String(255), nullable=True)
    password_reset_expires: Optional[datetime] = db.Column(db.DateTime, nullable=True)
    profile_picture_url: Optional[str] = db.Column(db.String(255), nullable=True)

    @db.validates('email')
    def _validate_email(self, _key, value: str) -> str:
        value = value.strip().lower()
        if not _ADMIN_EMAIL_RE.match(value):
            raise ValueError(f'Admin email must belong to @{_ADMIN_EMAIL_DOMAIN}.')
        return value

    def set_password(self, password: str) -> None:
        if len(password) < 6:
            raise ValueError('Password must be at least 6 characters long.')
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:
        return f"<Admin {self.email}>"
