"""Seed the database with programs, schedules, an admin and sample students.

Optionally generates a sparse meal history so the dashboard has something
to show on a fresh install.

Usage:
    python seed.py
    python seed.py --history 180

The admin account is read from ``SEED_ADMIN_NAME``, ``SEED_ADMIN_EMAIL`` and
``SEED_ADMIN_PASSWORD``; it is skipped when the email or password is unset.
"""

from __future__ import annotations

import argparse
import os
import random
from datetime import datetime, time, timedelta
from typing import Dict, List, Sequence, Tuple

from flask import Flask

from config import Config, utc_now
from models import (
    ACT_MAX_YEAR,
    ACT_PROGRAM,
    CLAIMED,
    DAYS_OF_WEEK,
    ELIGIBLE_BUT_NOT_CLAIMED,
    MAX_YEAR,
    Admin,
    MealRecord,
    Program,
    Schedule,
    Student,
    db,
    validate_cohort,
)

PROGRAMS = [
    ('BSA', 'Bachelor of Science in Accountancy', '#1F4E79'),
    ('BSAIS', 'Bachelor of Science in Accounting Information System', '#2E75B6'),
    ('BSIS', 'Bachelor of Science in Information Systems', '#46050A'),
    ('BSSW', 'Bachelor of Science in Social Work', '#548235'),
    ('BAB', 'Bachelor of Arts in Broadcasting', '#BF8F00'),
    (ACT_PROGRAM, 'Associate in Computer Technology', '#7030A0'),
]

# Eligible weekdays per year level; every program shares the rotation, so
# each weekday feeds roughly the same number of students.
SCHEDULE_TEMPLATES: Dict[int, Sequence[str]] = {
    1: ('Monday', 'Wednesday', 'Friday'),
    2: ('Tuesday', 'Thursday'),
    3: ('Monday', 'Thursday'),
    4: ('Wednesday', 'Saturday'),
}

SECTIONS = ('A', 'B', 'C', 'D')
FIRST_NAMES = ('Juan', 'Maria', 'Jose', 'Ana', 'Mark', 'Grace', 'Paolo', 'Jasmine', 'Carlo', 'Bea')
LAST_NAMES = ('Santos', 'Reyes', 'Cruz', 'Bautista', 'Ocampo', 'Garcia', 'Mendoza', 'Torres')

CLAIM_RATE = 0.9


def create_app() -> Flask:
    """Create a standalone Flask application for seeding.

    The main app is not imported so seeding never registers routes or
    middleware.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    db.init_app(app)
    return app


def cohorts() -> List[Tuple[str, int]]:
    result = []
    for name, _description, _color in PROGRAMS:
        max_year = ACT_MAX_YEAR if name == ACT_PROGRAM else MAX_YEAR
        result.extend((name, year) for year in range(1, max_year + 1))
    return result


def seed_programs() -> None:
    for name, description, color in PROGRAMS:
        db.session.add(Program(name=name, description=description, color=color))


def seed_schedules() -> None:
    """Write all seven days for every cohort so nothing is left unconfigured."""
    for program, year_level in cohorts():
        validate_cohort(program, year_level)
        eligible_days = SCHEDULE_TEMPLATES[year_level]
        for day in DAYS_OF_WEEK:
            db.session.add(Schedule(program=program, year_level=year_level,
                                    day_of_week=day, is_eligible=day in eligible_days))


def seed_admin() -> None:
    email = os.environ.get('SEED_ADMIN_EMAIL')
    password = os.environ.get('SEED_ADMIN_PASSWORD')
    if not email or not password:
        print('SEED_ADMIN_EMAIL/SEED_ADMIN_PASSWORD not set; skipping admin account.')
        return
    admin = Admin(name=os.environ.get('SEED_ADMIN_NAME', 'Cafeteria Admin'), email=email)
    admin.set_password(password)
    db.session.add(admin)


def seed_students(rng: random.Random, per_cohort: int = 5) -> List[Student]:
    students = []
    counter = 1
    year_prefix = utc_now().year
    for program, year_level in cohorts():
        for _ in range(per_cohort):
            name = f'{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)} {counter}'
            student = Student(
                student_id_number=f'{year_prefix}-{counter:04d}',
                name=name,
                email=Student.email_from_name(name, Config.STUDENT_EMAIL_DOMAIN),
                program=program,
                year_level=year_level,
                section=rng.choice(SECTIONS),
            )
            db.session.add(student)
            students.append(student)
            counter += 1
    return students


def seed_history(students: List[Student], days: int, rng: random.Random) -> int:
    """Create claimed/unclaimed records for every eligible student per day.

    Sundays are skipped. Records are dated at midday UTC.
    """
    today = utc_now().date()
    created = 0
    for offset in range(days):
        day = today - timedelta(days=offset)
        day_of_week = DAYS_OF_WEEK[day.weekday()]
        if day_of_week == 'Sunday':
            continue
        when = datetime.combine(day, time(12, 0))
        for student in students:
            if day_of_week not in SCHEDULE_TEMPLATES[student.year_level]:
                continue
            status = CLAIMED if rng.random() < CLAIM_RATE else ELIGIBLE_BUT_NOT_CLAIMED
            db.session.add(MealRecord.for_student(student, student.student_id_number, status, when))
            created += 1
    return created


def seed_data(history_days: int = 0, seed: int = 42) -> None:
    rng = random.Random(seed)

    # Drop and recreate tables. Production deployments should migrate
    # instead of wiping data.
    db.drop_all()
    db.create_all()

    seed_programs()
    seed_schedules()
    seed_admin()
    db.session.commit()

    students = seed_students(rng)
    db.session.commit()

    created = 0
    if history_days:
        created = seed_history(students, history_days, rng)
        db.session.commit()

    print(f'Database seeded: {len(PROGRAMS)} programs, {len(students)} students, '
          f'{created} meal records.')


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--history', type=int, default=0, metavar='DAYS',
                        help='generate meal history for the last DAYS days')
    parser.add_argument('--seed', type=int, default=42, help='random seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        seed_data(history_days=args.history, seed=args.seed)


if __name__ == '__main__':
    main()
