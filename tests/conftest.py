import sys
from datetime import datetime
from itertools import count
from pathlib import Path
from typing import Generator

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app import create_app
from models import MealRecord, Program, Schedule, Student, db

# A Wednesday.
FROZEN_NOW = datetime(2024, 5, 15, 9, 30)


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch) -> Generator:
    monkeypatch.setenv('REQUEST_LOG_SAMPLE_RATE', '1')
    monkeypatch.delenv('DATABASE_URL', raising=False)
    application = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SERVER_NAME': 'testserver',
        'CLOCK': lambda: FROZEN_NOW,
    })
    with application.app_context():
        yield application
        db.session.remove()
        db.drop_all()
    application.extensions['cohort_cache'].unwatch()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def add_program(app):
    def _add(name: str = 'BSA') -> Program:
        program = Program(name=name, description=f'{name} program')
        db.session.add(program)
        db.session.commit()
        return program
    return _add


@pytest.fixture
def add_student(app):
    numbers = count(1)

    def _add(program: str = 'BSA', year_level: int = 1, student_id_number: str = None,
             name: str = None, email: str = None, section: str = 'A') -> Student:
        n = next(numbers)
        student = Student(
            student_id_number=student_id_number or f'2024-{n:04d}',
            name=name or f'Student {n}',
            email=email,
            program=program,
            year_level=year_level,
            section=section,
        )
        db.session.add(student)
        db.session.commit()
        return student
    return _add


@pytest.fixture
def set_schedule(app):
    def _set(program: str, year_level: int, day_of_week: str, is_eligible: bool = True) -> Schedule:
        entry = Schedule(program=program, year_level=year_level, day_of_week=day_of_week,
                         is_eligible=is_eligible)
        db.session.add(entry)
        db.session.commit()
        return entry
    return _set


@pytest.fixture
def add_record(app):
    def _add(student, status: str, when: datetime, student_id_number: str = None) -> MealRecord:
        number = student_id_number or student.student_id_number
        record = MealRecord.for_student(student, number, status, when)
        db.session.add(record)
        db.session.commit()
        return record
    return _add
