from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from models import (
    CLAIMED,
    INELIGIBLE_NOT_SCHEDULED,
    Admin,
    CohortSnapshot,
    MealRecord,
    Program,
    Schedule,
    Student,
    db,
    validate_cohort,
)


def test_email_from_name():
    assert Student.email_from_name('Juan  Dela Cruz', 'student.laverdad.edu.ph') == \
        'juandelacruz@student.laverdad.edu.ph'


def test_student_fields_are_normalised(add_program, add_student):
    add_program('BSIS')
    student = add_student(' bsis ', 3, section='b', email=' Juan@Student.LaVerdad.edu.ph ')
    assert student.program == 'BSIS'
    assert student.section == 'B'
    assert student.email == 'juan@student.laverdad.edu.ph'


def test_program_name_is_upper_cased(add_program):
    assert add_program('bab').name == 'BAB'


@pytest.mark.parametrize('program, year_level', [('ACT', 3), ('BSA', 0), ('BSA', 5)])
def test_impossible_cohorts(program, year_level):
    with pytest.raises(ValueError):
        validate_cohort(program, year_level)


def test_act_second_year_is_valid():
    validate_cohort('act', 2)


def test_mixin_timestamps_are_mapped(add_program):
    for model in (Program, Student, Schedule, Admin):
        assert {'created_at', 'updated_at'} <= set(model.__table__.c.keys())
    program = add_program('BSA')
    assert program.created_at is not None
    assert program.updated_at is not None


def test_act_student_beyond_second_year_is_rejected(add_program, add_student):
    add_program('ACT')
    with pytest.raises(ValueError, match='Year 1 and 2'):
        add_student('ACT', 3)
    db.session.rollback()
    assert Student.query.count() == 0


def test_student_program_must_be_registered(add_program, add_student):
    add_program('BSA')
    with pytest.raises(ValueError, match='Unknown program'):
        add_student('BSIS', 1)
    db.session.rollback()
    assert Student.query.count() == 0


def test_moving_student_into_impossible_cohort_is_rejected(add_program, add_student):
    add_program('BSA')
    add_program('ACT')
    student = add_student('BSA', 4)
    student.program = 'ACT'
    with pytest.raises(ValueError):
        db.session.commit()
    db.session.rollback()
    assert Student.query.one().program == 'BSA'


def test_missing_email_is_derived_from_name(add_program, add_student):
    add_program('BSA')
    derived = add_student('BSA', 1, name='Juan Dela Cruz')
    given = add_student('BSA', 1, name='Maria Reyes', email='maria.r@student.laverdad.edu.ph')

    assert derived.email == 'juandelacruz@student.laverdad.edu.ph'
    assert given.email == 'maria.r@student.laverdad.edu.ph'


def test_schedule_triple_is_unique(set_schedule):
    set_schedule('BSA', 1, 'Monday', True)
    db.session.add(Schedule(program='BSA', year_level=1, day_of_week='Monday', is_eligible=False))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_snapshot_and_claim_day(add_program, add_student):
    add_program('BSA')
    student = add_student('BSA', 2)
    claimed = MealRecord.for_student(student, student.student_id_number, CLAIMED,
                                     datetime(2024, 5, 15, 9, 30))
    refused = MealRecord.for_student(student, student.student_id_number, INELIGIBLE_NOT_SCHEDULED,
                                     datetime(2024, 5, 15, 9, 31))

    assert claimed.cohort == CohortSnapshot('BSA', 2)
    assert claimed.claim_day == datetime(2024, 5, 15).date()
    assert refused.claim_day is None


def test_one_claim_per_student_per_day(add_program, add_student, add_record):
    add_program('BSA')
    student = add_student('BSA', 2)
    add_record(student, CLAIMED, datetime(2024, 5, 15, 8, 0))
    db.session.add(MealRecord.for_student(student, student.student_id_number, CLAIMED,
                                          datetime(2024, 5, 15, 13, 0)))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_admin_password_hashing(app):
    admin = Admin(name='Cafeteria Admin', email='Kitchen@LaVerdad.edu.ph')
    admin.set_password('s3cret!')

    assert admin.email == 'kitchen@laverdad.edu.ph'
    assert admin.password_hash != 's3cret!'
    assert admin.check_password('s3cret!')
    assert not admin.check_password('wrong')


def test_admin_rules(app):
    with pytest.raises(ValueError):
        Admin(name='Outsider', email='someone@example.com')
    with pytest.raises(ValueError):
        Admin(name='Cafeteria Admin', email='kitchen@laverdad.edu.ph').set_password('12345')


def test_program_color_default(app):
    db.session.add(Program(name='BSSW', description='Social Work'))
    db.session.commit()
    assert Program.query.one().color == '#FFFFFF'
