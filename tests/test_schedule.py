import pytest

from errors import NotFoundError, ValidationError
from models import Schedule
from schedule import (
    ScheduleStatus,
    delete_schedule,
    eligible_cohorts,
    is_eligible,
    lookup_schedule,
    upsert_schedule_days,
)


@pytest.fixture
def programs(add_program):
    add_program('BSA')
    add_program('ACT')


def _post(client, program, year_level, *days):
    return client.post('/api/v1/schedules', json={
        'program': program,
        'yearLevel': year_level,
        'scheduleDays': [{'dayOfWeek': day, 'isEligible': flag} for day, flag in days],
    })


def test_lookup_is_tri_state(app, set_schedule):
    set_schedule('BSA', 1, 'Monday', True)
    set_schedule('BSA', 1, 'Tuesday', False)

    assert lookup_schedule('BSA', 1, 'Monday') is ScheduleStatus.ELIGIBLE
    assert lookup_schedule('bsa', 1, 'Tuesday') is ScheduleStatus.NOT_ELIGIBLE
    assert lookup_schedule('BSA', 1, 'Wednesday') is ScheduleStatus.UNCONFIGURED
    assert is_eligible('BSA', 1, 'Monday')
    assert not is_eligible('BSA', 1, 'Wednesday')


def test_eligible_cohorts(app, set_schedule):
    set_schedule('BSA', 1, 'Monday', True)
    set_schedule('BSA', 2, 'Monday', False)
    set_schedule('BSIS', 3, 'Monday', True)

    assert sorted(eligible_cohorts('Monday')) == [('BSA', 1), ('BSIS', 3)]
    assert eligible_cohorts('Sunday') == []


def test_upsert_creates_rows(client, programs):
    response = _post(client, 'bsa', 2, ('Monday', True), ('Tuesday', False))
    data = response.get_json()

    assert response.status_code == 201
    assert data['message'] == 'Schedule entries processed. 2 successful, 0 failed.'
    assert 'errors' not in data
    assert [(e['program'], e['yearLevel'], e['dayOfWeek'], e['isEligible']) for e in data['data']] == [
        ('BSA', 2, 'Monday', True),
        ('BSA', 2, 'Tuesday', False),
    ]


def test_upsert_is_idempotent(client, programs):
    _post(client, 'BSA', 2, ('Monday', True), ('Tuesday', False))
    response = _post(client, 'BSA', 2, ('Monday', False), ('Tuesday', False))

    assert response.status_code == 201
    assert response.get_json()['message'] == 'Schedule entries processed. 2 successful, 0 failed.'
    assert Schedule.query.count() == 2
    assert lookup_schedule('BSA', 2, 'Monday') is ScheduleStatus.NOT_ELIGIBLE


def test_partial_failure_is_reported(client, programs):
    response = _post(client, 'BSA', 1, ('Monday', True), ('Funday', True))
    data = response.get_json()

    assert response.status_code == 201
    assert data['message'] == 'Schedule entries processed. 1 successful, 1 failed.'
    assert len(data['errors']) == 1
    assert data['errors'][0]['daySchedule'] == {'dayOfWeek': 'Funday', 'isEligible': True}


def test_every_day_failing_is_an_error(app, programs):
    with pytest.raises(ValidationError):
        upsert_schedule_days('BSA', 1, [{'dayOfWeek': 'Funday', 'isEligible': True},
                                        {'dayOfWeek': 'Monday', 'isEligible': 'yes'}])
    assert Schedule.query.count() == 0


@pytest.mark.parametrize('program, year_level', [
    ('ACT', 3),
    ('BSA', 5),
    ('BSA', 'second'),
    ('XYZ', 1),
    ('', 1),
])
def test_invalid_cohorts_are_rejected(client, programs, program, year_level):
    response = _post(client, program, year_level, ('Monday', True))
    assert response.status_code == 400
    assert Schedule.query.count() == 0


@pytest.mark.parametrize('schedule_days', [5, None, 'Monday', {'dayOfWeek': 'Monday'}, []])
def test_schedule_days_must_be_a_list(client, programs, schedule_days):
    response = client.post('/api/v1/schedules', json={
        'program': 'BSA', 'yearLevel': 1, 'scheduleDays': schedule_days,
    })
    assert response.status_code == 400
    assert response.get_json()['detail'] == 'Schedule days must be a non-empty list.'
    assert Schedule.query.count() == 0


def test_unknown_program_message(client, programs):
    response = _post(client, 'XYZ', 1, ('Monday', True))
    assert response.get_json()['detail'] == "Program 'XYZ' does not exist in the database."


def test_update_and_delete(client, set_schedule):
    entry = set_schedule('BSA', 1, 'Friday', False)
    entry_id = entry.id

    updated = client.put(f'/api/v1/schedules/{entry_id}', json={'isEligible': True})
    assert updated.status_code == 200
    assert updated.get_json()['data']['isEligible'] is True

    deleted = client.delete(f'/api/v1/schedules/{entry_id}')
    assert deleted.status_code == 200
    assert deleted.get_json()['message'] == 'Schedule entry for BSA Year 1 on Friday deleted successfully.'
    assert Schedule.query.count() == 0


def test_update_requires_boolean(client, set_schedule):
    entry = set_schedule('BSA', 1, 'Friday', False)
    response = client.put(f'/api/v1/schedules/{entry.id}', json={'isEligible': 'true'})
    assert response.status_code == 400


def test_missing_rows_are_not_found(client):
    assert client.put('/api/v1/schedules/999', json={'isEligible': True}).status_code == 404
    assert client.delete('/api/v1/schedules/999').status_code == 404


def test_delete_missing_raises(app):
    with pytest.raises(NotFoundError):
        delete_schedule(42)


def test_list_is_in_weekday_order(client, set_schedule):
    set_schedule('BSA', 1, 'Sunday', False)
    set_schedule('BSA', 1, 'Monday', True)
    set_schedule('ACT', 1, 'Wednesday', True)
    set_schedule('BSA', 2, 'Monday', True)

    data = client.get('/api/v1/schedules').get_json()
    assert [(e['program'], e['yearLevel'], e['dayOfWeek']) for e in data['data']] == [
        ('ACT', 1, 'Wednesday'),
        ('BSA', 1, 'Monday'),
        ('BSA', 1, 'Sunday'),
        ('BSA', 2, 'Monday'),
    ]

    filtered = client.get('/api/v1/schedules?program=act').get_json()
    assert filtered['count'] == 1
