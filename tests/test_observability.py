import json
import logging

import app_logging
from app_logging import REDACTED, redact_sensitive_data
from correlation_id_middleware import HEADER_NAME


def test_health_endpoint(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'success': True, 'status': 'ok'}


def test_versioned_health_endpoint(client):
    assert client.get('/api/v1/health').status_code == 200


def test_request_id_propagation(client):
    response = client.get('/health', headers={HEADER_NAME: 'test-id-123'})
    assert response.headers.get(HEADER_NAME) == 'test-id-123'


def test_unusable_request_id_is_replaced(client):
    response = client.get('/health', headers={HEADER_NAME: 'not valid <id>'})
    generated = response.headers.get(HEADER_NAME)
    assert generated
    assert generated != 'not valid <id>'


def test_error_handler_returns_problem_details(client):
    response = client.get('/api/v1/dashboard/summary', headers={HEADER_NAME: 'req-42'})
    data = response.get_json()
    assert response.status_code == 400
    assert data['success'] is False
    assert data['status'] == 400
    assert data['title']
    assert data['detail'] == 'Filter period is required.'
    assert data['request_id'] == 'req-42'


def test_unknown_route_is_problem_details(client):
    response = client.get('/api/v1/nothing-here')
    data = response.get_json()
    assert response.status_code == 404
    assert data['status'] == 404
    assert data['request_id']


def test_missing_json_payload(client):
    response = client.post('/api/v1/meal-records/generate-unclaimed')
    assert response.status_code == 400
    assert response.get_json()['detail'] == 'Missing JSON payload'


def test_log_lines_are_json_with_bound_context():
    app_logging.bind(request_id='abc', path='/api/v1/eligibility/S-001')
    try:
        record = logging.LogRecord('mealtracker.test', logging.INFO, __file__, 1, 'meal claimed', None, None)
        record.student_id_number = 'S-001'
        record.password = 'hunter2'
        line = json.loads(app_logging.JSONFormatter().format(record))
    finally:
        app_logging.reset()

    assert line['msg'] == 'meal claimed'
    assert line['request_id'] == 'abc'
    assert line['path'] == '/api/v1/eligibility/S-001'
    assert line['student_id_number'] == 'S-001'
    assert line['context'] == {'password': REDACTED}


def test_redaction_reaches_nested_values():
    data = {'admin': {'Email': 'a@laverdad.edu.ph', 'name': 'A'}, 'items': [{'token': 't'}]}
    assert redact_sensitive_data(data) == {
        'admin': {'Email': REDACTED, 'name': 'A'},
        'items': [{'token': REDACTED}],
    }
