"""Flask application for the cafeteria meal eligibility tracker.

This module wires together the configuration, database models and route
definitions. The kitchen terminal calls the eligibility endpoint on every
ID scan; the admin console uses the remaining endpoints.

Endpoints:

* ``GET /api/v1/eligibility/<student_id_number>`` – check a student in and
  record the outcome.
* ``GET /api/v1/meal-records`` – list meal records with filtering, sorting
  and pagination.
* ``POST /api/v1/meal-records/generate-unclaimed`` – backfill
  ``ELIGIBLE_BUT_NOT_CLAIMED`` records for a past day.
* ``GET /api/v1/dashboard/summary`` – claimed/unclaimed time series.
* ``GET /api/v1/dashboard/program-breakdown`` – claimed/unclaimed per
  program or per year level.
* ``GET /api/v1/dashboard/cohort-sizes`` – expected allotment per weekday.
* ``GET|POST /api/v1/schedules`` and ``PUT|DELETE /api/v1/schedules/<id>``
  – maintain the weekly eligibility schedule.

Errors are returned as problem-details JSON carrying the request's
correlation ID.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import BadRequest, HTTPException

from app_logging import get_logger
from backfill import generate_unclaimed
from config import Config
from correlation_id_middleware import current_request_id, init_correlation_id
from dashboard import CohortSizeCache, breakdown, summarize
from db_utils import retry_with_backoff
from eligibility import check_eligibility
from errors import (
    ConflictError,
    InvalidPeriodError,
    MealTrackerError,
    NotFoundError,
    ValidationError,
)
from identity import build_avatar_resolver
from models import MEAL_RECORD_STATUSES, MealRecord, Schedule, Student, db
from periods import day_range, month_range, parse_day, parse_month
from request_logging_middleware import init_request_logging
from schedule import (
    WEEKDAYS,
    delete_schedule,
    list_schedules,
    set_schedule_eligibility,
    upsert_schedule_days,
)

_logger = get_logger("mealtracker.app")

API_PREFIX = '/api/v1'
MAX_PAGE_SIZE = 100

_RECORD_SORT_KEYS = {
    'dateChecked': MealRecord.date_checked,
    'status': MealRecord.status,
    'studentIdNumber': MealRecord.student_id_number,
    'programAtTimeOfRecord': MealRecord.program_at_time_of_record,
    'yearLevelAtTimeOfRecord': MealRecord.year_level_at_time_of_record,
}


def _now():
    return current_app.config['CLOCK']()


def _problem(status: int, title: str, detail: str):
    response = jsonify({
        'success': False,
        'title': title,
        'status': status,
        'detail': detail,
        'request_id': current_request_id(),
    })
    response.status_code = status
    return response


def _query_day(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_day(raw, f'Invalid {name}. Use YYYY-MM-DD.')
    except InvalidPeriodError as exc:
        raise BadRequest(exc.detail) from None


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest('Missing JSON payload')
    return data


def create_app(test_config: Optional[Dict[str, Any]] = None) -> Flask:
    """Application factory used by both the server and tests.

    ``test_config`` is applied on top of :class:`config.Config` before the
    database extension is initialised, so tests can point
    ``SQLALCHEMY_DATABASE_URI`` at an in-memory database and swap the
    ``CLOCK``.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    db.init_app(app)
    init_correlation_id(app)
    init_request_logging(app)

    app.extensions['avatar_resolver'] = build_avatar_resolver(app.config)
    cohort_cache = CohortSizeCache()
    cohort_cache.watch(Student, Schedule)
    app.extensions['cohort_cache'] = cohort_cache

    with app.app_context():
        try:
            retry_with_backoff(db.create_all)
        except SQLAlchemyError as exc:
            # Keep starting; the health check and 503 handler surface it.
            _logger.warning("database unavailable during table creation: %s", exc)

    @app.route('/health')
    @app.route(f'{API_PREFIX}/health')
    def healthcheck():
        return jsonify({'success': True, 'status': 'ok'}), 200

    # Kitchen terminal: check a student in
    @app.route(f'{API_PREFIX}/eligibility/<student_id_number>', methods=['GET'])
    def api_check_eligibility(student_id_number: str):
        result = check_eligibility(
            student_id_number,
            now=_now(),
            avatar_resolver=app.extensions['avatar_resolver'],
        )
        return jsonify(result.to_dict()), (200 if result.found else 404)

    # Meal records
    @app.route(f'{API_PREFIX}/meal-records', methods=['GET'])
    def api_list_meal_records():
        query = MealRecord.query

        student_id = request.args.get('studentId')
        if student_id:
            if not student_id.isdigit():
                raise BadRequest('Invalid studentId format for filtering.')
            query = query.filter(MealRecord.student_id == int(student_id))

        start_day, end_day = _query_day('startDate'), _query_day('endDate')
        if start_day:
            query = query.filter(MealRecord.date_checked >= day_range(start_day).start)
        if end_day:
            query = query.filter(MealRecord.date_checked < day_range(end_day).stop)

        month = request.args.get('month')
        if month:
            try:
                span = month_range(*parse_month(month))
            except InvalidPeriodError as exc:
                raise BadRequest(exc.detail) from None
            query = query.filter(MealRecord.date_checked >= span.start,
                                 MealRecord.date_checked < span.stop)

        status = request.args.get('status')
        if status:
            status = status.strip().upper()
            if status not in MEAL_RECORD_STATUSES:
                raise BadRequest(f"Invalid status. Use one of: {', '.join(MEAL_RECORD_STATUSES)}.")
            query = query.filter(MealRecord.status == status)

        search = request.args.get('searchStudentName', '').strip()
        if search:
            matching = select(Student.id).where(Student.name.ilike(f"%{search}%"))
            query = query.filter(MealRecord.student_id.in_(matching))

        sort_by = request.args.get('sortBy')
        if sort_by:
            column = _RECORD_SORT_KEYS.get(sort_by)
            if column is None:
                raise BadRequest(f"Invalid sortBy. Use one of: {', '.join(_RECORD_SORT_KEYS)}.")
            ordering = [column.asc() if request.args.get('order') == 'asc' else column.desc()]
            if column is not MealRecord.date_checked:
                ordering.append(MealRecord.date_checked.desc())
        else:
            ordering = [MealRecord.date_checked.desc()]
        ordering.append(MealRecord.id.desc())

        page = max(request.args.get('page', 1, type=int), 1)
        limit = request.args.get('limit', app.config['DEFAULT_PAGE_SIZE'], type=int)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        result = query.order_by(*ordering).paginate(page=page, per_page=limit, error_out=False)

        return jsonify({
            'success': True,
            'count': len(result.items),
            'pagination': {
                'currentPage': page,
                'totalPages': result.pages,
                'limit': limit,
                'totalItems': result.total,
            },
            'data': [record.to_dict() for record in result.items],
        })

    @app.route(f'{API_PREFIX}/meal-records/generate-unclaimed', methods=['POST'])
    def api_generate_unclaimed():
        data = _json_body()
        result = generate_unclaimed(data.get('date'))
        return jsonify(result.to_dict()), (201 if result.created_count else 200)

    # Dashboard
    @app.route(f'{API_PREFIX}/dashboard/summary', methods=['GET'])
    def api_dashboard_summary():
        summary = summarize(request.args.get('filterPeriod'), request.args.get('value'), now=_now())
        return jsonify(summary.to_dict())

    @app.route(f'{API_PREFIX}/dashboard/program-breakdown', methods=['GET'])
    def api_dashboard_breakdown():
        result = breakdown(
            request.args.get('filterPeriod'),
            request.args.get('value'),
            program=request.args.get('program'),
            group_by=request.args.get('groupBy'),
            now=_now(),
        )
        return jsonify(result.to_dict())

    @app.route(f'{API_PREFIX}/dashboard/cohort-sizes', methods=['GET'])
    def api_dashboard_cohort_sizes():
        cache = app.extensions['cohort_cache']
        sizes = cache.get()
        return jsonify({
            'success': True,
            'version': cache.version,
            'data': [{'dayOfWeek': day, 'expected': sizes[day]} for day in WEEKDAYS],
        })

    # Schedules
    @app.route(f'{API_PREFIX}/schedules', methods=['GET'])
    def api_list_schedules():
        entries = list_schedules(request.args.get('program'))
        return jsonify({'success': True, 'count': len(entries),
                        'data': [entry.to_dict() for entry in entries]})

    @app.route(f'{API_PREFIX}/schedules', methods=['POST'])
    def api_upsert_schedules():
        data = _json_body()
        saved, errors = upsert_schedule_days(data.get('program'), data.get('yearLevel'),
                                             data.get('scheduleDays'))
        body = {
            'success': True,
            'message': f'Schedule entries processed. {len(saved)} successful, {len(errors)} failed.',
            'data': [entry.to_dict() for entry in saved],
        }
        if errors:
            body['errors'] = errors
        return jsonify(body), 201

    @app.route(f'{API_PREFIX}/schedules/<int:schedule_id>', methods=['PUT'])
    def api_update_schedule(schedule_id: int):
        entry = set_schedule_eligibility(schedule_id, _json_body().get('isEligible'))
        return jsonify({'success': True, 'message': 'Schedule entry updated successfully',
                        'data': entry.to_dict()})

    @app.route(f'{API_PREFIX}/schedules/<int:schedule_id>', methods=['DELETE'])
    def api_delete_schedule(schedule_id: int):
        entry = delete_schedule(schedule_id)
        return jsonify({
            'success': True,
            'message': (f'Schedule entry for {entry.program} Year {entry.year_level} '
                        f'on {entry.day_of_week} deleted successfully.'),
            'data': {},
        })

    # Error handlers: every failure becomes problem-details JSON
    @app.errorhandler(MealTrackerError)
    def handle_domain_error(error: MealTrackerError):
        if isinstance(error, ValidationError):
            status = 400
        elif isinstance(error, NotFoundError):
            status = 404
        elif isinstance(error, ConflictError):
            status = 409
        else:
            status = 500
        return _problem(status, error.title, error.detail)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return _problem(error.code or 500, error.name, error.description)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError):
        db.session.rollback()
        _logger.warning("integrity violation: %s", error.orig)
        return _problem(409, 'Conflict', 'The request conflicts with existing data.')

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        _logger.error("database operation failed: %s", error)
        return _problem(503, 'Service Unavailable', 'Database temporarily unavailable')

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    create_app().run(host='0.0.0.0', port=port, debug=True)
