"""One start and one end line per API request, in the shared JSON format."""

from __future__ import annotations

import os
import random
import time
from typing import Any, Dict

from flask import Flask, Response, g, request

import app_logging

_logger = app_logging.get_logger("mealtracker.request")

# Terminals poll the health checks constantly.
_QUIET_PATHS = frozenset({"/health", "/api/v1/health"})


def _sample_rate() -> float:
    try:
        rate = float(os.environ.get("REQUEST_LOG_SAMPLE_RATE", "1"))
    except ValueError:
        return 1.0
    return min(1.0, max(0.0, rate))


def _wanted(path: str) -> bool:
    if path in _QUIET_PATHS or path.startswith("/static"):
        return False
    rate = _sample_rate()
    return rate >= 1.0 or random.random() < rate


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.remote_addr or "unknown"


def _inputs() -> Dict[str, Any]:
    inputs: Dict[str, Any] = {}
    if request.args:
        inputs["query"] = app_logging.redact_sensitive_data(request.args.to_dict(flat=False))
    if request.method in ("POST", "PUT", "PATCH"):
        body = request.get_json(silent=True)
        if body is not None:
            inputs["json"] = app_logging.redact_sensitive_data(body)
    return inputs


def init_request_logging(app: Flask) -> None:
    @app.before_request
    def _request_started() -> None:
        g.request_started = time.perf_counter()
        g.log_request = _wanted(request.path)
        app_logging.bind(
            method=request.method,
            path=request.path,
            route=request.url_rule.rule if request.url_rule else None,
            client_ip=_client_ip(),
        )
        if g.log_request:
            _logger.info("request_start", extra={"event": "request_start", "inputs": _inputs()})

    @app.after_request
    def _request_finished(response: Response) -> Response:
        started = g.get("request_started")
        elapsed = round((time.perf_counter() - started) * 1000, 2) if started else None
        if g.get("log_request"):
            level = "warning" if response.status_code >= 500 else "info"
            getattr(_logger, level)(
                "request_end",
                extra={"event": "request_end", "status": response.status_code, "duration_ms": elapsed},
            )
        return response


__all__ = ["init_request_logging"]
