"""Correlation IDs for kitchen terminals and the admin console.

A client may send ``X-Request-ID``; anything missing or outside the
accepted alphabet is replaced by a fresh UUID. The ID is echoed on the
response, bound into the log context and copied into problem-details
error bodies.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

from flask import Flask, g, request

import app_logging

HEADER_NAME = "X-Request-ID"

_ACCEPTED = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def _from_header() -> Optional[str]:
    candidate = request.headers.get(HEADER_NAME, "").strip()
    return candidate if _ACCEPTED.fullmatch(candidate) else None


def current_request_id() -> Optional[str]:
    return g.get("request_id") or app_logging.current_request_id()


def init_correlation_id(app: Flask) -> None:
    @app.before_request
    def _start():
        g.request_id = _from_header() or uuid.uuid4().hex
        app_logging.bind(request_id=g.request_id)

    @app.after_request
    def _echo(response):
        if g.get("request_id"):
            response.headers[HEADER_NAME] = g.request_id
        return response

    @app.teardown_request
    def _finish(_exc):
        app_logging.reset()


__all__ = ["HEADER_NAME", "current_request_id", "init_correlation_id"]
