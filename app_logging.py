"""JSON logging for the meal tracker.

Every record is a single JSON line on stdout. Fields bound to the current
request (correlation ID, method, path, client address) are held in one
context variable, filled in by the middleware modules and attached to
every record logged while that request is handled. Domain loggers pass
their own fields through ``extra=``; the well-known ones (student ID,
cohort, weekday) are lifted to the top level so the log drain can filter
on them, everything else lands under ``context``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.config
import os
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "mealtracker_log_context", default={}
)

REDACTED = "[REDACTED]"

# Kitchen scans carry no secrets, but admin payloads and Google credentials can.
_DEFAULT_SENSITIVE = "password,password_hash,token,email,authorization,private_key"

# Fields lifted from ``extra=`` to the top level of the JSON line.
_TOP_LEVEL = (
    "event",
    "method",
    "path",
    "route",
    "status",
    "duration_ms",
    "client_ip",
    "student_id_number",
    "program",
    "year_level",
    "day_of_week",
    "created_count",
)

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}


def bind(**fields: Any) -> None:
    """Attach ``fields`` to every record logged in the current context.

    ``None`` values are ignored so callers can pass optional fields blindly.
    """
    merged = dict(_log_context.get())
    merged.update({key: value for key, value in fields.items() if value is not None})
    _log_context.set(merged)


def bound() -> Dict[str, Any]:
    return dict(_log_context.get())


def reset() -> None:
    _log_context.set({})


def current_request_id() -> Optional[str]:
    return _log_context.get().get("request_id")


def sensitive_fields() -> frozenset:
    raw = os.environ.get("SENSITIVE_FIELDS", _DEFAULT_SENSITIVE)
    return frozenset(name.strip().lower() for name in raw.split(",") if name.strip())


def redact_sensitive_data(data: Any, fields: Optional[Iterable[str]] = None) -> Any:
    """Return a copy of ``data`` with sensitive keys masked, at any depth."""
    names = frozenset(f.lower() for f in fields) if fields is not None else sensitive_fields()
    if isinstance(data, Mapping):
        return {
            key: REDACTED if str(key).lower() in names else redact_sensitive_data(value, names)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple, set)):
        return [redact_sensitive_data(item, names) for item in data]
    return data


def _to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        line.update(_log_context.get())

        context: Dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in _TOP_LEVEL:
                line[key] = value
            else:
                context[key] = value
        if context:
            line["context"] = redact_sensitive_data(context)

        if record.exc_info:
            line["error_type"] = record.exc_info[0].__name__
            line["error"] = str(record.exc_info[1])
            line["stack"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_to_json, separators=(",", ":"))


_configured = False


def configure_logging() -> None:
    """Route the root logger through :class:`JSONFormatter`, once per process."""
    global _configured
    if _configured:
        return
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JSONFormatter}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"level": level, "handlers": ["stdout"]},
        # request_logging_middleware already logs every request.
        "loggers": {
            name: {"level": "WARNING", "handlers": [], "propagate": True}
            for name in ("werkzeug", "sqlalchemy.engine", "googleapiclient.discovery_cache")
        },
    })
    logging.captureWarnings(True)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


__all__ = [
    "JSONFormatter",
    "REDACTED",
    "bind",
    "bound",
    "configure_logging",
    "current_request_id",
    "get_logger",
    "redact_sensitive_data",
    "reset",
    "sensitive_fields",
]
