"""
Logging setup for the approval template service.

Service code logs with ``extra={"template_id": ..}`` (plus level_number,
requester_id, scope and the request fields added by timing.py).  Both
formatters render those context keys; production emits one JSON object
per line, everything else a single readable line.

Config:
    LOG_LEVEL   DEBUG in development / testing, INFO otherwise
    LOG_FORMAT  "json" | "text"; JSON unless DEBUG or TESTING
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_KEYS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "template_id",
    "level_number",
    "requester_id",
    "project_id",
    "cohort_id",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


def record_context(record: logging.LogRecord) -> dict:
    """Context keys present on ``record`` (None values dropped)."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO     orgadmin.services...: message  template_id=3``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        context = record_context(record)
        if "duration_ms" in context:
            context["duration_ms"] = f"{context['duration_ms']:.0f}"
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    verbose = app.config.get("DEBUG") or app.config.get("TESTING")
    level_name = (app.config.get("LOG_LEVEL") or ("DEBUG" if verbose else "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = (app.config.get("LOG_FORMAT") or ("text" if verbose else "json")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
