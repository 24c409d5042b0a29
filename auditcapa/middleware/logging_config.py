"""
Structured logging configuration.

- Development: colored single-line records
- Production: one JSON object per line
- Level: LOG_LEVEL env variable

Inside a request the acting tenant and user are stamped onto every record
by ``ActorContextFilter``. Workflow code adds ``case_id``, ``event_type``
and ``dispatch_status`` through ``extra=``, e.g.::

    logger.info("HOD notified", extra={"case_id": case.id, "dispatch_status": "SUCCESS"})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Record attributes copied into the JSON object when present
CONTEXT_FIELDS = (
    "request_path",
    "tenant_id",
    "user_id",
    "case_id",
    "event_type",
    "dispatch_status",
)

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "engineio", "socketio", "redis")


class ActorContextFilter(logging.Filter):
    """Copy g.tenant_id / g.user_id and the request path onto the record."""

    def filter(self, record):
        if has_request_context():
            record.request_path = request.path
            for key in ("tenant_id", "user_id"):
                if getattr(record, key, None) is None:
                    setattr(record, key, getattr(g, key, None))
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record for the log aggregator."""

    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored development output with the case and dispatch status inline."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        tags = []
        if getattr(record, "tenant_id", None) is not None:
            tags.append(f"t{record.tenant_id}/u{getattr(record, 'user_id', None) or '-'}")
        if getattr(record, "case_id", None) is not None:
            tags.append(f"case {record.case_id}")
        if getattr(record, "dispatch_status", None):
            tags.append(record.dispatch_status)
        prefix = "".join(f"[{t}] " for t in tags)

        color = self.COLORS.get(record.levelname, "")
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{when} {record.levelname:<8}{self.RESET} {record.name}: {prefix}{record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON unless DEBUG or TESTING is set. LOG_LEVEL defaults to INFO in
    production and DEBUG otherwise. Calling it again (one app per test
    session, several in scripts) replaces the handler instead of stacking.
    """
    testing = app.config.get("TESTING", False)
    json_output = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if json_output else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else ReadableFormatter())
    handler.addFilter(ActorContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if json_output else "readable")
