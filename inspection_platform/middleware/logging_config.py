"""
Logging setup for the inspection platform.

One stderr handler on the root logger. Records emitted while a request is
being served are tagged with the request id and the caller's organization
and user (taken from ``flask.g``), so a sweep or deletion can be traced back
to who triggered it.

Config keys:
    LOG_LEVEL   DEBUG / INFO / ...; defaults to INFO in production, DEBUG otherwise
    LOG_FORMAT  "json" or "text"; defaults to json in production
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Attributes copied from ``extra=`` (or the request context) into JSON output.
CONTEXT_FIELDS = (
    "request_id",
    "organization_id",
    "user_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "job_name",
)

# record attribute -> flask.g attribute
_G_SOURCES = {
    "request_id": "request_id",
    "organization_id": "jwt_organization_id",
    "user_id": "jwt_user_id",
}

LOG_FORMATS = ("json", "text")

_QUIET_LOGGERS = ("werkzeug", "urllib3", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Fill request_id / organization_id / user_id from ``flask.g``.

    Values passed explicitly through ``extra=`` win. Outside a request
    (sweep CLI, scheduler thread) the record is left untouched.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        for attr, source in _G_SOURCES.items():
            if getattr(record, attr, None) is None:
                value = g.get(source)
                if value is not None:
                    setattr(record, attr, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "src": f"{record.module}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [org=.. user=.. rid=..]`` for local runs."""

    _TAGS = (("organization_id", "org"), ("user_id", "user"), ("request_id", "rid"))

    def __init__(self, color: bool = False):
        super().__init__(datefmt="%H:%M:%S")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        if self.color and record.levelno >= logging.WARNING:
            level = f"\033[{31 if record.levelno >= logging.ERROR else 33}m{level}\033[0m"
        line = f"{self.formatTime(record, self.datefmt)} {level:<8} {record.name}: {record.getMessage()}"

        tags = [f"{short}={getattr(record, attr)}" for attr, short in self._TAGS
                if getattr(record, attr, None) is not None]
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.insert(0, f"{duration:.0f}ms")
        if tags:
            line += f" [{' '.join(tags)}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _settings(app) -> tuple[int, str]:
    production = not app.config.get("DEBUG") and not app.config.get("TESTING")

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if production else "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    fmt = (app.config.get("LOG_FORMAT") or ("json" if production else "text")).lower()
    if fmt not in LOG_FORMATS:
        fmt = "json" if production else "text"
    return level, fmt


def configure_logging(app):
    """Install the root handler for *app*; safe to call once per create_app()."""
    level, fmt = _settings(app)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RequestContextFilter())
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ReadableFormatter(color=sys.stderr.isatty()))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s",
                        logging.getLevelName(level), fmt)
    return handler
