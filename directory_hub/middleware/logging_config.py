"""
Logging setup for the directory service.

Production writes one JSON object per line; development and tests use a
plain single-line format.  Inside a request every record is tagged with
the request ID, caller email and directory, so service-layer log lines
can be correlated without passing context around.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

_CONTEXT_FIELDS = ("request_id", "user_email", "directory_id")
_EXTRA_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr") + _CONTEXT_FIELDS

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s [req=%(request_id)s dir=%(directory_id)s]"


class RequestContextFilter(logging.Filter):
    """Copy identity fields from ``flask.g`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        in_request = has_request_context()
        for key in _CONTEXT_FIELDS:
            if getattr(record, key, None) is None:
                value = getattr(g, key, None) if in_request else None
                setattr(record, key, value or "-")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value not in (None, "-"):
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    LOG_LEVEL overrides the default (INFO in production, DEBUG otherwise).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # Re-running the factory (tests) must not stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured level=%s json=%s", level_name, is_prod)
