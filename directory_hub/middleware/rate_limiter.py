"""
Rate limiting configuration.

Applies write limits to the mutation blueprints using Flask-Limiter.
The Limiter instance is created in directory_hub/__init__.py with no
default limits; this module attaches ``WRITE_RATE_LIMIT`` (default
30/minute) to POST/PUT/PATCH/DELETE routes, keyed by caller identity.

Usage:
    from directory_hub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]
WRITE_BLUEPRINTS = ("rows", "changes", "moderators", "directories")


def _user_rate_limit_key():
    """Rate limit key: the caller's email if present, else remote IP."""
    email = getattr(g, "user_email", None)
    if email:
        return f"user:{email}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply write limits to the API blueprints.

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("WRITE_RATE_LIMIT", "30/minute")
    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit, key_func=_user_rate_limit_key, methods=WRITE_METHODS)(bp)

    app.logger.info("Rate limiter configured, write: %s per user", write_limit)
