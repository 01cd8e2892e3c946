"""
Request identity middleware.

OAuth sessions live in front of this service; the authenticated identity
arrives in the ``X-User-Email`` header and the target directory in the
``?dir=`` query parameter or a ``directory_id`` JSON field.  Both are
stashed on ``flask.g`` for logging, and blueprints turn them into an
explicit ``RequestContext`` via ``build_request_context``; services never
read ``g`` themselves.
"""

import logging

from flask import Flask, g, request

from directory_hub.core.exceptions import AuthorizationError, ValidationError
from directory_hub.services.authorization import Role
from directory_hub.services.row_service import RequestContext
from directory_hub.utils.validation import normalize_email

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Email"


def _directory_from_request() -> str | None:
    directory_id = request.args.get("dir") or request.args.get("directory_id")
    if directory_id:
        return directory_id
    if request.is_json:
        payload = request.get_json(silent=True) or {}
        if isinstance(payload, dict):
            return payload.get("directory_id") or None
    return None


def init_request_context(app: Flask):
    """Register the before-request hook that records identity and directory."""

    @app.before_request
    def _load_identity():
        g.user_email = normalize_email(request.headers.get(USER_HEADER))
        g.directory_id = (request.view_args or {}).get("directory_id") or _directory_from_request()


def require_directory_id() -> str:
    directory_id = getattr(g, "directory_id", None)
    if not directory_id:
        raise ValidationError("directory ID is required (?dir= or directory_id)")
    return directory_id


def current_user_email() -> str:
    return getattr(g, "user_email", "") or ""


def build_request_context(directory_id: str | None = None) -> RequestContext:
    """Resolve the caller's role for one directory into a RequestContext."""
    return RequestContext.resolve(
        current_user_email(),
        directory_id or require_directory_id(),
        request_id=getattr(g, "request_id", None),
    )


def require_user() -> str:
    """The caller's email; anonymous callers are refused."""
    email = current_user_email()
    if not email:
        logger.warning("Anonymous request refused path=%s", request.path)
        raise AuthorizationError("authentication required")
    return email


def require_role(ctx: RequestContext, *roles: Role) -> RequestContext:
    if ctx.role not in roles:
        logger.warning(
            "Role check failed user=%s role=%s required=%s directory_id=%s path=%s",
            ctx.user_email or "-", ctx.role.value, ",".join(r.value for r in roles),
            ctx.directory_id, request.path,
        )
        raise AuthorizationError("insufficient role")
    return ctx


def require_privileged(ctx: RequestContext) -> RequestContext:
    """Admins and directory owners only."""
    return require_role(ctx, Role.ADMIN, Role.OWNER)
