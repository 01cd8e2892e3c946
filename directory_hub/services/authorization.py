"""
Authorization resolver: roles, row access and moderation gates.

Role resolution order (first match wins):

    platform admin → directory owner → active moderator → none

Admin and owner checks are memoized in the permission cache (see
``permission_cache``); moderator state is always read from the store.

Row access for moderators is decided by the RowScope stored on their
ModeratorDomain.  Deny-by-default: no domain, an inactive moderator, or a
scope with no controls all grant nothing.  ``{"scope": "all"}`` is the only
way to grant every row.

Every gate returns a bool; callers raise ``AuthorizationError`` and log
which gate failed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from enum import Enum

from flask import current_app, has_app_context
from sqlalchemy import select

from directory_hub.core.exceptions import NotFoundError
from directory_hub.models import db
from directory_hub.models.directory import OWNER_ROLES, DirectoryOwner, PlatformAdmin
from directory_hub.models.moderation import (
    CHANGE_TYPE_ADD,
    Moderator,
    ModeratorDomain,
    ModeratorHierarchy,
    PendingChange,
)
from directory_hub.services import directory_service, row_filters
from directory_hub.services.permission_cache import (
    KIND_ADMIN,
    KIND_OWNER,
    cache_key,
    get_permission_cache,
)
from directory_hub.utils.validation import normalize_email

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    MODERATOR = "moderator"
    NONE = "none"


def _range_mode() -> str:
    if has_app_context():
        return current_app.config.get("COLUMN_RANGE_MODE", row_filters.RANGE_MODE_LEXICAL)
    return row_filters.RANGE_MODE_LEXICAL


# ── Membership checks ─────────────────────────────────────────────────────────


def is_admin(email: str) -> bool:
    email = normalize_email(email)
    if not email:
        return False
    key = cache_key(KIND_ADMIN, None, email)
    cache = get_permission_cache()
    cached = cache.get(key)
    if cached is not None:
        return cached
    found = db.session.execute(
        select(PlatformAdmin.id).where(PlatformAdmin.user_email == email)
    ).first() is not None
    cache.set(key, found)
    return found


def is_directory_owner(email: str, directory_id: str) -> bool:
    email = normalize_email(email)
    if not email or not directory_id:
        return False
    key = cache_key(KIND_OWNER, directory_id, email)
    cache = get_permission_cache()
    cached = cache.get(key)
    if cached is not None:
        return cached
    found = db.session.execute(
        select(DirectoryOwner.id).where(
            DirectoryOwner.directory_id == directory_id,
            DirectoryOwner.user_email == email,
            DirectoryOwner.role.in_(OWNER_ROLES),
        )
    ).first() is not None
    cache.set(key, found)
    return found


def get_active_moderator(email: str, directory_id: str) -> Moderator | None:
    return db.session.execute(
        select(Moderator).where(
            Moderator.user_email == normalize_email(email),
            Moderator.directory_id == directory_id,
            Moderator.is_active.is_(True),
        )
    ).scalar_one_or_none()


def is_moderator(email: str, directory_id: str) -> bool:
    return get_active_moderator(email, directory_id) is not None


def resolve_role(email: str | None, directory_id: str) -> Role:
    """Effective role of *email* in *directory_id*, admin kept distinct from owner."""
    if not normalize_email(email):
        return Role.NONE
    if is_admin(email):
        return Role.ADMIN
    if is_directory_owner(email, directory_id):
        return Role.OWNER
    if is_moderator(email, directory_id):
        return Role.MODERATOR
    return Role.NONE


def get_user_type(email: str | None, directory_id: str) -> Role:
    """Externally visible tier: admins and directory owners both report OWNER."""
    role = resolve_role(email, directory_id)
    return Role.OWNER if role is Role.ADMIN else role


# ── Moderator domains ─────────────────────────────────────────────────────────


def get_domain(email: str, directory_id: str) -> ModeratorDomain | None:
    return db.session.execute(
        select(ModeratorDomain).where(
            ModeratorDomain.moderator_email == normalize_email(email),
            ModeratorDomain.directory_id == directory_id,
        )
    ).scalar_one_or_none()


def get_active_domain(email: str, directory_id: str) -> ModeratorDomain | None:
    """The domain of an *active* moderator; removed moderators keep no rights."""
    if not is_moderator(email, directory_id):
        return None
    return get_domain(email, directory_id)


def get_row_scope(email: str, directory_id: str) -> row_filters.RowScope:
    domain = get_active_domain(email, directory_id)
    if domain is None:
        return row_filters.RowScope()
    return row_filters.parse_row_scope(domain.row_filter_json)


def _scope_allows_values(
    scope: row_filters.RowScope, column_names: Sequence[str], values: Sequence[str]
) -> bool:
    if scope.all_rows:
        return True
    if not scope.controls:
        return False
    row = row_filters.materialize_row(column_names, values)
    return row_filters.matches(scope.controls, row, _range_mode())


def can_access_row(email: str, directory_id: str, row_id: int) -> bool:
    """Moderator row gate: does the moderator's scope cover this row?"""
    scope = get_row_scope(email, directory_id)
    if scope.denies_all:
        return False
    row = directory_service.get_row(directory_id, row_id)
    return _scope_allows_values(scope, directory_service.get_column_names(directory_id), row.values)


def can_access_values(
    email: str,
    directory_id: str,
    values: Sequence[str],
    column_names: Sequence[str] | None = None,
) -> bool:
    """Row gate for a row that does not exist yet (add-row proposals)."""
    if column_names is None:
        column_names = directory_service.get_column_names(directory_id)
    return _scope_allows_values(get_row_scope(email, directory_id), column_names, values)


def get_accessible_rows(email: str, directory_id: str) -> list[int]:
    """IDs of every row the moderator may act on, in positional order.

    Evaluates the scope against every row; meant for admin forms and
    listings, not per-request gating.
    """
    scope = get_row_scope(email, directory_id)
    if scope.denies_all:
        return []
    column_names = directory_service.get_column_names(directory_id)
    rows = visible_scope_rows(scope, column_names, directory_service.list_rows(directory_id))
    return [r["id"] for r in rows]


# ── Moderation gates ──────────────────────────────────────────────────────────


def can_appoint_moderator(email: str, role: Role, directory_id: str) -> bool:
    match role:
        case Role.ADMIN:
            return True
        case Role.OWNER:
            return is_directory_owner(email, directory_id)
        case Role.MODERATOR:
            domain = get_active_domain(email, directory_id)
            return domain is not None and domain.can_approve
    return False


def did_appoint(parent_email: str, child_email: str, directory_id: str) -> bool:
    return db.session.execute(
        select(ModeratorHierarchy.id).where(
            ModeratorHierarchy.parent_email == normalize_email(parent_email),
            ModeratorHierarchy.child_email == normalize_email(child_email),
            ModeratorHierarchy.directory_id == directory_id,
        )
    ).first() is not None


def can_remove_moderator(email: str, role: Role, target_email: str, directory_id: str) -> bool:
    match role:
        case Role.ADMIN:
            return True
        case Role.OWNER:
            return is_directory_owner(email, directory_id)
        case Role.MODERATOR:
            return is_moderator(email, directory_id) and did_appoint(
                email, target_email, directory_id
            )
    return False


def can_edit_row(email: str, directory_id: str, row_id: int) -> bool:
    """Write gate for an existing row, for any role."""
    role = resolve_role(email, directory_id)
    if role in (Role.ADMIN, Role.OWNER):
        return True
    if role is not Role.MODERATOR:
        return False
    domain = get_active_domain(email, directory_id)
    if domain is None or not domain.can_edit:
        return False
    return can_access_row(email, directory_id, row_id)


def change_values_for_scope(change: PendingChange) -> tuple[list[str], list[str]] | None:
    """(column names, values) a reviewer's scope is evaluated against.

    Add changes are judged on their proposed row through the schema
    snapshot; edit/delete changes on the live target row.  None when the
    target row no longer exists.
    """
    if change.change_type == CHANGE_TYPE_ADD:
        try:
            values = json.loads(change.new_value or "[]")
        except ValueError:
            values = []
        return json.loads(change.column_schema_json or "[]"), [str(v) for v in values]
    try:
        row = directory_service.get_row(change.directory_id, change.row_id)
    except NotFoundError:
        return None
    return directory_service.get_column_names(change.directory_id), row.values


def can_review_change(email: str, change: PendingChange) -> bool:
    """Moderator review gate on an already-loaded change."""
    domain = get_active_domain(email, change.directory_id)
    if domain is None or not domain.can_approve:
        return False
    scope = row_filters.parse_row_scope(domain.row_filter_json)
    if scope.denies_all:
        return False
    target = change_values_for_scope(change)
    if target is None:
        return False
    column_names, values = target
    return _scope_allows_values(scope, column_names, values)


def can_approve_change(email: str, directory_id: str, change_id: int) -> bool:
    change = db.session.get(PendingChange, change_id)
    if change is None or change.directory_id != directory_id:
        raise NotFoundError(resource="PendingChange", resource_id=change_id)
    role = resolve_role(email, directory_id)
    if role in (Role.ADMIN, Role.OWNER):
        return True
    if role is not Role.MODERATOR:
        return False
    return can_review_change(email, change)


def visible_scope_rows(
    scope: row_filters.RowScope, column_names: Sequence[str], rows: Sequence[Mapping]
) -> list[Mapping]:
    """Filter already-listed rows (``{"id", "values", ...}``) down to a scope."""
    if scope.all_rows:
        return list(rows)
    if not scope.controls:
        return []
    mode = _range_mode()
    return [
        r for r in rows
        if scope.allows(row_filters.materialize_row(column_names, r["values"]), mode)
    ]
