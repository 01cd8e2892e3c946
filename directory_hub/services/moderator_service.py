"""Moderator service layer: appointment, removal, permissions, hierarchy.

Rules:
  - Appointment is all-or-nothing: profile upsert, moderator upsert,
    domain upsert and the optional hierarchy edge share one transaction.
  - Moderators are never hard-deleted; removal flips ``is_active``.
  - Row-access scopes are validated against the live column schema at
    appointment time only; evaluation later tolerates schema drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update

from directory_hub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from directory_hub.models import db
from directory_hub.models.directory import UserProfile
from directory_hub.models.moderation import (
    AUTH_PROVIDERS,
    Moderator,
    ModeratorDomain,
    ModeratorHierarchy,
)
from directory_hub.services import authorization, directory_service, row_filters
from directory_hub.services.authorization import Role
from directory_hub.services.helpers.transaction import transaction
from directory_hub.utils.validation import (
    normalize_email,
    sanitize_input,
    validate_email_address,
)

logger = logging.getLogger(__name__)


@dataclass
class AppointModeratorRequest:
    user_email: str
    directory_id: str
    username: str = ""
    auth_provider: str = "google"
    row_filter: Any = None
    can_edit: bool = True
    can_approve: bool = False
    requires_approval: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> AppointModeratorRequest:
        return cls(
            user_email=data.get("user_email") or data.get("email") or "",
            directory_id=data.get("directory_id") or "",
            username=data.get("username") or "",
            auth_provider=(data.get("auth_provider") or "google").lower(),
            row_filter=data.get("row_filter"),
            can_edit=bool(data.get("can_edit", True)),
            can_approve=bool(data.get("can_approve", False)),
            requires_approval=bool(data.get("requires_approval", True)),
        )


@dataclass
class ModeratorPermissions:
    """Resolved permissions of one moderator in one directory.

    ``rows_allowed`` is None when the scope grants every row; otherwise it
    is the explicit list of accessible row IDs (possibly empty).
    """

    can_edit: bool
    can_approve: bool
    requires_approval: bool
    is_active: bool
    all_rows: bool
    rows_allowed: list[int] | None
    scope: row_filters.RowScope = field(repr=False, default_factory=row_filters.RowScope)

    def to_dict(self) -> dict:
        return {
            "can_edit": self.can_edit,
            "can_approve": self.can_approve,
            "requires_approval": self.requires_approval,
            "is_active": self.is_active,
            "all_rows": self.all_rows,
            "rows_allowed": self.rows_allowed,
            "row_filter": self.scope.to_dict(),
        }


# ── Appointment ───────────────────────────────────────────────────────────────


def _upsert_profile(email: str, username: str, provider: str) -> UserProfile:
    profile = db.session.execute(
        select(UserProfile).where(UserProfile.user_email == email)
    ).scalar_one_or_none()
    if profile is None:
        profile = UserProfile(user_email=email, username=username, auth_provider=provider)
        db.session.add(profile)
    else:
        profile.username = username or profile.username
        profile.auth_provider = provider
    return profile


def _upsert_moderator(
    req: AppointModeratorRequest, email: str, username: str, appointer: str, role: Role
) -> Moderator:
    moderator = db.session.execute(
        select(Moderator).where(
            Moderator.user_email == email, Moderator.directory_id == req.directory_id
        )
    ).scalar_one_or_none()
    if moderator is None:
        moderator = Moderator(user_email=email, directory_id=req.directory_id)
        db.session.add(moderator)
    moderator.username = username
    moderator.auth_provider = req.auth_provider
    moderator.appointed_by = appointer
    moderator.appointed_by_type = role.value
    moderator.is_active = True
    return moderator


def _upsert_domain(
    req: AppointModeratorRequest, email: str, scope: row_filters.RowScope
) -> ModeratorDomain:
    domain = db.session.execute(
        select(ModeratorDomain).where(
            ModeratorDomain.moderator_email == email,
            ModeratorDomain.directory_id == req.directory_id,
        )
    ).scalar_one_or_none()
    if domain is None:
        domain = ModeratorDomain(moderator_email=email, directory_id=req.directory_id)
        db.session.add(domain)
    domain.row_filter_json = scope.to_json()
    domain.can_edit = req.can_edit
    domain.can_approve = req.can_approve
    domain.requires_approval = req.requires_approval
    return domain


def _ensure_hierarchy_edge(parent: str, child: str, directory_id: str) -> None:
    if authorization.did_appoint(parent, child, directory_id):
        return
    db.session.add(
        ModeratorHierarchy(parent_email=parent, child_email=child, directory_id=directory_id)
    )


def appoint_moderator(appointer_email: str, req: AppointModeratorRequest) -> dict:
    """Appoint (or re-appoint) a moderator with a validated row scope.

    Raises:
        AuthorizationError: the appointer may not appoint in this directory.
        NotFoundError: the directory does not exist.
        ValidationError: bad email/provider, or the scope does not fit the schema.
    """
    appointer = normalize_email(appointer_email)
    directory_service.get_directory_model(req.directory_id)

    role = authorization.resolve_role(appointer, req.directory_id)
    if not authorization.can_appoint_moderator(appointer, role, req.directory_id):
        logger.warning(
            "Appoint denied appointer=%s role=%s directory_id=%s",
            appointer, role.value, req.directory_id,
        )
        raise AuthorizationError("appointer lacks appoint permission")

    email = validate_email_address(req.user_email, field="moderator email")
    if email == appointer:
        raise ValidationError("users cannot appoint themselves")
    if req.auth_provider not in AUTH_PROVIDERS:
        raise ValidationError(
            f"auth_provider must be one of: {', '.join(sorted(AUTH_PROVIDERS))}"
        )
    username = sanitize_input(req.username) or email.split("@", 1)[0]

    scope = (
        req.row_filter
        if isinstance(req.row_filter, row_filters.RowScope)
        else row_filters.parse_row_scope(req.row_filter)
    )
    if not scope.all_rows:
        row_filters.validate_filters(
            scope.controls, directory_service.get_column_names(req.directory_id)
        )

    with transaction("appoint moderator"):
        _upsert_profile(email, username, req.auth_provider)
        moderator = _upsert_moderator(req, email, username, appointer, role)
        domain = _upsert_domain(req, email, scope)
        if role is Role.MODERATOR:
            _ensure_hierarchy_edge(appointer, email, req.directory_id)

    logger.info(
        "Moderator appointed email=%s directory_id=%s by=%s (%s) controls=%d all_rows=%s",
        email, req.directory_id, appointer, role.value, len(scope.controls), scope.all_rows,
    )
    return {**moderator.to_dict(), "domain": domain.to_dict()}


def remove_moderator(remover_email: str, target_email: str, directory_id: str) -> None:
    """Deactivate a moderator; their domain row stays for the audit trail."""
    remover = normalize_email(remover_email)
    target = normalize_email(target_email)
    role = authorization.resolve_role(remover, directory_id)
    if not authorization.can_remove_moderator(remover, role, target, directory_id):
        logger.warning(
            "Remove denied remover=%s role=%s target=%s directory_id=%s",
            remover, role.value, target, directory_id,
        )
        raise AuthorizationError("remover lacks remove permission")

    with transaction("remove moderator"):
        result = db.session.execute(
            update(Moderator)
            .where(
                Moderator.user_email == target,
                Moderator.directory_id == directory_id,
                Moderator.is_active.is_(True),
            )
            .values(is_active=False)
        )
        if not result.rowcount:
            raise NotFoundError(resource="Moderator", resource_id=target)

    logger.info("Moderator removed email=%s directory_id=%s by=%s", target, directory_id, remover)


# ── Queries ───────────────────────────────────────────────────────────────────


def get_moderator_permissions(email: str, directory_id: str) -> ModeratorPermissions:
    """Raises NotFoundError when no domain record exists (never a zero default)."""
    domain = authorization.get_domain(email, directory_id)
    if domain is None:
        raise NotFoundError(resource="ModeratorDomain", resource_id=normalize_email(email))
    is_active = authorization.is_moderator(email, directory_id)
    scope = row_filters.parse_row_scope(domain.row_filter_json)

    if not is_active:
        rows_allowed: list[int] | None = []
    elif scope.all_rows:
        rows_allowed = None
    else:
        rows_allowed = authorization.get_accessible_rows(email, directory_id)

    return ModeratorPermissions(
        can_edit=domain.can_edit,
        can_approve=domain.can_approve,
        requires_approval=domain.requires_approval,
        is_active=is_active,
        all_rows=scope.all_rows and is_active,
        rows_allowed=rows_allowed,
        scope=scope,
    )


def get_moderators_by_directory(directory_id: str) -> list[dict]:
    """Active moderators in appointment order."""
    moderators = db.session.execute(
        select(Moderator)
        .where(Moderator.directory_id == directory_id, Moderator.is_active.is_(True))
        .order_by(Moderator.created_at, Moderator.id)
    ).scalars()
    return [m.to_dict() for m in moderators]


def get_moderator_hierarchy(parent_email: str, directory_id: str) -> list[dict]:
    edges = db.session.execute(
        select(ModeratorHierarchy)
        .where(
            ModeratorHierarchy.parent_email == normalize_email(parent_email),
            ModeratorHierarchy.directory_id == directory_id,
        )
        .order_by(ModeratorHierarchy.id)
    ).scalars()
    return [e.to_dict() for e in edges]
