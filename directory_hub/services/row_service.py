"""Row write path: corrections, add-row and delete-row.

Every write follows the same pipeline:

    validate/sanitize → role gate → (moderator: can_edit + row scope)
        → apply directly, or queue a PendingChange when the moderator's
          domain has ``requires_approval``
        → after commit, fire-and-forget sheet write-back

The caller passes an explicit RequestContext; nothing here reads
``flask.g`` or request globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from directory_hub.core.exceptions import AuthorizationError
from directory_hub.services import (
    authorization,
    directory_service,
    pending_change_service,
    row_mutations,
)
from directory_hub.services.authorization import Role
from directory_hub.services.helpers.transaction import transaction
from directory_hub.utils.validation import (
    normalize_email,
    validate_cell,
    validate_reason,
    validate_row_data,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    user_email: str
    directory_id: str
    role: Role = Role.NONE
    request_id: str | None = None

    @classmethod
    def resolve(
        cls, user_email: str | None, directory_id: str, request_id: str | None = None
    ) -> RequestContext:
        email = normalize_email(user_email)
        return cls(
            user_email=email,
            directory_id=directory_id,
            role=authorization.resolve_role(email, directory_id),
            request_id=request_id,
        )

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.ADMIN, Role.OWNER)


@dataclass(frozen=True)
class WriteOutcome:
    applied: bool
    pending_change_id: int | None = None
    row_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "pending": self.pending_change_id is not None,
            "pending_change_id": self.pending_change_id,
            "row_id": self.row_id,
        }


def _deny(ctx: RequestContext, check: str) -> AuthorizationError:
    logger.warning(
        "Write denied check=%s user=%s role=%s directory_id=%s request_id=%s",
        check, ctx.user_email or "-", ctx.role.value, ctx.directory_id, ctx.request_id,
    )
    return AuthorizationError(check)


def _moderator_domain(ctx: RequestContext):
    """Gate shared by all moderator writes; returns the active domain."""
    if ctx.role is Role.NONE:
        raise _deny(ctx, "anonymous write")
    domain = authorization.get_active_domain(ctx.user_email, ctx.directory_id)
    if domain is None:
        raise _deny(ctx, "no moderator domain")
    if not domain.can_edit:
        raise _deny(ctx, "moderator lacks can_edit")
    return domain


def submit_correction(
    ctx: RequestContext, row_id: int, column: int | str, value: str, reason: str = ""
) -> WriteOutcome:
    """Change one cell of an existing row."""
    directory_service.get_directory_model(ctx.directory_id)
    value = validate_cell(value)
    reason = validate_reason(reason)
    column_names = directory_service.get_column_names(ctx.directory_id)
    col_index, col_name = pending_change_service.resolve_column(column_names, column)
    directory_service.get_row(ctx.directory_id, row_id)

    if not ctx.is_privileged:
        domain = _moderator_domain(ctx)
        if not authorization.can_access_row(ctx.user_email, ctx.directory_id, row_id):
            raise _deny(ctx, "row outside moderator scope")
        if domain.requires_approval:
            change = pending_change_service.submit_edit_change(
                ctx.directory_id, row_id, col_name, value, ctx.user_email, reason
            )
            return WriteOutcome(applied=False, pending_change_id=change["id"], row_id=row_id)

    with transaction("apply correction"):
        write = row_mutations.apply_edit(ctx.directory_id, row_id, col_index, value)

    logger.info(
        "Correction applied directory_id=%s row_id=%s column=%s by=%s",
        ctx.directory_id, row_id, col_name, ctx.user_email,
    )
    row_mutations.dispatch_sheet_write(ctx.directory_id, write)
    return WriteOutcome(applied=True, row_id=row_id)


def submit_add_row(ctx: RequestContext, values: list, reason: str = "") -> WriteOutcome:
    """Append a row; a moderator's scope is evaluated against the proposed values."""
    directory_service.get_directory_model(ctx.directory_id)
    values = validate_row_data(values)
    reason = validate_reason(reason)

    if not ctx.is_privileged:
        domain = _moderator_domain(ctx)
        if not authorization.can_access_values(ctx.user_email, ctx.directory_id, values):
            raise _deny(ctx, "new row outside moderator scope")
        if domain.requires_approval:
            change = pending_change_service.submit_add_change(
                ctx.directory_id, values, ctx.user_email, reason
            )
            return WriteOutcome(applied=False, pending_change_id=change["id"])

    with transaction("add row"):
        row, write = row_mutations.apply_add(ctx.directory_id, values)
        row_id = row.id

    logger.info("Row added directory_id=%s row_id=%s by=%s", ctx.directory_id, row_id, ctx.user_email)
    row_mutations.dispatch_sheet_write(ctx.directory_id, write)
    return WriteOutcome(applied=True, row_id=row_id)


def submit_delete_row(ctx: RequestContext, row_id: int, reason: str = "") -> WriteOutcome:
    directory_service.get_directory_model(ctx.directory_id)
    reason = validate_reason(reason)
    directory_service.get_row(ctx.directory_id, row_id)

    if not ctx.is_privileged:
        domain = _moderator_domain(ctx)
        if not authorization.can_access_row(ctx.user_email, ctx.directory_id, row_id):
            raise _deny(ctx, "row outside moderator scope")
        if domain.requires_approval:
            change = pending_change_service.submit_delete_change(
                ctx.directory_id, row_id, ctx.user_email, reason
            )
            return WriteOutcome(applied=False, pending_change_id=change["id"], row_id=row_id)

    with transaction("delete row"):
        write = row_mutations.apply_delete(ctx.directory_id, row_id)

    logger.info(
        "Row deleted directory_id=%s row_id=%s by=%s reason=%r",
        ctx.directory_id, row_id, ctx.user_email, reason,
    )
    row_mutations.dispatch_sheet_write(ctx.directory_id, write)
    return WriteOutcome(applied=True, row_id=row_id)
