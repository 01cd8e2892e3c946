"""
Pending-change workflow: proposals from gated moderators.

State machine (one transition per record, enforced in the store):

    pending ──approve──▶ approved   (row mutation applied, same transaction)
       │
       └────reject────▶ rejected   (nothing applied)

Submission snapshots the column schema so that approval always resolves
the target column as it was when the moderator proposed the change.

Double review is prevented with a compare-and-set on ``status``: the
status UPDATE only matches a row that is still ``pending``.  A second
reviewer, or a retried request, gets ConflictError and no mutation.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from directory_hub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from directory_hub.models import db
from directory_hub.models.moderation import (
    CHANGE_STATUSES,
    CHANGE_TYPE_ADD,
    CHANGE_TYPE_DELETE,
    CHANGE_TYPE_EDIT,
    CHANGE_TYPES,
    NEW_ROW_ID,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    PendingChange,
)
from directory_hub.services import authorization, directory_service, row_mutations
from directory_hub.services.helpers.transaction import transaction
from directory_hub.utils.validation import normalize_email, validate_reason

logger = logging.getLogger(__name__)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
_ACTION_STATUS = {ACTION_APPROVE: STATUS_APPROVED, ACTION_REJECT: STATUS_REJECTED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_column(column_names: list[str], column: int | str) -> tuple[int, str]:
    """Map a column index or name onto ``(index, name)`` within *column_names*."""
    if isinstance(column, bool):
        raise ValidationError("column must be a name or an index")
    if isinstance(column, int):
        if not 0 <= column < len(column_names):
            raise ValidationError(f"column index out of range: {column}")
        return column, column_names[column]
    if column in column_names:
        return column_names.index(column), column
    if isinstance(column, str) and column.isdigit():
        return resolve_column(column_names, int(column))
    raise ValidationError(f"unknown column: {column}")


# ── Submission ────────────────────────────────────────────────────────────────


def submit_pending_change(
    directory_id: str,
    row_id: int,
    column: int | str,
    new_value: str,
    change_type: str,
    submitted_by: str,
    reason: str = "",
) -> dict:
    """Record a proposed change; the live row is not touched.

    Values arrive already sanitized; this layer does not re-validate them.
    """
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f"change_type must be one of: {', '.join(sorted(CHANGE_TYPES))}")
    directory_service.get_directory_model(directory_id)
    column_names = directory_service.get_column_names(directory_id)

    column_name = ""
    old_value = ""
    if change_type == CHANGE_TYPE_EDIT:
        row = directory_service.get_row(directory_id, row_id)
        index, column_name = resolve_column(column_names, column)
        values = row.values
        old_value = values[index] if index < len(values) else ""
    elif change_type == CHANGE_TYPE_DELETE:
        row = directory_service.get_row(directory_id, row_id)
        old_value = json.dumps(row.values, ensure_ascii=False)
    else:
        row_id = NEW_ROW_ID

    with transaction("submit pending change"):
        change = PendingChange(
            directory_id=directory_id,
            row_id=row_id,
            column_name=column_name,
            old_value=old_value,
            new_value=new_value,
            change_type=change_type,
            submitted_by=normalize_email(submitted_by),
            status=STATUS_PENDING,
            reason=reason,
            column_schema_json=json.dumps(column_names, ensure_ascii=False),
        )
        db.session.add(change)

    logger.info(
        "Pending change submitted id=%s type=%s directory_id=%s row_id=%s by=%s",
        change.id, change_type, directory_id, row_id, change.submitted_by,
    )
    return change.to_dict()


def submit_edit_change(
    directory_id: str, row_id: int, column: int | str, new_value: str, submitted_by: str,
    reason: str = "",
) -> dict:
    return submit_pending_change(
        directory_id, row_id, column, new_value, CHANGE_TYPE_EDIT, submitted_by, reason
    )


def submit_add_change(
    directory_id: str, values: list[str], submitted_by: str, reason: str = ""
) -> dict:
    return submit_pending_change(
        directory_id,
        NEW_ROW_ID,
        "",
        json.dumps(list(values), ensure_ascii=False),
        CHANGE_TYPE_ADD,
        submitted_by,
        reason,
    )


def submit_delete_change(
    directory_id: str, row_id: int, submitted_by: str, reason: str = ""
) -> dict:
    return submit_pending_change(
        directory_id, row_id, "", "", CHANGE_TYPE_DELETE, submitted_by, reason
    )


# ── Review ────────────────────────────────────────────────────────────────────


def _apply_change(change: PendingChange) -> row_mutations.SheetWrite:
    match change.change_type:
        case "edit":
            snapshot = json.loads(change.column_schema_json or "[]")
            if change.column_name not in snapshot:
                raise ValidationError(
                    f"column {change.column_name!r} missing from change snapshot"
                )
            return row_mutations.apply_edit(
                change.directory_id,
                change.row_id,
                snapshot.index(change.column_name),
                change.new_value,
            )
        case "add":
            try:
                values = json.loads(change.new_value or "[]")
            except ValueError as exc:
                raise ValidationError("add change carries malformed row data") from exc
            _, write = row_mutations.apply_add(change.directory_id, [str(v) for v in values])
            return write
        case "delete":
            return row_mutations.apply_delete(change.directory_id, change.row_id)
    raise ValidationError(f"unsupported change type: {change.change_type!r}")


def process_change_approval(
    change_id: int, reviewer_email: str, action: str, reason: str = ""
) -> dict:
    """Move a pending change to its terminal status; on approve, apply it.

    The caller has already checked ``can_approve_change``.  Status update
    and row mutation commit together; if applying fails the change stays
    ``pending``.

    Raises:
        ValidationError: unknown action.
        NotFoundError: no such change (or its target row vanished).
        ConflictError: the change is no longer pending.
    """
    status = _ACTION_STATUS.get((action or "").lower())
    if status is None:
        raise ValidationError("action must be 'approve' or 'reject'")
    reviewer = normalize_email(reviewer_email)
    reason = validate_reason(reason)

    write = None
    with transaction("process change approval"):
        values = {"status": status, "reviewed_by": reviewer, "reviewed_at": _utcnow()}
        if reason:
            values["reason"] = reason
        result = db.session.execute(
            update(PendingChange)
            .where(PendingChange.id == change_id, PendingChange.status == STATUS_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            existing = db.session.get(PendingChange, change_id)
            if existing is None:
                raise NotFoundError(resource="PendingChange", resource_id=change_id)
            raise ConflictError(resource="PendingChange", field="status", value=existing.status)

        change = db.session.execute(
            select(PendingChange)
            .where(PendingChange.id == change_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if status == STATUS_APPROVED:
            write = _apply_change(change)

    logger.info(
        "Pending change %s id=%s directory_id=%s by=%s",
        status, change_id, change.directory_id, reviewer,
    )
    row_mutations.dispatch_sheet_write(change.directory_id, write)
    return change.to_dict()


def review_change(
    reviewer_email: str, directory_id: str, change_id: int, action: str, reason: str = ""
) -> dict:
    """Authorization-checked entry point used by the HTTP layer."""
    if not authorization.can_approve_change(reviewer_email, directory_id, change_id):
        logger.warning(
            "Review denied reviewer=%s change_id=%s directory_id=%s",
            normalize_email(reviewer_email), change_id, directory_id,
        )
        raise AuthorizationError("reviewer may not review this change")
    return process_change_approval(change_id, reviewer_email, action, reason)


# ── Queries ───────────────────────────────────────────────────────────────────


def get_change(change_id: int) -> dict:
    change = db.session.get(PendingChange, change_id)
    if change is None:
        raise NotFoundError(resource="PendingChange", resource_id=change_id)
    return change.to_dict()


def get_pending_changes(directory_id: str, moderator_email: str = "") -> list[dict]:
    """Pending changes in a directory, oldest first.

    Empty *moderator_email* lists everything (admin/owner view).  Otherwise
    only changes the moderator could approve: an active domain with
    ``can_approve`` whose scope covers the change's target row.
    """
    changes = db.session.execute(
        select(PendingChange)
        .where(PendingChange.directory_id == directory_id, PendingChange.status == STATUS_PENDING)
        .order_by(PendingChange.created_at, PendingChange.id)
    ).scalars().all()
    if not moderator_email:
        return [c.to_dict() for c in changes]
    return [c.to_dict() for c in changes if authorization.can_review_change(moderator_email, c)]


def list_changes(
    directory_id: str, status: str | None = None, submitted_by: str | None = None
) -> list[dict]:
    """Change history, newest first."""
    stmt = select(PendingChange).where(PendingChange.directory_id == directory_id)
    if status:
        if status not in CHANGE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(CHANGE_STATUSES))}")
        stmt = stmt.where(PendingChange.status == status)
    if submitted_by:
        stmt = stmt.where(PendingChange.submitted_by == normalize_email(submitted_by))
    stmt = stmt.order_by(PendingChange.created_at.desc(), PendingChange.id.desc())
    return [c.to_dict() for c in db.session.execute(stmt).scalars()]
