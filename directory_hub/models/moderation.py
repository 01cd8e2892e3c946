"""
Moderation models: moderators, their domains, appointment hierarchy and
the pending-change queue.

Moderators are soft-deleted (``is_active = False``), never hard-deleted.
A ModeratorDomain holds the per-directory permissions and the serialized
row-access scope (see ``services.row_filters.RowScope``).  PendingChange
rows move exactly once from ``pending`` to a terminal status.
"""

from datetime import datetime, timezone

from directory_hub.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

AUTH_PROVIDERS = frozenset({"google", "twitter"})

CHANGE_TYPE_EDIT = "edit"
CHANGE_TYPE_ADD = "add"
CHANGE_TYPE_DELETE = "delete"
CHANGE_TYPES = frozenset({CHANGE_TYPE_EDIT, CHANGE_TYPE_ADD, CHANGE_TYPE_DELETE})

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
CHANGE_STATUSES = frozenset({STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED})

# row_id sentinel for add-type changes (the row does not exist yet)
NEW_ROW_ID = -1


def _utcnow():
    return datetime.now(timezone.utc)


class Moderator(db.Model):
    __tablename__ = "moderators"

    id = db.Column(db.Integer, primary_key=True)
    user_email = db.Column(db.String(320), nullable=False)
    username = db.Column(db.String(200), nullable=False)
    auth_provider = db.Column(db.String(50), nullable=False, default="google")
    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), nullable=False
    )
    appointed_by = db.Column(db.String(320), nullable=False)
    appointed_by_type = db.Column(db.String(20), nullable=False, comment="admin | owner | moderator")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_email", "directory_id", name="uq_moderator_directory"),
        db.Index("ix_moderators_directory_active", "directory_id", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_email": self.user_email,
            "username": self.username,
            "auth_provider": self.auth_provider,
            "directory_id": self.directory_id,
            "appointed_by": self.appointed_by,
            "appointed_by_type": self.appointed_by_type,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ModeratorDomain(db.Model):
    __tablename__ = "moderator_domains"

    id = db.Column(db.Integer, primary_key=True)
    moderator_email = db.Column(db.String(320), nullable=False)
    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), nullable=False
    )
    row_filter_json = db.Column(
        db.Text,
        nullable=False,
        default="",
        comment='Serialized RowScope: {"scope": "all"} or {"scope": "controls", "controls": [...]}',
    )
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_approve = db.Column(db.Boolean, nullable=False, default=False)
    requires_approval = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("moderator_email", "directory_id", name="uq_moderator_domain"),
    )

    def to_dict(self):
        return {
            "moderator_email": self.moderator_email,
            "directory_id": self.directory_id,
            "row_filter": self.row_filter_json,
            "can_edit": self.can_edit,
            "can_approve": self.can_approve,
            "requires_approval": self.requires_approval,
        }


class ModeratorHierarchy(db.Model):
    """Append-only appointer → appointee edge (only written for moderator appointers)."""

    __tablename__ = "moderator_hierarchy"

    id = db.Column(db.Integer, primary_key=True)
    parent_email = db.Column(db.String(320), nullable=False)
    child_email = db.Column(db.String(320), nullable=False)
    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "parent_email", "child_email", "directory_id", name="uq_moderator_hierarchy_edge"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "parent_email": self.parent_email,
            "child_email": self.child_email,
            "directory_id": self.directory_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PendingChange(db.Model):
    """
    A proposed row mutation awaiting review.

    Business rules:
    - status moves pending → approved | rejected exactly once.
    - column_schema_json snapshots the column names at submission time;
      approval resolves the target column through this snapshot, never
      through the live schema.
    - row_id == NEW_ROW_ID for add-type changes; new_value then holds the
      full JSON array of the proposed row.
    """

    __tablename__ = "pending_changes"

    id = db.Column(db.Integer, primary_key=True)
    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), nullable=False
    )
    row_id = db.Column(db.Integer, nullable=False)
    column_name = db.Column(db.String(500), nullable=False, default="")
    old_value = db.Column(db.Text, nullable=False, default="")
    new_value = db.Column(db.Text, nullable=False, default="")
    change_type = db.Column(db.String(10), nullable=False, comment="edit | add | delete")
    submitted_by = db.Column(db.String(320), nullable=False)
    status = db.Column(db.String(10), nullable=False, default=STATUS_PENDING)
    reviewed_by = db.Column(db.String(320))
    reviewed_at = db.Column(db.DateTime)
    reason = db.Column(db.Text, default="")
    column_schema_json = db.Column(db.Text, nullable=False, default="[]")
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.Index("ix_pending_changes_directory_status", "directory_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "directory_id": self.directory_id,
            "row_id": self.row_id,
            "column_name": self.column_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "change_type": self.change_type,
            "submitted_by": self.submitted_by,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reason": self.reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
