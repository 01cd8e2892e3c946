"""initial_directory_schema

Creates the directory + moderation schema:
  - directories, directory_owners, admins, user_profiles
  - directory_columns, directory_rows  (mirrored spreadsheet data)
  - sheet_connections     (backing sheet + encrypted token)
  - moderators, moderator_domains, moderator_hierarchy, pending_changes

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1f3c9e2d401
Revises:
Create Date: 2026-10-18 09:12:44.310552
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1f3c9e2d401'
down_revision = None
branch_labels = None
depends_on = None


def _directory_fk():
    return sa.ForeignKey("directories.id", ondelete="CASCADE")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Directories ───────────────────────────────────────────────────────
    if "directories" not in existing:
        op.create_table(
            "directories",
            sa.Column("id", sa.String(length=50), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "storage_ref", sa.String(length=500), nullable=True,
                comment="Backing spreadsheet reference (spreadsheet ID) once a sheet is connected",
            ),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )

    if "directory_owners" not in existing:
        op.create_table(
            "directory_owners",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), nullable=False),
            sa.Column("user_email", sa.String(length=320), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="owner"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("directory_id", "user_email", name="uq_directory_owner"),
        )
        op.create_index("ix_directory_owners_email", "directory_owners", ["user_email"])

    if "admins" not in existing:
        op.create_table(
            "admins",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_email", sa.String(length=320), nullable=False, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if "user_profiles" not in existing:
        op.create_table(
            "user_profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_email", sa.String(length=320), nullable=False, unique=True),
            sa.Column("username", sa.String(length=200), nullable=False),
            sa.Column("auth_provider", sa.String(length=50), nullable=True),
            sa.Column("provider_id", sa.String(length=320), nullable=True),
            sa.Column("avatar_url", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )

    # ── Row storage ───────────────────────────────────────────────────────
    if "directory_columns" not in existing:
        op.create_table(
            "directory_columns",
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), primary_key=True),
            sa.Column("columns_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )

    if "directory_rows" not in existing:
        op.create_table(
            "directory_rows",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), nullable=False),
            sa.Column("data", sa.Text(), nullable=False, comment="JSON array of cell strings"),
            sqlite_autoincrement=True,
        )
        op.create_index("ix_directory_rows_directory_id", "directory_rows", ["directory_id"])

    if "sheet_connections" not in existing:
        op.create_table(
            "sheet_connections",
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), primary_key=True),
            sa.Column("spreadsheet_id", sa.String(length=200), nullable=False),
            sa.Column("sheet_gid", sa.Integer(), nullable=False, server_default="0"),
            sa.Column(
                "encrypted_token", sa.Text(), nullable=True,
                comment="Fernet-encrypted OAuth token JSON",
            ),
            sa.Column("connected_by", sa.String(length=320), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )

    # ── Moderation ────────────────────────────────────────────────────────
    if "moderators" not in existing:
        op.create_table(
            "moderators",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_email", sa.String(length=320), nullable=False),
            sa.Column("username", sa.String(length=200), nullable=False),
            sa.Column("auth_provider", sa.String(length=50), nullable=False, server_default="google"),
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), nullable=False),
            sa.Column("appointed_by", sa.String(length=320), nullable=False),
            sa.Column(
                "appointed_by_type", sa.String(length=20), nullable=False,
                comment="admin | owner | moderator",
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("user_email", "directory_id", name="uq_moderator_directory"),
        )
        op.create_index(
            "ix_moderators_directory_active", "moderators", ["directory_id", "is_active"]
        )

    if "moderator_domains" not in existing:
        op.create_table(
            "moderator_domains",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("moderator_email", sa.String(length=320), nullable=False),
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), nullable=False),
            sa.Column("row_filter_json", sa.Text(), nullable=False, server_default=""),
            sa.Column("can_edit", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("can_approve", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("moderator_email", "directory_id", name="uq_moderator_domain"),
        )

    if "moderator_hierarchy" not in existing:
        op.create_table(
            "moderator_hierarchy",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("parent_email", sa.String(length=320), nullable=False),
            sa.Column("child_email", sa.String(length=320), nullable=False),
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint(
                "parent_email", "child_email", "directory_id", name="uq_moderator_hierarchy_edge"
            ),
        )

    if "pending_changes" not in existing:
        op.create_table(
            "pending_changes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("directory_id", sa.String(length=50), _directory_fk(), nullable=False),
            sa.Column("row_id", sa.Integer(), nullable=False),
            sa.Column("column_name", sa.String(length=500), nullable=False, server_default=""),
            sa.Column("old_value", sa.Text(), nullable=False, server_default=""),
            sa.Column("new_value", sa.Text(), nullable=False, server_default=""),
            sa.Column("change_type", sa.String(length=10), nullable=False, comment="edit | add | delete"),
            sa.Column("submitted_by", sa.String(length=320), nullable=False),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="pending"),
            sa.Column("reviewed_by", sa.String(length=320), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("column_schema_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index(
            "ix_pending_changes_directory_status", "pending_changes", ["directory_id", "status"]
        )


def downgrade():
    op.drop_index("ix_pending_changes_directory_status", table_name="pending_changes")
    op.drop_table("pending_changes")
    op.drop_table("moderator_hierarchy")
    op.drop_table("moderator_domains")
    op.drop_index("ix_moderators_directory_active", table_name="moderators")
    op.drop_table("moderators")
    op.drop_table("sheet_connections")
    op.drop_index("ix_directory_rows_directory_id", table_name="directory_rows")
    op.drop_table("directory_rows")
    op.drop_table("directory_columns")
    op.drop_table("user_profiles")
    op.drop_table("admins")
    op.drop_index("ix_directory_owners_email", table_name="directory_owners")
    op.drop_table("directory_owners")
    op.drop_table("directories")
