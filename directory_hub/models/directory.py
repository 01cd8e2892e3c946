"""
Directory models: directories, owners, platform admins, row storage.

A Directory mirrors one spreadsheet.  Its column schema lives in
``directory_columns`` (one JSON array per directory) and every data row is
stored as a JSON array of strings in ``directory_rows``.  Row IDs are the
permanent identifiers; the zero-based positional "index" of a row is
derived from ascending ID order and must be resolved on every request.
"""

import json
from datetime import datetime, timezone

from directory_hub.models import db

OWNER_ROLES = frozenset({"owner", "admin"})


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 1. DIRECTORIES
# ═══════════════════════════════════════════════════════════════
class Directory(db.Model):
    __tablename__ = "directories"

    id = db.Column(db.String(50), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    storage_ref = db.Column(
        db.String(500),
        nullable=True,
        comment="Backing spreadsheet reference (spreadsheet ID) once a sheet is connected",
    )
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    owners = db.relationship("DirectoryOwner", back_populates="directory", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "storage_ref": self.storage_ref,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. DIRECTORY OWNERS
# ═══════════════════════════════════════════════════════════════
class DirectoryOwner(db.Model):
    __tablename__ = "directory_owners"

    id = db.Column(db.Integer, primary_key=True)
    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), nullable=False
    )
    user_email = db.Column(db.String(320), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="owner")  # owner | admin
    created_at = db.Column(db.DateTime, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("directory_id", "user_email", name="uq_directory_owner"),
        db.Index("ix_directory_owners_email", "user_email"),
    )

    directory = db.relationship("Directory", back_populates="owners")

    def to_dict(self):
        return {
            "directory_id": self.directory_id,
            "user_email": self.user_email,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. PLATFORM ADMINS
# ═══════════════════════════════════════════════════════════════
class PlatformAdmin(db.Model):
    __tablename__ = "admins"

    id = db.Column(db.Integer, primary_key=True)
    user_email = db.Column(db.String(320), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)


# ═══════════════════════════════════════════════════════════════
# 4. USER PROFILES
# ═══════════════════════════════════════════════════════════════
class UserProfile(db.Model):
    __tablename__ = "user_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_email = db.Column(db.String(320), unique=True, nullable=False)
    username = db.Column(db.String(200), nullable=False)
    auth_provider = db.Column(db.String(50), default="google")  # google, twitter
    provider_id = db.Column(db.String(320))
    avatar_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)


# ═══════════════════════════════════════════════════════════════
# 5. ROW STORAGE
# ═══════════════════════════════════════════════════════════════
class DirectoryColumns(db.Model):
    """Ordered column-name schema of one directory (header row of the sheet)."""

    __tablename__ = "directory_columns"

    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), primary_key=True
    )
    columns_json = db.Column(db.Text, nullable=False, default="[]")
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    @property
    def names(self) -> list[str]:
        return json.loads(self.columns_json or "[]")


class DirectoryRow(db.Model):
    __tablename__ = "directory_rows"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    directory_id = db.Column(
        db.String(50),
        db.ForeignKey("directories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    data = db.Column(db.Text, nullable=False, comment="JSON array of cell strings")

    # Row IDs are permanent; SQLite must not reuse them after deletes
    __table_args__ = {"sqlite_autoincrement": True}

    @property
    def values(self) -> list[str]:
        return json.loads(self.data or "[]")

    @values.setter
    def values(self, cells: list[str]) -> None:
        self.data = json.dumps(list(cells), ensure_ascii=False)

    def to_dict(self):
        return {"id": self.id, "directory_id": self.directory_id, "values": self.values}


# ═══════════════════════════════════════════════════════════════
# 6. SHEET CONNECTIONS
# ═══════════════════════════════════════════════════════════════
class SheetConnection(db.Model):
    """Backing spreadsheet of a directory and its encrypted OAuth credential."""

    __tablename__ = "sheet_connections"

    directory_id = db.Column(
        db.String(50), db.ForeignKey("directories.id", ondelete="CASCADE"), primary_key=True
    )
    spreadsheet_id = db.Column(db.String(200), nullable=False)
    sheet_gid = db.Column(db.Integer, nullable=False, default=0)
    encrypted_token = db.Column(
        db.Text,
        nullable=True,
        comment="Fernet-encrypted OAuth token JSON, never returned by to_dict()",
    )
    connected_by = db.Column(db.String(320))
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "directory_id": self.directory_id,
            "spreadsheet_id": self.spreadsheet_id,
            "sheet_gid": self.sheet_gid,
            "has_credentials": bool(self.encrypted_token),
            "connected_by": self.connected_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
