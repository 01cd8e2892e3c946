"""Directory service layer: directories, owners, admins and row storage.

Rules:
  - db.session.commit() happens only in service modules, and multi-step
    writes go through ``helpers.transaction``.
  - Every write to ``admins`` / ``directory_owners`` point-invalidates the
    matching permission-cache entry; deleting a directory clears the cache.
  - Rows are addressed by ID.  The positional index (ascending ID order) is
    only ever resolved through ``resolve_row_index`` / ``row_position``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update

from directory_hub.core.exceptions import ConflictError, NotFoundError, ValidationError
from directory_hub.integrations.sheets_gateway import extract_spreadsheet_id, get_sheet_registry
from directory_hub.models import db
from directory_hub.models.directory import (
    OWNER_ROLES,
    Directory,
    DirectoryColumns,
    DirectoryOwner,
    DirectoryRow,
    PlatformAdmin,
    SheetConnection,
)
from directory_hub.models.moderation import (
    NEW_ROW_ID,
    STATUS_PENDING,
    STATUS_REJECTED,
    Moderator,
    ModeratorDomain,
    ModeratorHierarchy,
    PendingChange,
)
from directory_hub.services import row_filters
from directory_hub.services.helpers.transaction import transaction
from directory_hub.services.permission_cache import (
    KIND_ADMIN,
    KIND_OWNER,
    cache_key,
    get_permission_cache,
)
from directory_hub.utils.validation import (
    normalize_email,
    sanitize_input,
    validate_directory_id,
    validate_email_address,
    validate_row_data,
)

logger = logging.getLogger(__name__)

# reviewed_by recorded on changes closed by a re-import
IMPORT_REVIEWER = "system:import"
STRANDED_CHANGE_REASON = "Row replaced by a directory import; resubmit against the current data"


# ── Directories ───────────────────────────────────────────────────────────────


def get_directory_model(directory_id: str) -> Directory:
    directory = db.session.get(Directory, directory_id)
    if directory is None:
        raise NotFoundError(resource="Directory", resource_id=directory_id)
    return directory


def create_directory(
    directory_id: str,
    name: str,
    owner_email: str,
    description: str = "",
) -> dict:
    """Create a directory and its first owner in one transaction.

    Raises:
        ValidationError: malformed ID or missing name/owner.
        ConflictError: the ID is taken.
    """
    directory_id = validate_directory_id(sanitize_input(directory_id))
    name = sanitize_input(name)
    if not name:
        raise ValidationError("directory name is required")
    owner_email = validate_email_address(owner_email, field="owner email")
    if db.session.get(Directory, directory_id) is not None:
        raise ConflictError(resource="Directory", field="id", value=directory_id)

    with transaction("create directory"):
        directory = Directory(
            id=directory_id, name=name, description=sanitize_input(description)
        )
        db.session.add(directory)
        db.session.add(DirectoryColumns(directory_id=directory_id, columns_json="[]"))
        db.session.add(
            DirectoryOwner(directory_id=directory_id, user_email=owner_email, role="owner")
        )

    get_permission_cache().invalidate(cache_key(KIND_OWNER, directory_id, owner_email))
    logger.info("Directory created directory_id=%s owner=%s", directory_id, owner_email)
    return directory.to_dict()


def get_directory(directory_id: str) -> dict:
    return get_directory_model(directory_id).to_dict()


def list_directories() -> list[dict]:
    rows = db.session.execute(select(Directory).order_by(Directory.id)).scalars().all()
    return [d.to_dict() for d in rows]


def list_directories_for_user(email: str) -> list[dict]:
    """Directories the user owns or actively moderates, each tagged with the relation."""
    email = normalize_email(email)
    owned = dict(
        db.session.execute(
            select(DirectoryOwner.directory_id, DirectoryOwner.role).where(
                DirectoryOwner.user_email == email
            )
        ).all()
    )
    moderated = set(
        db.session.execute(
            select(Moderator.directory_id).where(
                Moderator.user_email == email, Moderator.is_active.is_(True)
            )
        ).scalars()
    )
    ids = set(owned) | moderated
    if not ids:
        return []
    directories = db.session.execute(
        select(Directory).where(Directory.id.in_(ids)).order_by(Directory.id)
    ).scalars()
    result = []
    for d in directories:
        item = d.to_dict()
        item["relation"] = owned.get(d.id, "moderator")
        result.append(item)
    return result


def delete_directory(directory_id: str) -> None:
    """Remove a directory and everything hanging off it, atomically.

    The whole permission cache is cleared afterwards (owner entries for this
    directory may exist under any email) and the sheet client is evicted.
    """
    get_directory_model(directory_id)

    with transaction("delete directory"):
        for model in (
            PendingChange,
            ModeratorHierarchy,
            ModeratorDomain,
            Moderator,
            DirectoryRow,
            DirectoryColumns,
            SheetConnection,
            DirectoryOwner,
        ):
            db.session.execute(delete(model).where(model.directory_id == directory_id))
        db.session.execute(delete(Directory).where(Directory.id == directory_id))

    get_permission_cache().clear()
    get_sheet_registry().evict(directory_id)
    logger.info("Directory deleted directory_id=%s", directory_id)


# ── Owners & admins ───────────────────────────────────────────────────────────


def add_directory_owner(directory_id: str, email: str, role: str = "owner") -> dict:
    get_directory_model(directory_id)
    email = validate_email_address(email, field="owner email")
    if role not in OWNER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(OWNER_ROLES))}")

    owner = db.session.execute(
        select(DirectoryOwner).where(
            DirectoryOwner.directory_id == directory_id, DirectoryOwner.user_email == email
        )
    ).scalar_one_or_none()
    with transaction("add directory owner"):
        if owner is None:
            owner = DirectoryOwner(directory_id=directory_id, user_email=email, role=role)
            db.session.add(owner)
        else:
            owner.role = role

    get_permission_cache().invalidate(cache_key(KIND_OWNER, directory_id, email))
    logger.info("Directory owner added directory_id=%s email=%s role=%s", directory_id, email, role)
    return owner.to_dict()


def remove_directory_owner(directory_id: str, email: str) -> None:
    email = normalize_email(email)
    with transaction("remove directory owner"):
        result = db.session.execute(
            delete(DirectoryOwner).where(
                DirectoryOwner.directory_id == directory_id, DirectoryOwner.user_email == email
            )
        )
    get_permission_cache().invalidate(cache_key(KIND_OWNER, directory_id, email))
    if not result.rowcount:
        raise NotFoundError(resource="DirectoryOwner", resource_id=email)
    logger.info("Directory owner removed directory_id=%s email=%s", directory_id, email)


def add_admin(email: str) -> None:
    email = validate_email_address(email, field="admin email")
    exists = db.session.execute(
        select(PlatformAdmin.id).where(PlatformAdmin.user_email == email)
    ).scalar_one_or_none()
    if exists is None:
        with transaction("add admin"):
            db.session.add(PlatformAdmin(user_email=email))
    get_permission_cache().invalidate(cache_key(KIND_ADMIN, None, email))
    logger.info("Platform admin added email=%s", email)


def remove_admin(email: str) -> None:
    email = normalize_email(email)
    with transaction("remove admin"):
        db.session.execute(delete(PlatformAdmin).where(PlatformAdmin.user_email == email))
    get_permission_cache().invalidate(cache_key(KIND_ADMIN, None, email))
    logger.info("Platform admin removed email=%s", email)


# ── Row storage ───────────────────────────────────────────────────────────────


def get_column_names(directory_id: str) -> list[str]:
    record = db.session.get(DirectoryColumns, directory_id)
    return record.names if record else []


def _write_column_names(directory_id: str, names: Sequence[str]) -> None:
    record = db.session.get(DirectoryColumns, directory_id)
    payload = json.dumps(list(names), ensure_ascii=False)
    if record is None:
        db.session.add(DirectoryColumns(directory_id=directory_id, columns_json=payload))
    else:
        record.columns_json = payload


def set_column_names(directory_id: str, names: Sequence[str]) -> list[str]:
    get_directory_model(directory_id)
    names = [sanitize_input(n) for n in names]
    with transaction("set column names"):
        _write_column_names(directory_id, names)
    return names


def get_row(directory_id: str, row_id: int) -> DirectoryRow:
    row = db.session.get(DirectoryRow, row_id)
    if row is None or row.directory_id != directory_id:
        raise NotFoundError(resource="Row", resource_id=row_id)
    return row


def list_rows(directory_id: str) -> list[dict]:
    """All rows in positional order, each with its current index."""
    rows = db.session.execute(
        select(DirectoryRow).where(DirectoryRow.directory_id == directory_id).order_by(DirectoryRow.id)
    ).scalars()
    return [{**row.to_dict(), "index": i} for i, row in enumerate(rows)]


def count_rows(directory_id: str) -> int:
    return db.session.execute(
        select(func.count(DirectoryRow.id)).where(DirectoryRow.directory_id == directory_id)
    ).scalar_one()


def resolve_row_index(directory_id: str, index: int) -> int:
    """Map a zero-based positional index to the row's permanent ID."""
    if index < 0:
        raise NotFoundError(resource="Row", resource_id=f"index {index}")
    row_id = db.session.execute(
        select(DirectoryRow.id)
        .where(DirectoryRow.directory_id == directory_id)
        .order_by(DirectoryRow.id)
        .offset(index)
        .limit(1)
    ).scalar_one_or_none()
    if row_id is None:
        raise NotFoundError(resource="Row", resource_id=f"index {index}")
    return row_id


def row_position(directory_id: str, row_id: int) -> int:
    """Inverse of resolve_row_index: the row's current zero-based index."""
    get_row(directory_id, row_id)
    return db.session.execute(
        select(func.count(DirectoryRow.id)).where(
            DirectoryRow.directory_id == directory_id, DirectoryRow.id < row_id
        )
    ).scalar_one()


def materialize_row(
    directory_id: str, row: DirectoryRow, column_names: Sequence[str] | None = None
) -> dict[str, str]:
    """Column name → cell value for *row*, in schema order."""
    if column_names is None:
        column_names = get_column_names(directory_id)
    return row_filters.materialize_row(column_names, row.values)


# ── Import & sheet connection ─────────────────────────────────────────────────


def _header_to_columns(header: Sequence) -> list[str]:
    columns = []
    for i, cell in enumerate(header):
        name = sanitize_input(cell)
        columns.append(name or f"Column {i + 1}")
    return columns


def import_rows(directory_id: str, header: Sequence, rows: Sequence[Sequence]) -> dict:
    """Replace the directory's schema and rows with spreadsheet data.

    Rows that fail validation are skipped with a log line.  The swap is a
    single transaction: readers see either the old or the new data set.

    Imported rows get fresh IDs, so pending edit and delete changes would
    point at rows that no longer exist.  They are rejected in the same
    transaction.  Pending add-changes carry full row values and stay queued.
    """
    get_directory_model(directory_id)
    columns = _header_to_columns(header)

    accepted: list[list[str]] = []
    skipped = 0
    for i, raw in enumerate(rows, start=1):
        try:
            values = validate_row_data([sanitize_input(c) for c in raw])
        except ValidationError as exc:
            logger.warning("Skipping invalid row %d directory_id=%s: %s", i, directory_id, exc)
            skipped += 1
            continue
        accepted.append(values)

    with transaction("import rows"):
        stranded = db.session.execute(
            update(PendingChange)
            .where(
                PendingChange.directory_id == directory_id,
                PendingChange.status == STATUS_PENDING,
                PendingChange.row_id != NEW_ROW_ID,
            )
            .values(
                status=STATUS_REJECTED,
                reviewed_by=IMPORT_REVIEWER,
                reviewed_at=datetime.now(timezone.utc),
                reason=STRANDED_CHANGE_REASON,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.execute(delete(DirectoryRow).where(DirectoryRow.directory_id == directory_id))
        _write_column_names(directory_id, columns)
        for values in accepted:
            row = DirectoryRow(directory_id=directory_id)
            row.values = values
            db.session.add(row)

    if stranded:
        logger.warning(
            "Import rejected %d pending change(s) directory_id=%s", stranded, directory_id
        )
    logger.info(
        "Rows imported directory_id=%s columns=%d rows=%d skipped=%d",
        directory_id, len(columns), len(accepted), skipped,
    )
    return {
        "columns": columns,
        "imported": len(accepted),
        "skipped": skipped,
        "rejected_changes": stranded,
    }


def sync_from_sheet(directory_id: str) -> dict:
    """Pull every row from the backing spreadsheet and re-import the directory."""
    get_directory_model(directory_id)
    values = get_sheet_registry().get_client(directory_id).fetch_all_rows()
    if not values:
        raise ValidationError("no data found in sheet")
    return import_rows(directory_id, values[0], values[1:])


def connect_sheet(
    directory_id: str,
    sheet_url: str,
    token: dict | str,
    connected_by: str,
    sheet_gid: int = 0,
) -> dict:
    """Attach a spreadsheet to a directory; the OAuth token is stored encrypted."""
    from directory_hub.utils.crypto import encrypt_secret

    directory = get_directory_model(directory_id)
    spreadsheet_id = extract_spreadsheet_id(sheet_url)
    if not spreadsheet_id:
        raise ValidationError("invalid Google Sheets URL")
    token_json = token if isinstance(token, str) else json.dumps(token)

    conn = db.session.get(SheetConnection, directory_id)
    with transaction("connect sheet"):
        if conn is None:
            conn = SheetConnection(directory_id=directory_id)
            db.session.add(conn)
        conn.spreadsheet_id = spreadsheet_id
        conn.sheet_gid = sheet_gid
        conn.encrypted_token = encrypt_secret(token_json)
        conn.connected_by = normalize_email(connected_by)
        directory.storage_ref = spreadsheet_id

    get_sheet_registry().evict(directory_id)
    logger.info("Sheet connected directory_id=%s spreadsheet_id=%s", directory_id, spreadsheet_id)
    return conn.to_dict()
