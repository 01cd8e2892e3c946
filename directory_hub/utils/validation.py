"""
Input validation and sanitization for directory and row payloads.

Limits come from the app config (MAX_ROW_COLUMNS, MAX_CELL_LENGTH,
MAX_REASON_LENGTH) so they can be tightened per environment.  All
functions raise ``ValidationError``; none of them touch storage.
"""

import re

from email_validator import EmailNotValidError, validate_email
from flask import current_app, has_app_context

from directory_hub.core.exceptions import ValidationError

_DIRECTORY_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

MAX_DIRECTORY_ID_LENGTH = 50

_DEFAULT_LIMITS = {
    "MAX_ROW_COLUMNS": 50,
    "MAX_CELL_LENGTH": 1000,
    "MAX_REASON_LENGTH": 500,
}


def _limit(name: str) -> int:
    if has_app_context():
        return int(current_app.config.get(name, _DEFAULT_LIMITS[name]))
    return _DEFAULT_LIMITS[name]


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_email_address(email: str | None, field: str = "email") -> str:
    """Syntax-check an address and return it normalized and lower-cased."""
    email = (email or "").strip()
    if not email:
        raise ValidationError(f"{field} is required", details={"field": field})
    try:
        valid = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid {field}: {e}", details={"field": field}) from e
    return valid.normalized.lower()


def sanitize_input(value) -> str:
    """Trim and drop control characters (tab, CR and LF are kept)."""
    if value is None:
        return ""
    return _CONTROL_CHARS_RE.sub("", str(value).strip())


def validate_directory_id(directory_id: str) -> str:
    if not directory_id:
        raise ValidationError("directory ID is required")
    if len(directory_id) > MAX_DIRECTORY_ID_LENGTH:
        raise ValidationError(
            f"directory ID too long (max {MAX_DIRECTORY_ID_LENGTH} characters)"
        )
    if not _DIRECTORY_ID_RE.match(directory_id):
        raise ValidationError(
            "directory ID may only contain letters, numbers, hyphens, and underscores"
        )
    if directory_id.startswith("-") or directory_id.endswith("-"):
        raise ValidationError("directory ID cannot start or end with a hyphen")
    return directory_id


def validate_column_name(column: str) -> str:
    column = sanitize_input(column)
    if not column:
        raise ValidationError("column name is required")
    if len(column) > 100:
        raise ValidationError("column name too long (max 100 characters)")
    return column


def validate_cell(value, field: str = "value") -> str:
    value = sanitize_input(value)
    max_len = _limit("MAX_CELL_LENGTH")
    if len(value) > max_len:
        raise ValidationError(
            f"{field} too long (max {max_len} characters)", details={"field": field}
        )
    return value


def validate_reason(reason) -> str:
    reason = sanitize_input(reason)
    max_len = _limit("MAX_REASON_LENGTH")
    if len(reason) > max_len:
        raise ValidationError(
            f"reason too long (max {max_len} characters)", details={"field": "reason"}
        )
    return reason


def validate_row_data(values) -> list[str]:
    """Sanitize a full row; enforce the column count and cell length limits."""
    if not isinstance(values, (list, tuple)):
        raise ValidationError("row data must be a list of strings")
    max_cols = _limit("MAX_ROW_COLUMNS")
    if len(values) > max_cols:
        raise ValidationError(f"too many columns (max {max_cols})")
    return [validate_cell(v, field=f"column {i}") for i, v in enumerate(values)]
