"""Row blueprint: browsing and the write path (correction / add / delete).

Endpoint groups:
  Browse        GET    /api/v1/rows?dir=<directory_id>
                GET    /api/v1/rows/accessible?dir=<directory_id>
  Corrections   POST   /api/v1/corrections
  Add row       POST   /api/v1/rows
  Delete row    DELETE /api/v1/rows/<row_id>?dir=<directory_id>

Rows are addressed by ``row_id``.  Clients still sending a positional
``row`` index are resolved to an ID at the edge, once per request.

Writes answer 200 when applied and 202 when queued for approval.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from directory_hub.core.exceptions import ValidationError
from directory_hub.middleware.request_context import build_request_context, require_directory_id
from directory_hub.services import authorization, directory_service, row_service
from directory_hub.services.authorization import Role
from directory_hub.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

row_bp = Blueprint("rows", __name__, url_prefix="/api/v1")
register_error_handlers(row_bp)


def _int_field(data: dict, key: str) -> int | None:
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{key} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer") from exc


def _row_id_from(data: dict, directory_id: str) -> int:
    row_id = _int_field(data, "row_id")
    if row_id is not None:
        return row_id
    index = _int_field(data, "row")
    if index is None:
        raise ValidationError("row_id is required")
    return directory_service.resolve_row_index(directory_id, index)


def _outcome_response(outcome: row_service.WriteOutcome):
    return jsonify(outcome.to_dict()), (200 if outcome.applied else 202)


# ═════════════════════════════════════════════════════════════════════════
# Browse
# ═════════════════════════════════════════════════════════════════════════


@row_bp.route("/rows", methods=["GET"])
def list_rows():
    """Columns and rows of a directory, in positional order."""
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    return jsonify({
        "columns": directory_service.get_column_names(directory_id),
        "rows": directory_service.list_rows(directory_id),
    }), 200


@row_bp.route("/rows/accessible", methods=["GET"])
def accessible_rows():
    """Row IDs the caller may write; ``all_rows`` for admins and owners."""
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    ctx = build_request_context(directory_id)
    if ctx.is_privileged:
        return jsonify({"all_rows": True, "row_ids": None}), 200
    if ctx.role is not Role.MODERATOR:
        return jsonify({"all_rows": False, "row_ids": []}), 200
    scope = authorization.get_row_scope(ctx.user_email, directory_id)
    if scope.all_rows:
        return jsonify({"all_rows": True, "row_ids": None}), 200
    return jsonify({
        "all_rows": False,
        "row_ids": authorization.get_accessible_rows(ctx.user_email, directory_id),
    }), 200


# ═════════════════════════════════════════════════════════════════════════
# Writes
# ═════════════════════════════════════════════════════════════════════════


@row_bp.route("/corrections", methods=["POST"])
def submit_correction():
    """Body: { directory_id, row_id | row, column (name or index), value, reason? }"""
    data = request.get_json(silent=True) or {}
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    row_id = _row_id_from(data, directory_id)
    column = data.get("column", data.get("col"))
    if column is None or column == "":
        raise ValidationError("column is required")
    outcome = row_service.submit_correction(
        build_request_context(directory_id),
        row_id,
        column,
        data.get("value", ""),
        data.get("reason", ""),
    )
    return _outcome_response(outcome)


@row_bp.route("/rows", methods=["POST"])
def add_row():
    """Body: { directory_id, values: [..], reason? }"""
    data = request.get_json(silent=True) or {}
    directory_id = require_directory_id()
    values = data.get("values", data.get("row_data"))
    if values is None:
        raise ValidationError("values is required")
    outcome = row_service.submit_add_row(
        build_request_context(directory_id), values, data.get("reason", "")
    )
    return _outcome_response(outcome)


@row_bp.route("/rows/<int:row_id>", methods=["DELETE"])
def delete_row(row_id):
    data = request.get_json(silent=True) or {}
    directory_id = require_directory_id()
    outcome = row_service.submit_delete_row(
        build_request_context(directory_id), row_id, data.get("reason", "")
    )
    return _outcome_response(outcome)
