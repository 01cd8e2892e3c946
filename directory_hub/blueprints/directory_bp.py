"""Directory blueprint: directories, owners, admins, import and sheet sync.

Endpoint groups:
  Directories      GET/POST   /api/v1/directories
                   GET/DELETE /api/v1/directories/<directory_id>
  Schema & data    GET  /api/v1/directories/<directory_id>/columns
                   POST /api/v1/directories/<directory_id>/import
                   POST /api/v1/directories/<directory_id>/sync
                   POST /api/v1/directories/<directory_id>/sheet
  Owners           POST   /api/v1/directories/<directory_id>/owners
                   DELETE /api/v1/directories/<directory_id>/owners/<email>
  Platform admins  POST   /api/v1/admins
                   DELETE /api/v1/admins/<email>
  Caller role      GET  /api/v1/user-type?dir=<directory_id>

Identity comes from the X-User-Email header (see middleware.request_context).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from directory_hub.core.exceptions import AuthorizationError, ValidationError
from directory_hub.integrations.sheets_gateway import SheetSyncError
from directory_hub.middleware.request_context import (
    build_request_context,
    current_user_email,
    require_directory_id,
    require_privileged,
    require_user,
)
from directory_hub.services import authorization, directory_service
from directory_hub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

directory_bp = Blueprint("directories", __name__, url_prefix="/api/v1")
register_error_handlers(directory_bp)


@directory_bp.errorhandler(SheetSyncError)
def _handle_sheet_error(error: SheetSyncError):
    logger.warning("Sheet call failed endpoint=%s: %s", request.endpoint, error)
    return api_error(E.INTERNAL, "Spreadsheet request failed", status=502)


# ═════════════════════════════════════════════════════════════════════════
# Directories
# ═════════════════════════════════════════════════════════════════════════


@directory_bp.route("/directories", methods=["GET"])
def list_directories():
    """List all directories, or only the caller's with ?mine=1."""
    if request.args.get("mine") in ("1", "true"):
        return jsonify({"items": directory_service.list_directories_for_user(require_user())}), 200
    return jsonify({"items": directory_service.list_directories()}), 200


@directory_bp.route("/directories", methods=["POST"])
def create_directory():
    """Create a directory (platform admins only).

    Body: { directory_id, name, description?, owner_email? }
    owner_email defaults to the calling admin.
    Returns: directory dict (201).
    """
    caller = _require_platform_admin()
    data = request.get_json(silent=True) or {}
    directory = directory_service.create_directory(
        directory_id=data.get("directory_id") or data.get("id") or "",
        name=data.get("name") or "",
        owner_email=data.get("owner_email") or caller,
        description=data.get("description") or "",
    )
    return jsonify(directory), 201


@directory_bp.route("/directories/<directory_id>", methods=["GET"])
def get_directory(directory_id):
    return jsonify(directory_service.get_directory(directory_id)), 200


@directory_bp.route("/directories/<directory_id>", methods=["DELETE"])
def delete_directory(directory_id):
    directory_service.get_directory_model(directory_id)
    require_privileged(build_request_context(directory_id))
    directory_service.delete_directory(directory_id)
    return jsonify({"deleted": directory_id}), 200


# ═════════════════════════════════════════════════════════════════════════
# Schema & data
# ═════════════════════════════════════════════════════════════════════════


@directory_bp.route("/directories/<directory_id>/columns", methods=["GET"])
def get_columns(directory_id):
    directory_service.get_directory_model(directory_id)
    return jsonify({"columns": directory_service.get_column_names(directory_id)}), 200


@directory_bp.route("/directories/<directory_id>/import", methods=["POST"])
def import_rows(directory_id):
    """Replace schema and rows with spreadsheet-shaped data.

    Body: { header: [..], rows: [[..], ..] }
    """
    directory_service.get_directory_model(directory_id)
    require_privileged(build_request_context(directory_id))
    data = request.get_json(silent=True) or {}
    header = data.get("header")
    rows = data.get("rows") or []
    if not isinstance(header, list) or not isinstance(rows, list):
        raise ValidationError("header and rows must be lists")
    return jsonify(directory_service.import_rows(directory_id, header, rows)), 200


@directory_bp.route("/directories/<directory_id>/sync", methods=["POST"])
def sync_from_sheet(directory_id):
    directory_service.get_directory_model(directory_id)
    require_privileged(build_request_context(directory_id))
    return jsonify(directory_service.sync_from_sheet(directory_id)), 200


@directory_bp.route("/directories/<directory_id>/sheet", methods=["POST"])
def connect_sheet(directory_id):
    """Attach a backing spreadsheet.

    Body: { sheet_url, token: {access_token, refresh_token?, expiry?}, sheet_gid? }
    Returns: connection dict without credentials.
    """
    directory_service.get_directory_model(directory_id)
    ctx = require_privileged(build_request_context(directory_id))
    data = request.get_json(silent=True) or {}
    token = data.get("token")
    if not token:
        raise ValidationError("token is required")
    conn = directory_service.connect_sheet(
        directory_id,
        data.get("sheet_url") or "",
        token,
        connected_by=ctx.user_email,
        sheet_gid=int(data.get("sheet_gid") or 0),
    )
    return jsonify(conn), 200


# ═════════════════════════════════════════════════════════════════════════
# Owners & admins
# ═════════════════════════════════════════════════════════════════════════


@directory_bp.route("/directories/<directory_id>/owners", methods=["POST"])
def add_owner(directory_id):
    directory_service.get_directory_model(directory_id)
    require_privileged(build_request_context(directory_id))
    data = request.get_json(silent=True) or {}
    owner = directory_service.add_directory_owner(
        directory_id, data.get("email") or "", data.get("role") or "owner"
    )
    return jsonify(owner), 201


@directory_bp.route("/directories/<directory_id>/owners/<email>", methods=["DELETE"])
def remove_owner(directory_id, email):
    directory_service.get_directory_model(directory_id)
    require_privileged(build_request_context(directory_id))
    directory_service.remove_directory_owner(directory_id, email)
    return jsonify({"removed": email}), 200


def _require_platform_admin() -> str:
    email = require_user()
    if not authorization.is_admin(email):
        logger.warning("Admin-only endpoint refused user=%s path=%s", email, request.path)
        raise AuthorizationError("platform admin required")
    return email


@directory_bp.route("/admins", methods=["POST"])
def add_admin():
    _require_platform_admin()
    data = request.get_json(silent=True) or {}
    directory_service.add_admin(data.get("email") or "")
    return jsonify({"added": data.get("email")}), 201


@directory_bp.route("/admins/<email>", methods=["DELETE"])
def remove_admin(email):
    _require_platform_admin()
    directory_service.remove_admin(email)
    return jsonify({"removed": email}), 200


@directory_bp.route("/user-type", methods=["GET"])
def user_type():
    """Collapsed role of the caller: owner (admins included), moderator or none."""
    directory_id = require_directory_id()
    role = authorization.get_user_type(current_user_email(), directory_id)
    return jsonify({"directory_id": directory_id, "user_type": role.value}), 200
