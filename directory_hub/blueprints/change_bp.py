"""Pending-change blueprint: review queue and history.

Endpoint groups:
  Queue     GET  /api/v1/changes/pending?dir=<directory_id>
  History   GET  /api/v1/changes?dir=<directory_id>&status=&submitted_by=
  Detail    GET  /api/v1/changes/<change_id>
  Review    POST /api/v1/changes/<change_id>/review   { action: approve|reject, reason? }

Admins and owners see the whole queue; moderators see only the changes
they are eligible to approve.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from directory_hub.middleware.request_context import (
    build_request_context,
    require_directory_id,
    require_privileged,
    require_role,
    require_user,
)
from directory_hub.services import directory_service, pending_change_service
from directory_hub.services.authorization import Role
from directory_hub.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

change_bp = Blueprint("changes", __name__, url_prefix="/api/v1")
register_error_handlers(change_bp)


@change_bp.route("/changes/pending", methods=["GET"])
def pending_changes():
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    ctx = require_role(
        build_request_context(directory_id), Role.ADMIN, Role.OWNER, Role.MODERATOR
    )
    moderator_email = "" if ctx.is_privileged else ctx.user_email
    items = pending_change_service.get_pending_changes(directory_id, moderator_email)
    return jsonify({"items": items}), 200


@change_bp.route("/changes", methods=["GET"])
def change_history():
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    require_privileged(build_request_context(directory_id))
    items = pending_change_service.list_changes(
        directory_id,
        status=request.args.get("status") or None,
        submitted_by=request.args.get("submitted_by") or None,
    )
    return jsonify({"items": items}), 200


@change_bp.route("/changes/<int:change_id>", methods=["GET"])
def get_change(change_id):
    require_user()
    change = pending_change_service.get_change(change_id)
    ctx = build_request_context(change["directory_id"])
    if ctx.user_email != change["submitted_by"]:
        require_role(ctx, Role.ADMIN, Role.OWNER, Role.MODERATOR)
    return jsonify(change), 200


@change_bp.route("/changes/<int:change_id>/review", methods=["POST"])
def review_change(change_id):
    """Approve or reject a pending change.

    Body: { action: "approve" | "reject", reason? }
    Returns: the updated change (409 if it was already reviewed).
    """
    reviewer = require_user()
    data = request.get_json(silent=True) or {}
    change = pending_change_service.get_change(change_id)
    result = pending_change_service.review_change(
        reviewer,
        change["directory_id"],
        change_id,
        data.get("action") or "",
        data.get("reason") or "",
    )
    return jsonify(result), 200
