"""Moderator blueprint: appointment, removal, permissions and hierarchy.

Endpoint groups:
  Moderators    GET    /api/v1/moderators?dir=<directory_id>
                POST   /api/v1/moderators
                DELETE /api/v1/moderators/<email>?dir=<directory_id>
  Permissions   GET    /api/v1/moderators/<email>/permissions?dir=<directory_id>
  Hierarchy     GET    /api/v1/moderators/<email>/hierarchy?dir=<directory_id>

``<email>`` may be ``me`` for the caller.  Permission and hierarchy reads
are open to admins, owners and the moderator themselves.
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
from directory_hub.services import directory_service, moderator_service
from directory_hub.services.authorization import Role
from directory_hub.utils.errors import register_error_handlers
from directory_hub.utils.validation import normalize_email

logger = logging.getLogger(__name__)

moderator_bp = Blueprint("moderators", __name__, url_prefix="/api/v1")
register_error_handlers(moderator_bp)


def _target_email(email: str) -> str:
    return require_user() if email == "me" else normalize_email(email)


def _self_or_privileged(directory_id: str, target: str) -> None:
    ctx = build_request_context(directory_id)
    if ctx.user_email and ctx.user_email == target:
        return
    require_privileged(ctx)


@moderator_bp.route("/moderators", methods=["GET"])
def list_moderators():
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    require_role(build_request_context(directory_id), Role.ADMIN, Role.OWNER, Role.MODERATOR)
    return jsonify({"items": moderator_service.get_moderators_by_directory(directory_id)}), 200


@moderator_bp.route("/moderators", methods=["POST"])
def appoint_moderator():
    """Appoint a moderator.

    Body: {
        directory_id, user_email, username?, auth_provider?,
        row_filter: {"scope": "all"} | {"scope": "controls", "controls": [...]},
        can_edit?, can_approve?, requires_approval?
    }
    Returns: moderator dict with its domain (201).
    """
    appointer = require_user()
    data = request.get_json(silent=True) or {}
    data.setdefault("directory_id", require_directory_id())
    req = moderator_service.AppointModeratorRequest.from_dict(data)
    moderator = moderator_service.appoint_moderator(appointer, req)
    return jsonify(moderator), 201


@moderator_bp.route("/moderators/<email>", methods=["DELETE"])
def remove_moderator(email):
    remover = require_user()
    directory_id = require_directory_id()
    directory_service.get_directory_model(directory_id)
    target = _target_email(email)
    moderator_service.remove_moderator(remover, target, directory_id)
    return jsonify({"removed": target}), 200


@moderator_bp.route("/moderators/<email>/permissions", methods=["GET"])
def moderator_permissions(email):
    directory_id = require_directory_id()
    target = _target_email(email)
    _self_or_privileged(directory_id, target)
    perms = moderator_service.get_moderator_permissions(target, directory_id)
    return jsonify({"email": target, "directory_id": directory_id, **perms.to_dict()}), 200


@moderator_bp.route("/moderators/<email>/hierarchy", methods=["GET"])
def moderator_hierarchy(email):
    directory_id = require_directory_id()
    target = _target_email(email)
    _self_or_privileged(directory_id, target)
    return jsonify({
        "parent_email": target,
        "items": moderator_service.get_moderator_hierarchy(target, directory_id),
    }), 200
