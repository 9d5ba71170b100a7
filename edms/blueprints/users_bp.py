"""
Roster endpoints — the users the reviewer resolver reads.

2 endpoints:
  - POST  /users   — create a roster entry
  - GET   /users   — list, filter by unit_uic / role
"""

import logging

from flask import Blueprint, jsonify, request

from edms.core.domain import Role
from edms.models import db
from edms.models.user import User
from edms.services.request_repository import user_from_row
from edms.services.reviewer_resolver import normalize_optional
from edms.utils.errors import E, api_error
from edms.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")

_ROLES = {r.value for r in Role}

_SCOPE_FIELDS = ("unit_uic", "company", "platoon", "role_company", "role_platoon")
_NAME_FIELDS = ("email", "rank", "first_name", "last_name", "mi")


@users_bp.route("/users", methods=["POST"])
def create_user():
    """Add a user to the roster. "N/A" scope values are stored as null."""
    data = request.get_json(silent=True) or {}

    role = (data.get("role") or Role.MEMBER.value).upper()
    if role not in _ROLES:
        return api_error(E.VALIDATION_INVALID, f"Unknown role: {role}",
                         details={"allowed": sorted(_ROLES)})
    if not normalize_optional(data.get("unit_uic")):
        return api_error(E.VALIDATION_REQUIRED, "unit_uic is required")

    user_id = data.get("id")
    if user_id and db.session.get(User, str(user_id)):
        return api_error(E.CONFLICT_DUPLICATE, f"User {user_id} already exists")

    user = User(
        role=role,
        is_command_staff=bool(data.get("is_command_staff")),
        is_unit_admin=bool(data.get("is_unit_admin")),
        **{f: normalize_optional(data.get(f)) for f in _SCOPE_FIELDS},
        **{f: (data.get(f) or None) for f in _NAME_FIELDS},
    )
    if user_id:
        user.id = str(user_id)
    db.session.add(user)

    err = db_commit_or_error()
    if err:
        return err

    logger.info("User %s added to roster (%s, %s)", user.id, user.role, user.unit_uic)
    return jsonify(user_from_row(user).to_dict()), 201


@users_bp.route("/users", methods=["GET"])
def list_users():
    """List roster entries."""
    q = User.query

    unit_uic = request.args.get("unit_uic")
    if unit_uic:
        q = q.filter_by(unit_uic=unit_uic)

    role = request.args.get("role")
    if role:
        q = q.filter_by(role=role.upper())

    users = q.order_by(User.last_name, User.id).all()
    return jsonify({"items": [user_from_row(u).to_dict() for u in users], "total": len(users)})
