"""
Request routing endpoints: submission, detail, lifecycle transitions,
resubmission, filing, requester edits, document attachment.

9 endpoints:
  - GET/POST           /requests                 — list, submit
  - GET/PUT/DELETE     /requests/<id>            — detail, requester edit, delete
  - POST               /requests/<id>/transition
  - POST               /requests/<id>/resubmit
  - POST               /requests/<id>/file
  - POST               /requests/<id>/documents

The acting user is identified by ``actor_id`` in the body (or query string
for reads). Service layer owns all business logic and persistence.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from edms.blueprints import get_repositories, paginate_list, routing_options
from edms.core.exceptions import ConflictError, NotFoundError, ValidationError
from edms.services.permission import PermissionDenied, has_permission
from edms.services.request_lifecycle import (
    TransitionError,
    add_documents,
    delete_request,
    edit_request,
    file_request,
    resubmit_request,
    submit_request,
    transition_request,
)
from edms.services.retention import RetentionInfo, compute_disposal, disposal_summary
from edms.services.stage_engine import (
    STAGE_VALUES,
    available_actions,
    can_delete_request,
    can_file_request,
    can_requester_edit,
    can_transition,
    format_stage_label,
    originator_archive_only,
)
from edms.utils.errors import E, api_error
from edms.utils.helpers import parse_date_input, parse_version

logger = logging.getLogger(__name__)

requests_bp = Blueprint("requests", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@requests_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@requests_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)


@requests_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error),
                     details={"expected_version": error.expected, "current_version": error.actual})


@requests_bp.errorhandler(TransitionError)
def _handle_transition(error: TransitionError):
    return api_error(E.VALIDATION_INVALID, str(error))


@requests_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


@requests_bp.errorhandler(SQLAlchemyError)
def _handle_database(error: SQLAlchemyError):
    logger.exception("Database error in requests endpoint=%s", request.endpoint)
    return api_error(E.DATABASE, "Database error")


# ── Serialization ─────────────────────────────────────────────────────────────


def _serialize(record, actor_id=None) -> dict:
    """Request dict plus derived routing and disposal fields."""
    body = record.to_dict()
    body["stage_label"] = format_stage_label(record)
    body["available_actions"] = available_actions(record)
    if record.has_retention:
        body["disposal"] = compute_disposal(RetentionInfo.from_request(record)).to_dict()
        body["disposal_summary"] = disposal_summary(record)
    else:
        body["disposal"] = None

    if actor_id:
        _, users = get_repositories()
        actor = users.get(actor_id)
        originator = users.get(record.uploaded_by_id)
        body["permissions"] = {
            "can_edit": can_requester_edit(record, actor_id),
            "can_delete": can_delete_request(record, actor_id),
            "can_file": (
                can_file_request(record, actor_id)
                and actor is not None
                and has_permission(actor, record, "file", originator)
            ),
            "archive_only": originator_archive_only(record, actor_id),
            "actions": [a for a in body["available_actions"]
                        if can_transition(record, actor, a, originator)],
        }
    return body


def _retention_payload(data: dict):
    """Retention fields from either a nested ``retention`` object or the top level."""
    if "retention" in data:
        return data.get("retention")
    if "ssic" in data:
        return data
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════════════


@requests_bp.route("/requests", methods=["GET"])
def list_requests():
    """List requests with filters and pagination."""
    repo, _ = get_repositories()

    stage = request.args.get("stage")
    if stage and stage not in STAGE_VALUES:
        return api_error(E.VALIDATION_INVALID, f"Unknown stage: {stage}")

    records = repo.list(
        unit_uic=request.args.get("unit_uic") or None,
        stage=stage or None,
        uploaded_by_id=request.args.get("uploaded_by_id") or None,
    )
    page, total = paginate_list(records)
    actor_id = request.args.get("actor_id")
    return jsonify({"items": [_serialize(r, actor_id) for r in page], "total": total})


@requests_bp.route("/requests", methods=["POST"])
def create_request():
    """Submit a new request; the entry stage is chosen from the submitter's roster scope."""
    data = request.get_json(silent=True) or {}
    actor_id = data.get("actor_id")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    if not (data.get("subject") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "subject is required")

    try:
        due_date = parse_date_input(data.get("due_date"))
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))

    repo, users = get_repositories()
    record = submit_request(
        repo, users,
        actor_id=actor_id,
        subject=data["subject"],
        notes=data.get("notes"),
        due_date=due_date,
        document_ids=data.get("document_ids") or (),
        retention=_retention_payload(data),
        comment=data.get("comment"),
        **routing_options(),
    )
    return jsonify(_serialize(record, actor_id)), 201


@requests_bp.route("/requests/<request_id>", methods=["GET"])
def get_request(request_id):
    """Request detail with available actions, stage label and disposal."""
    repo, _ = get_repositories()
    record = repo.get(request_id)
    if record is None:
        return api_error(E.NOT_FOUND, "Request not found")
    return jsonify(_serialize(record, request.args.get("actor_id")))


@requests_bp.route("/requests/<request_id>", methods=["PUT"])
def update_request(request_id):
    """Requester edit of subject, notes, due date or retention."""
    data = request.get_json(silent=True) or {}
    actor_id = data.get("actor_id")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    changes = {k: data[k] for k in ("subject", "notes") if k in data}
    try:
        if "due_date" in data:
            changes["due_date"] = parse_date_input(data.get("due_date"))
        version = parse_version(data)
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))
    if "retention" in data:
        changes["retention"] = data.get("retention")

    repo, users = get_repositories()
    record = edit_request(
        repo, users, request_id, actor_id, changes,
        expected_version=version, **routing_options(),
    )
    return jsonify(_serialize(record, actor_id))


@requests_bp.route("/requests/<request_id>", methods=["DELETE"])
def remove_request(request_id):
    """Delete a request (owner only, before commander approval)."""
    data = request.get_json(silent=True) or {}
    actor_id = data.get("actor_id") or request.args.get("actor_id")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    repo, users = get_repositories()
    delete_request(repo, users, request_id, actor_id)
    return jsonify({"deleted": True, "request_id": request_id})


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


@requests_bp.route("/requests/<request_id>/transition", methods=["POST"])
def transition_request_endpoint(request_id):
    """Execute a request routing transition."""
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    actor_id = data.get("actor_id")

    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    try:
        version = parse_version(data)
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))

    repo, users = get_repositories()
    result = transition_request(
        repo, users, request_id, action, actor_id,
        comment=data.get("comment"),
        route_section=data.get("route_section"),
        installation_id=data.get("installation_id"),
        external_unit_uic=data.get("external_unit_uic"),
        external_unit_name=data.get("external_unit_name"),
        expected_version=version,
        intent_key=data.get("intent_key"),
        command_sections=current_app.config.get("COMMAND_SECTIONS", ()),
        **routing_options(),
    )
    result["request"] = _serialize(result["request"], actor_id)
    return jsonify(result)


@requests_bp.route("/requests/<request_id>/resubmit", methods=["POST"])
def resubmit_request_endpoint(request_id):
    """Send a returned request back into review."""
    data = request.get_json(silent=True) or {}
    actor_id = data.get("actor_id")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    try:
        version = parse_version(data)
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))

    repo, users = get_repositories()
    result = resubmit_request(
        repo, users, request_id, actor_id,
        comment=data.get("comment"),
        expected_version=version,
        intent_key=data.get("intent_key"),
        **routing_options(),
    )
    result["request"] = _serialize(result["request"], actor_id)
    return jsonify(result)


@requests_bp.route("/requests/<request_id>/file", methods=["POST"])
def file_request_endpoint(request_id):
    """File a commander-cleared request for records management."""
    data = request.get_json(silent=True) or {}
    actor_id = data.get("actor_id")
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    try:
        version = parse_version(data)
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))

    repo, users = get_repositories()
    result = file_request(
        repo, users, request_id, actor_id,
        retention=data.get("retention"),
        comment=data.get("comment"),
        expected_version=version,
        intent_key=data.get("intent_key"),
        **routing_options(),
    )
    result["request"] = _serialize(result["request"], actor_id)
    result["disposal"] = result["disposal"].to_dict()
    return jsonify(result)


@requests_bp.route("/requests/<request_id>/documents", methods=["POST"])
def add_documents_endpoint(request_id):
    """Attach document ids to a request, preserving attachment order."""
    data = request.get_json(silent=True) or {}
    actor_id = data.get("actor_id")
    document_ids = data.get("document_ids")

    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    if not isinstance(document_ids, list) or not document_ids:
        return api_error(E.VALIDATION_REQUIRED, "document_ids must be a non-empty list")
    try:
        version = parse_version(data)
    except ValueError as e:
        return api_error(E.VALIDATION_INVALID, str(e))

    repo, users = get_repositories()
    record = add_documents(
        repo, users, request_id, actor_id, document_ids,
        expected_version=version, **routing_options(),
    )
    return jsonify(_serialize(record, actor_id))
