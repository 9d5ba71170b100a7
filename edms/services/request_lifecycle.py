"""
Request Lifecycle Service

Runs request routing actions against a RequestRepository:
  - Submission (entry stage picked by the reviewer resolver)
  - Stage transitions (validated by the stage engine, authorized by permission)
  - Resubmission after a return to the originator
  - Records filing (retention clock starts at filed_at)
  - Requester edits, deletion and document attachment

Writes are retried on transient database errors. A transition carrying an
``intent_key`` that is already in the activity log is not applied twice: the
stored request is returned unchanged.

Usage:
    from edms.services.request_lifecycle import transition_request

    result = transition_request(
        repo, users,
        request_id="a1b2",
        action="commander_approve",
        actor_id="cmdr-1",
        comment="Concur",
        intent_key="a1b2:commander_approve:1",
    )
"""

import logging
import uuid
from datetime import UTC, date, datetime

from sqlalchemy.exc import OperationalError

from edms.core.domain import RETENTION_FIELDS, RequestRecord, RoutingChange
from edms.core.exceptions import ConflictError, NotFoundError, ValidationError
from edms.services.permission import PermissionDenied, check_permission, get_actor_permissions
from edms.services.retention import RetentionInfo, compute_disposal
from edms.services.reviewer_resolver import is_in_scope, resolve_initial_stage
from edms.services.stage_engine import (
    COMMANDER_DECISIONS,
    Stage,
    apply_transition,
    can_delete_request,
    can_file_request,
    can_requester_edit,
    describe_action,
    find_intent,
    format_stage_label,
    last_battalion_section,
    validate_transition,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

RETENTION_UNITS = {"years", "months", "days"}

EDITABLE_FIELDS = {"subject", "notes", "due_date"}

_FINAL_STATUS = {
    "commander_approve": "Approved",
    "commander_reject": "Rejected",
    "archive": "Archived",
}


class TransitionError(Exception):
    """Raised when a request transition is invalid."""

    def __init__(self, request_id: str, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' request {request_id} (stage={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.request_id = request_id
        self.action = action
        self.current_stage = current


# ── Helpers ──────────────────────────────────────────────────────────────


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _load_request(repo, request_id: str) -> RequestRecord:
    record = repo.get(request_id)
    if record is None:
        raise NotFoundError(resource="Request", resource_id=request_id)
    return record


def _load_actor(users, actor_id: str):
    actor = users.get(actor_id) if actor_id else None
    if actor is None:
        raise NotFoundError(resource="User", resource_id=actor_id)
    return actor


def _check_version(record: RequestRecord, expected_version: int | None) -> None:
    if expected_version is not None and int(expected_version) != record.version:
        raise ConflictError("Request", record.id, int(expected_version), record.version)


def extract_retention(data: dict | None) -> dict:
    """
    Validate an all-or-none retention payload and return the fields to set.

    Every field is cleared when ``data`` is empty. Otherwise ``ssic`` and
    ``is_permanent`` are required, and temporary records also need
    ``retention_value``, ``retention_unit`` and ``cutoff_trigger``.

    Raises:
        ValidationError: When the payload is partial or malformed.
    """
    if not data:
        return {name: None for name in RETENTION_FIELDS}

    errors = {}
    if not data.get("ssic"):
        errors["ssic"] = "required"
    if data.get("is_permanent") is None:
        errors["is_permanent"] = "required"

    if not data.get("is_permanent"):
        value = data.get("retention_value")
        if value is None:
            errors["retention_value"] = "required"
        else:
            try:
                if int(value) < 0:
                    errors["retention_value"] = "must be >= 0"
            except (TypeError, ValueError):
                errors["retention_value"] = "must be an integer"
        if data.get("retention_unit") not in RETENTION_UNITS:
            errors["retention_unit"] = "must be one of years, months, days"
        if not data.get("cutoff_trigger"):
            errors["cutoff_trigger"] = "required"

    if errors:
        raise ValidationError("Retention fields must be provided together", details=errors)

    fields = {name: data.get(name) for name in RETENTION_FIELDS}
    fields["is_permanent"] = bool(fields["is_permanent"])
    if fields["retention_value"] is not None:
        fields["retention_value"] = int(fields["retention_value"])
    return fields


def _persist(repo, record: RequestRecord, *, intent_key: str | None = None,
             max_retries: int = DEFAULT_MAX_RETRIES) -> RequestRecord:
    """Upsert with retry on transient database errors.

    A retry that hits a version conflict checks whether the earlier attempt
    landed after all (its intent_key is stored) and returns that copy.
    """
    attempts = max(1, int(max_retries))
    for attempt in range(1, attempts + 1):
        try:
            return repo.upsert(record)
        except OperationalError:
            if attempt >= attempts:
                logger.error("Persist failed for request %s after %d attempts", record.id, attempt)
                raise
            logger.warning(
                "Persist attempt %d/%d failed for request %s, retrying",
                attempt, attempts, record.id,
            )
        except ConflictError:
            if attempt > 1 and intent_key:
                stored = repo.get(record.id)
                if stored is not None and find_intent(stored, intent_key):
                    return stored
            raise


def _result(saved: RequestRecord, previous_stage: str, action: str, *, duplicate=False) -> dict:
    return {
        "request_id": saved.id,
        "previous_stage": previous_stage,
        "new_stage": saved.current_stage,
        "action": action,
        "duplicate": duplicate,
        "request": saved,
    }


# ── Submission ───────────────────────────────────────────────────────────


def submit_request(
    repo,
    users,
    *,
    actor_id: str,
    subject: str,
    notes: str | None = None,
    due_date: date | None = None,
    document_ids=(),
    retention: dict | None = None,
    comment: str | None = None,
    now: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> RequestRecord:
    """
    Create a request at the lowest echelon that has a reviewer for the submitter.

    Raises:
        NotFoundError, ValidationError
    """
    actor = _load_actor(users, actor_id)
    subject = (subject or "").strip()
    if not subject:
        raise ValidationError("subject is required", details={"subject": "required"})

    now = _now(now)
    stage = resolve_initial_stage(
        users.list(unit_uic=actor.unit_uic),
        actor.company,
        actor.platoon,
        actor.unit_uic,
    )

    record = RequestRecord(
        id=str(uuid.uuid4()),
        subject=subject,
        notes=notes,
        due_date=due_date,
        unit_uic=actor.unit_uic,
        uploaded_by_id=actor.id,
        current_stage=stage,
        created_at=now,
        document_ids=tuple(dict.fromkeys(str(d) for d in document_ids or ())),
        **extract_retention(retention),
    )
    record = apply_transition(record, actor, stage, "Submitted", comment, kind="submit", now=now)
    saved = _persist(repo, record, max_retries=max_retries)

    logger.info("Request %s submitted by %s at %s", saved.id, actor.id, stage)
    return saved


def resubmit_request(
    repo,
    users,
    request_id: str,
    actor_id: str,
    *,
    comment: str | None = None,
    expected_version: int | None = None,
    intent_key: str | None = None,
    now: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> dict:
    """
    Send a returned request back into review.

    The re-entry stage is picked by the reviewer resolver, so it may skip
    echelons that no longer have a reviewer.

    Raises:
        TransitionError, PermissionDenied, NotFoundError, ConflictError
    """
    record = _load_request(repo, request_id)
    if find_intent(record, intent_key):
        return _result(record, record.current_stage, "resubmit", duplicate=True)
    _check_version(record, expected_version)

    actor = _load_actor(users, actor_id)
    validation = validate_transition(record, "resubmit")
    if not validation["valid"]:
        raise TransitionError(record.id, "resubmit", record.current_stage, validation["reason"])
    check_permission(actor, record, "resubmit")

    stage = resolve_initial_stage(
        users.list(unit_uic=actor.unit_uic),
        actor.company,
        actor.platoon,
        actor.unit_uic,
    )
    label = f"Resubmitted to {format_stage_label(record.evolve(current_stage=stage, route_section=None))}"
    updated = apply_transition(
        record, actor, stage, label, comment,
        kind="resubmit", now=_now(now), intent_key=intent_key,
    )
    saved = _persist(repo, updated, intent_key=intent_key, max_retries=max_retries)

    logger.info("Request %s resubmitted by %s to %s", saved.id, actor.id, stage)
    return _result(saved, record.current_stage, "resubmit")


# ── Transitions ──────────────────────────────────────────────────────────


def transition_request(
    repo,
    users,
    request_id: str,
    action: str,
    actor_id: str,
    *,
    comment: str | None = None,
    route_section: str | None = None,
    installation_id: str | None = None,
    external_unit_uic: str | None = None,
    external_unit_name: str | None = None,
    expected_version: int | None = None,
    intent_key: str | None = None,
    command_sections=(),
    now: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> dict:
    """
    Execute a request routing transition.

    Args:
        repo: RequestRepository
        users: UserDirectory
        request_id: Request to move
        action: One of REQUEST_TRANSITIONS
        actor_id: Who is performing the action
        comment: Optional note stored on the activity entry
        route_section: Target section for section moves
        installation_id: Required for 'route_to_installation'
        external_unit_uic: Required for 'send_external'
        external_unit_name: Display name of the external unit
        expected_version: Version the caller last read; stale → ConflictError
        intent_key: De-duplication key for retried submissions of one action
        command_sections: Section names that belong to the commander's office

    Returns:
        {"request_id", "previous_stage", "new_stage", "action", "duplicate",
         "request": RequestRecord}

    Raises:
        TransitionError, PermissionDenied, NotFoundError, ConflictError
    """
    if action == "resubmit":
        return resubmit_request(
            repo, users, request_id, actor_id,
            comment=comment, expected_version=expected_version,
            intent_key=intent_key, now=now, max_retries=max_retries,
        )

    record = _load_request(repo, request_id)

    # 1. Same intent already applied
    if find_intent(record, intent_key):
        logger.info("Request %s: intent %s already applied", record.id, intent_key)
        return _result(record, record.current_stage, action, duplicate=True)

    _check_version(record, expected_version)
    actor = _load_actor(users, actor_id)
    originator = users.get(record.uploaded_by_id)

    # 2. Validate transition
    validation = validate_transition(record, action)
    if not validation["valid"]:
        raise TransitionError(record.id, action, record.current_stage, validation["reason"])

    # 3. Permission check
    check_permission(actor, record, action, originator)

    # 4. Pre-transition checks
    section = (route_section or "").strip() or None
    if action == "route_section" and not section:
        raise TransitionError(record.id, action, record.current_stage, "route_section is required")
    if action == "route_to_installation" and not installation_id:
        raise TransitionError(record.id, action, record.current_stage, "installation_id is required")
    if action == "send_external" and not external_unit_uic:
        raise TransitionError(record.id, action, record.current_stage, "external_unit_uic is required")

    # 5. Routing and side fields
    to_stage = validation["to"]
    extras: dict = {}
    routing = None

    if action in ("route_section", "forward_to_commander", "route_to_hqmc"):
        routing = RoutingChange(to_section=section)
    elif action == "approve" and to_stage == Stage.BATTALION_REVIEW.value and section:
        # Company reviewer picks the battalion section on the way up
        routing = RoutingChange(to_section=section)
    elif action in COMMANDER_DECISIONS or action == "return_to_unit":
        routing = RoutingChange(to_section=last_battalion_section(record, command_sections))
    elif action == "return" and to_stage == Stage.BATTALION_REVIEW.value:
        routing = RoutingChange(to_section=last_battalion_section(record, command_sections))
    elif action == "route_to_installation":
        routing = RoutingChange(to_section=section)
        extras["installation_id"] = installation_id
    elif action == "send_external":
        routing = RoutingChange(to_section=None)
        extras["external_pending_unit_uic"] = external_unit_uic
        extras["external_pending_unit_name"] = external_unit_name or external_unit_uic

    if action == "return_to_unit":
        extras["external_pending_unit_uic"] = None
        extras["external_pending_unit_name"] = None
    if action in _FINAL_STATUS:
        extras["final_status"] = _FINAL_STATUS[action]

    # 6. Execute transition
    staged = record.evolve(**extras) if extras else record
    label = describe_action(staged, action, to_stage, routing)
    updated = apply_transition(
        staged, actor, to_stage, label, comment, routing,
        kind=action, now=_now(now), intent_key=intent_key,
    )
    saved = _persist(repo, updated, intent_key=intent_key, max_retries=max_retries)

    logger.info(
        "Request %s: %s %s → %s by %s",
        saved.id, action, record.current_stage, saved.current_stage, actor.id,
    )
    return _result(saved, record.current_stage, action)


# ── Filing ───────────────────────────────────────────────────────────────


def file_request(
    repo,
    users,
    request_id: str,
    actor_id: str,
    *,
    retention: dict | None = None,
    comment: str | None = None,
    expected_version: int | None = None,
    intent_key: str | None = None,
    now: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> dict:
    """
    File a commander-cleared request for records management.

    ``retention`` replaces the request's retention fields when given; a
    request cannot be filed without them. Filing does not move the stage.

    Returns:
        {"request_id", "previous_stage", "new_stage", "action", "duplicate",
         "request", "disposal"}
    """
    record = _load_request(repo, request_id)
    if find_intent(record, intent_key):
        result = _result(record, record.current_stage, "file", duplicate=True)
        result["disposal"] = compute_disposal(RetentionInfo.from_request(record))
        return result
    _check_version(record, expected_version)

    actor = _load_actor(users, actor_id)
    if not can_file_request(record, actor.id):
        reason = "request has already been filed" if record.filed_at else "requires commander approval"
        raise TransitionError(record.id, "file", record.current_stage, reason)
    check_permission(actor, record, "file", users.get(record.uploaded_by_id))

    if retention:
        record = record.evolve(**extract_retention(retention))
    if not record.has_retention:
        raise ValidationError("Retention information is required to file a request",
                              details={"retention": "required"})

    now = _now(now)
    updated = apply_transition(
        record.evolve(filed_at=now, final_status="Filed"),
        actor, record.current_stage, "Filed for records management", comment,
        kind="file", now=now, intent_key=intent_key,
    )
    saved = _persist(repo, updated, intent_key=intent_key, max_retries=max_retries)
    disposal = compute_disposal(RetentionInfo.from_request(saved))

    logger.info("Request %s filed by %s (disposal %s)", saved.id, actor.id, disposal.year)
    result = _result(saved, record.current_stage, "file")
    result["disposal"] = disposal
    return result


# ── Requester operations ─────────────────────────────────────────────────


def edit_request(
    repo,
    users,
    request_id: str,
    actor_id: str,
    changes: dict,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> RequestRecord:
    """Apply a requester edit (subject, notes, due date, retention)."""
    record = _load_request(repo, request_id)
    _check_version(record, expected_version)
    actor = _load_actor(users, actor_id)

    check_permission(actor, record, "edit")
    if not can_requester_edit(record, actor.id):
        raise TransitionError(record.id, "edit", record.current_stage, "request is locked for editing")

    updates = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if "subject" in updates:
        updates["subject"] = (updates["subject"] or "").strip()
        if not updates["subject"]:
            raise ValidationError("subject is required", details={"subject": "required"})
    if "retention" in changes:
        updates.update(extract_retention(changes["retention"]))
    if not updates:
        raise ValidationError("No editable fields supplied")

    updated = apply_transition(
        record.evolve(**updates), actor, record.current_stage, "Updated request",
        kind="edit", now=_now(now),
    )
    saved = _persist(repo, updated, max_retries=max_retries)
    logger.info("Request %s edited by %s (%s)", saved.id, actor.id, ", ".join(sorted(updates)))
    return saved


def delete_request(repo, users, request_id: str, actor_id: str) -> None:
    """Delete a request; only the owner, and only before commander approval."""
    record = _load_request(repo, request_id)
    actor = _load_actor(users, actor_id)

    check_permission(actor, record, "delete")
    if not can_delete_request(record, actor.id):
        raise TransitionError(record.id, "delete", record.current_stage,
                              "request has been approved or filed")

    repo.delete(record.id)
    logger.info("Request %s deleted by %s", record.id, actor.id)


def add_documents(
    repo,
    users,
    request_id: str,
    actor_id: str,
    document_ids,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> RequestRecord:
    """
    Attach documents, keeping attachment order.

    The owner may attach while the request is editable; reviewers holding
    the request at its current stage may attach at any time.
    """
    record = _load_request(repo, request_id)
    _check_version(record, expected_version)
    actor = _load_actor(users, actor_id)

    new_ids = [d for d in dict.fromkeys(str(d) for d in document_ids or ())
               if d not in record.document_ids]
    if not new_ids:
        raise ValidationError("No new document ids supplied", details={"document_ids": "empty"})

    is_owner = str(actor.id) == str(record.uploaded_by_id)
    if is_owner:
        if not can_requester_edit(record, actor.id):
            raise TransitionError(record.id, "add_documents", record.current_stage,
                                  "request is locked for editing")
        label = f"Added {len(new_ids)} document(s)"
    else:
        originator = users.get(record.uploaded_by_id)
        if not get_actor_permissions(actor, record.current_stage) or not is_in_scope(actor, originator, record):
            raise PermissionDenied(actor.id, "add_documents", record.current_stage)
        label = f"Reviewer added {len(new_ids)} document(s)"

    updated = apply_transition(
        record.evolve(document_ids=record.document_ids + tuple(new_ids)),
        actor, record.current_stage, label, kind="add_documents", now=_now(now),
    )
    return _persist(repo, updated, max_retries=max_retries)
