"""
Stage Engine — request routing lifecycle.

Stages (linear chain plus side branches):

    ORIGINATOR_REVIEW ← PLATOON_REVIEW → COMPANY_REVIEW → BATTALION_REVIEW
                                                          ⇅
                                                   COMMANDER_REVIEW
    BATTALION/COMMANDER → INSTALLATION_REVIEW | HQMC_REVIEW | EXTERNAL_REVIEW
    BATTALION_REVIEW → ARCHIVED

Every legal move is listed in REQUEST_TRANSITIONS. Commander decisions
(approve / endorse / reject) always land back at BATTALION_REVIEW in the
battalion section that last held the request; battalion staff then decide
what happens next.

Everything in this module is pure: functions take a RequestRecord and
return values or new RequestRecords. Persistence and authority checks live
in request_lifecycle / permission.

Usage:
    from edms.services.stage_engine import apply_transition, validate_transition

    check = validate_transition(request, "approve")
    if check["valid"]:
        request = apply_transition(
            request, actor, check["to"], "Approved",
            kind="approve", now=datetime.now(timezone.utc),
        )
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum

from edms.core.domain import ActivityEntry, RequestRecord, RoutingChange, UserRecord


class Stage(str, Enum):
    ORIGINATOR_REVIEW = "ORIGINATOR_REVIEW"
    PLATOON_REVIEW = "PLATOON_REVIEW"
    COMPANY_REVIEW = "COMPANY_REVIEW"
    BATTALION_REVIEW = "BATTALION_REVIEW"
    COMMANDER_REVIEW = "COMMANDER_REVIEW"
    INSTALLATION_REVIEW = "INSTALLATION_REVIEW"
    HQMC_REVIEW = "HQMC_REVIEW"
    EXTERNAL_REVIEW = "EXTERNAL_REVIEW"
    ARCHIVED = "ARCHIVED"


STAGE_VALUES = frozenset(s.value for s in Stage)

LINEAR_STAGES = [
    Stage.PLATOON_REVIEW.value,
    Stage.COMPANY_REVIEW.value,
    Stage.BATTALION_REVIEW.value,
    Stage.COMMANDER_REVIEW.value,
    Stage.ARCHIVED.value,
]

_P = Stage.PLATOON_REVIEW.value
_C = Stage.COMPANY_REVIEW.value
_B = Stage.BATTALION_REVIEW.value
_CMD = Stage.COMMANDER_REVIEW.value
_INST = Stage.INSTALLATION_REVIEW.value
_HQMC = Stage.HQMC_REVIEW.value
_EXT = Stage.EXTERNAL_REVIEW.value
_ORIG = Stage.ORIGINATOR_REVIEW.value
_ARCH = Stage.ARCHIVED.value

# "to": None means the target depends on the request (see target_stage).
REQUEST_TRANSITIONS = {
    "approve": {"from": [_P, _C], "to": None},
    "return": {"from": [_P, _C, _B, _CMD], "to": None},
    "route_section": {"from": [_B, _CMD, _INST, _HQMC], "to": None},
    "forward_to_commander": {"from": [_B], "to": _CMD},
    "commander_approve": {"from": [_CMD], "to": _B},
    "commander_endorse": {"from": [_CMD], "to": _B},
    "commander_reject": {"from": [_CMD], "to": _B},
    "route_to_installation": {"from": [_B, _CMD], "to": _INST},
    "route_to_hqmc": {"from": [_B, _CMD, _INST], "to": _HQMC},
    "send_external": {"from": [_B, _CMD], "to": _EXT},
    "return_to_unit": {"from": [_INST, _HQMC, _EXT], "to": _B},
    "return_to_lower": {"from": [_B, _C, _INST], "to": None},
    "archive": {"from": [_B, _ORIG], "to": _ARCH},
    "resubmit": {"from": [_ORIG], "to": None},
}

COMMANDER_DECISIONS = {
    "commander_approve": "Approved",
    "commander_endorse": "Endorsed",
    "commander_reject": "Rejected",
}

# Post-approval push-down targets
RETURN_TARGETS = {
    _B: _C,
    _C: _P,
    _INST: _ORIG,
}

RETURN_KINDS = frozenset({"return", "return_to_lower"})


# ── Linear chain ─────────────────────────────────────────────────────────


def next_stage(stage) -> str:
    """Next stage in the linear chain; ARCHIVED stays ARCHIVED."""
    stage = getattr(stage, "value", stage) or _P
    if stage not in LINEAR_STAGES:
        return _P
    idx = LINEAR_STAGES.index(stage)
    return LINEAR_STAGES[min(idx + 1, len(LINEAR_STAGES) - 1)]


def prev_stage(stage) -> str:
    """Previous stage in the linear chain; PLATOON_REVIEW stays put."""
    stage = getattr(stage, "value", stage) or _P
    if stage not in LINEAR_STAGES:
        return _P
    idx = LINEAR_STAGES.index(stage)
    return LINEAR_STAGES[max(idx - 1, 0)]


# ── Activity inspection ──────────────────────────────────────────────────


def last_activity(request: RequestRecord) -> ActivityEntry | None:
    return request.activity[-1] if request.activity else None


def _has_kind(request: RequestRecord, kind: str) -> bool:
    return any(entry.kind == kind for entry in request.activity)


def is_returned(request: RequestRecord) -> bool:
    """The most recent move sent the request back down the chain."""
    entry = last_activity(request)
    return entry is not None and entry.kind in RETURN_KINDS


def is_commander_approved(request: RequestRecord) -> bool:
    return request.commander_approval_date is not None or _has_kind(request, "commander_approve")


def is_commander_endorsed(request: RequestRecord) -> bool:
    return _has_kind(request, "commander_endorse")


def has_commander_clearance(request: RequestRecord) -> bool:
    """Commander has approved or endorsed the request."""
    return is_commander_approved(request) or is_commander_endorsed(request)


def find_intent(request: RequestRecord, intent_key: str | None) -> ActivityEntry | None:
    """Return the activity entry recorded under ``intent_key``, if any."""
    if not intent_key:
        return None
    for entry in request.activity:
        if entry.intent_key == intent_key:
            return entry
    return None


def last_battalion_section(
    request: RequestRecord,
    command_sections: Iterable[str] = (),
) -> str | None:
    """The battalion section that most recently held this request.

    Scans the activity log backwards for a move into or out of
    BATTALION_REVIEW and returns the section on the battalion side of it.
    Command-section names are skipped.
    """
    skip = {s for s in command_sections if s}
    for entry in reversed(request.activity):
        if entry.to_stage == _B and entry.to_section and entry.to_section not in skip:
            return entry.to_section
        if entry.from_stage == _B and entry.from_section and entry.from_section not in skip:
            return entry.from_section
    if request.current_stage == _B and request.route_section and request.route_section not in skip:
        return request.route_section
    return None


# ── Predicates ───────────────────────────────────────────────────────────


def _is_owner(request: RequestRecord, actor_id) -> bool:
    return bool(actor_id) and str(request.uploaded_by_id or "") == str(actor_id)


def can_requester_edit(request: RequestRecord, actor_id) -> bool:
    """Owner may edit while the request is still in unit review, or after it was returned."""
    if not _is_owner(request, actor_id):
        return False
    if request.filed_at is not None or has_commander_clearance(request):
        return False
    if request.current_stage in (_P, _C, _B):
        return True
    return request.current_stage == _ORIG and is_returned(request)


def can_delete_request(request: RequestRecord, actor_id) -> bool:
    return (
        _is_owner(request, actor_id)
        and request.filed_at is None
        and not has_commander_clearance(request)
    )


def can_file_request(request: RequestRecord, actor_id) -> bool:
    """Filing opens at any echelon once the commander cleared the request, and only once.

    Which actors may file is decided by the permission service.
    """
    if not actor_id:
        return False
    return has_commander_clearance(request) and request.filed_at is None


def can_return_to_lower_level(request: RequestRecord) -> bool:
    return (
        request.current_stage in RETURN_TARGETS
        and has_commander_clearance(request)
        and request.filed_at is None
    )


def get_return_target_stage(stage) -> str | None:
    return RETURN_TARGETS.get(getattr(stage, "value", stage))


def originator_archive_only(request: RequestRecord, actor_id) -> bool:
    """Owner holds a cleared request at ORIGINATOR_REVIEW: archiving is all that is left."""
    return (
        _is_owner(request, actor_id)
        and request.current_stage == _ORIG
        and has_commander_clearance(request)
    )


# ── Transition table ─────────────────────────────────────────────────────


def target_stage(request: RequestRecord, action: str) -> str | None:
    """Resolve the destination stage of ``action`` for this request.

    Returns None for resubmit, whose entry stage is picked by the
    reviewer resolver.
    """
    rule = REQUEST_TRANSITIONS.get(action)
    if not rule:
        return None
    if rule["to"] is not None:
        return rule["to"]
    current = request.current_stage
    if action == "approve":
        return next_stage(current)
    if action == "return":
        return _ORIG if current == _P else prev_stage(current)
    if action == "route_section":
        return current
    if action == "return_to_lower":
        return get_return_target_stage(current)
    return None


def _guard(request: RequestRecord, action: str) -> str | None:
    """Extra preconditions beyond the from-stage list. Returns a reason or None."""
    if request.filed_at is not None and action != "archive":
        return "request has already been filed"
    if action == "return_to_lower" and not can_return_to_lower_level(request):
        return "requires commander approval"
    if action == "archive" and not has_commander_clearance(request):
        return "requires commander approval or endorsement"
    if action == "resubmit" and has_commander_clearance(request):
        return "request was cleared by the commander; it can only be archived"
    return None


def validate_transition(request: RequestRecord, action: str) -> dict:
    """Validate whether an action is valid for the request's current stage."""
    current = request.current_stage
    rule = REQUEST_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}

    to = target_stage(request, action)
    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": to,
                "reason": f"Cannot '{action}' from stage '{current}'"}

    reason = _guard(request, action)
    if reason:
        return {"valid": False, "from": current, "to": to, "reason": reason}

    return {"valid": True, "from": current, "to": to, "reason": None}


def available_actions(request: RequestRecord) -> list[str]:
    """Get list of valid actions for a request's current stage."""
    return [action for action in REQUEST_TRANSITIONS
            if validate_transition(request, action)["valid"]]


def can_transition(
    request: RequestRecord,
    actor: UserRecord | None,
    action: str,
    originator: UserRecord | None = None,
) -> bool:
    """Stage precondition and actor authority, as a single boolean."""
    from edms.services.permission import has_permission  # lazy import: avoid circular

    if actor is None:
        return False
    if not validate_transition(request, action)["valid"]:
        return False
    return has_permission(actor, request, action, originator)


# ── Applying a move ──────────────────────────────────────────────────────


def describe_action(
    request: RequestRecord,
    action: str,
    to_stage: str | None,
    routing: RoutingChange | None = None,
) -> str:
    """Human-readable activity line for a transition."""
    section = routing.to_section if routing else None
    if action == "approve":
        return f"Approved and routed to {format_stage_label(request.evolve(current_stage=to_stage, route_section=section))}"
    if action == "return":
        if to_stage == _ORIG:
            return "Returned to originator for revision"
        return "Returned to previous stage"
    if action == "route_section":
        if request.current_stage == _B:
            return f"Battalion assigned request to section {section}"
        if request.current_stage == _INST:
            return f"Routed to installation section: {section}"
        if request.current_stage == _HQMC:
            return f"Routed to HQMC section: {section}"
        return f"Routed to command section: {section}"
    if action == "forward_to_commander":
        return f"Approved and routed to {section}" if section else "Approved to COMMANDER"
    if action in COMMANDER_DECISIONS:
        decision = COMMANDER_DECISIONS[action]
        if action == "commander_reject":
            return f"{decision} by Commander - requires action"
        return f"{decision} by Commander"
    if action == "route_to_installation":
        return f"Sent to installation section: {section}" if section else "Sent to Installation Commander"
    if action == "route_to_hqmc":
        return f"Sent to HQMC: {section}" if section else "Sent to HQMC"
    if action == "send_external":
        return f"Endorsed to {request.external_pending_unit_name or request.external_pending_unit_uic or 'external unit'}"
    if action == "return_to_unit":
        return "Returned to unit for corrections"
    if action == "return_to_lower":
        return f"Returned to {format_stage_label(request.evolve(current_stage=to_stage, route_section=None))} for filing"
    if action == "archive":
        return "Archived"
    if action == "resubmit":
        return "Resubmitted"
    return action


def apply_transition(
    request: RequestRecord,
    actor: UserRecord,
    new_stage,
    action_label: str,
    comment: str | None = None,
    routing: RoutingChange | None = None,
    *,
    kind: str,
    now: datetime | None = None,
    intent_key: str | None = None,
) -> RequestRecord:
    """Return a copy of ``request`` moved to ``new_stage`` with one activity entry appended.

    ``routing`` replaces route_section and records the section move on the
    entry; without it route_section is left as is. The first commander
    approval stamps commander_approval_date.
    """
    now = now or datetime.now(timezone.utc)
    new_stage = getattr(new_stage, "value", new_stage)
    note = (comment or "").strip() or None

    from_section = to_section = None
    changes: dict = {"current_stage": new_stage}
    if routing is not None:
        from_section = routing.from_section if routing.from_section is not None else request.route_section
        to_section = routing.to_section
        changes["route_section"] = to_section

    entry = ActivityEntry(
        actor=actor.display_name,
        actor_id=actor.id,
        actor_role=actor.role,
        timestamp=now,
        action=action_label,
        kind=kind,
        comment=note,
        from_section=from_section,
        to_section=to_section,
        from_stage=request.current_stage,
        to_stage=new_stage,
        intent_key=intent_key,
    )
    changes["activity"] = request.activity + (entry,)

    if kind == "commander_approve" and request.commander_approval_date is None:
        changes["commander_approval_date"] = now

    return request.evolve(**changes)


def format_stage_label(request: RequestRecord) -> str:
    """Short display label for where the request currently sits."""
    s = request.current_stage or _P
    if s == _P:
        return "Platoon"
    if s == _C:
        return "Company"
    if s == _B:
        return request.route_section or "Battalion"
    if s == _CMD:
        return request.route_section or "Commander"
    if s == _INST:
        return f"Installation - {request.route_section}" if request.route_section else "Installation Commander"
    if s == _HQMC:
        return f"HQMC - {request.route_section}" if request.route_section else "HQMC"
    if s == _EXT:
        return request.external_pending_unit_name or "External"
    if s == _ORIG:
        return "Originator"
    if s == _ARCH:
        return "Archived"
    return s
