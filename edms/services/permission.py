"""
Request routing — authority checks.

Uses PERMISSION_MATRIX to decide which roles may trigger which transitions,
and STAGE_HOLDERS to decide which roles act on a request at its current
stage. Battalion-level staff (command staff, unit admins, the commander)
share the STAFF pseudo-role. Scope is checked with the reviewer resolver:
reviewers only act on requests from their own company / platoon / unit.

Usage:
    from edms.services.permission import check_permission, PermissionDenied

    # Raises PermissionDenied if not allowed
    check_permission(actor, request, "approve", originator)

    # Boolean check
    if has_permission(actor, request, "commander_approve", originator):
        ...
"""

from __future__ import annotations

from edms.core.domain import RequestRecord, Role, UserRecord
from edms.services.reviewer_resolver import is_in_scope, is_staff
from edms.services.stage_engine import Stage

STAFF = "STAFF"

PERMISSION_MATRIX = {
    Role.PLATOON_REVIEWER.value: {"approve", "return"},
    Role.COMPANY_REVIEWER.value: {"approve", "return", "return_to_lower"},
    Role.COMMANDER.value: {
        "return",
        "commander_approve",
        "commander_endorse",
        "commander_reject",
        "route_section",
        "route_to_installation",
        "route_to_hqmc",
        "send_external",
        "file",
    },
    STAFF: {
        "return",
        "route_section",
        "forward_to_commander",
        "route_to_installation",
        "route_to_hqmc",
        "send_external",
        "return_to_unit",
        "return_to_lower",
        "archive",
        "file",
    },
}

# Roles that act on a request while it sits at a stage.
STAGE_HOLDERS = {
    Stage.PLATOON_REVIEW.value: {Role.PLATOON_REVIEWER.value},
    Stage.COMPANY_REVIEW.value: {Role.COMPANY_REVIEWER.value},
    Stage.BATTALION_REVIEW.value: {STAFF},
    Stage.COMMANDER_REVIEW.value: {Role.COMMANDER.value, STAFF},
    Stage.INSTALLATION_REVIEW.value: {STAFF},
    Stage.HQMC_REVIEW.value: {STAFF},
    Stage.EXTERNAL_REVIEW.value: {STAFF},
}

# Owner-only operations (the originator acting on their own request).
OWNER_ACTIONS = frozenset({"resubmit", "edit", "delete", "add_documents"})


class PermissionDenied(Exception):
    """Raised when an actor lacks authority for an action on a request."""

    def __init__(self, user_id: str, action: str, stage: str | None = None):
        stage_msg = f" at stage {stage}" if stage else ""
        super().__init__(
            f"User {user_id} does not have permission for '{action}'{stage_msg}"
        )
        self.user_id = user_id
        self.action = action
        self.stage = stage


def get_actor_roles(actor: UserRecord) -> set[str]:
    """Role names an actor holds, including the STAFF pseudo-role."""
    roles = {str(actor.role or Role.MEMBER.value)}
    if is_staff(actor):
        roles.add(STAFF)
    return roles


def _originator_stub(request: RequestRecord) -> UserRecord:
    return UserRecord(id=request.uploaded_by_id, unit_uic=request.unit_uic)


def has_permission(
    actor: UserRecord,
    request: RequestRecord,
    action: str,
    originator: UserRecord | None = None,
) -> bool:
    """
    Check if ``actor`` may perform ``action`` on ``request``.

    Args:
        actor: The user attempting the action
        request: Request in its current state
        action: Transition action, or one of OWNER_ACTIONS
        originator: The submitter's roster entry, for scope checks. When
            missing, only unit-level scope can be established.

    Returns:
        True if the actor holds a role granting the action at this stage
        and the request is within their scope.
    """
    is_owner = str(actor.id) == str(request.uploaded_by_id)

    if action in OWNER_ACTIONS:
        return is_owner
    if action == "archive" and request.current_stage == Stage.ORIGINATOR_REVIEW.value:
        return is_owner

    originator = originator or _originator_stub(request)
    roles = get_actor_roles(actor)

    if action == "file":
        if is_owner:
            return True
        granted = {r for r in roles if action in PERMISSION_MATRIX.get(r, set())}
        return bool(granted) and is_in_scope(actor, originator, request)

    holders = STAGE_HOLDERS.get(request.current_stage, set())
    for role_name in roles & holders:
        if action not in PERMISSION_MATRIX.get(role_name, set()):
            continue
        if is_in_scope(actor, originator, request):
            return True

    return False


def check_permission(
    actor: UserRecord,
    request: RequestRecord,
    action: str,
    originator: UserRecord | None = None,
) -> None:
    """
    Assert actor has permission; raise PermissionDenied if not.

    Raises:
        PermissionDenied: If the actor lacks the required role or scope.
    """
    if not has_permission(actor, request, action, originator):
        raise PermissionDenied(actor.id, action, request.current_stage)


def get_actor_permissions(actor: UserRecord, stage: str) -> set[str]:
    """Get the union of all actions an actor's roles grant at a stage."""
    permissions: set[str] = set()
    for role_name in get_actor_roles(actor) & STAGE_HOLDERS.get(stage, set()):
        permissions.update(PERMISSION_MATRIX.get(role_name, set()))
    return permissions
