"""
Reviewer Resolver — who reviews a request, and where a new request starts.

A new request enters the chain at the lowest echelon that actually has a
reviewer for the originator's scope:

    platoon reviewer exists  → PLATOON_REVIEW
    company reviewer exists  → COMPANY_REVIEW
    otherwise                → BATTALION_REVIEW

so a request never waits at a stage nobody can act on. The same rule picks
the re-entry stage when a returned request is resubmitted.

Org-scope data uses the literal "N/A" to mean "not applicable";
``normalize_string`` folds it (and blanks) to ``''`` for comparisons and
``normalize_optional`` folds it to ``None`` at the ingestion boundary.

Usage:
    from edms.services.reviewer_resolver import resolve_initial_stage

    stage = resolve_initial_stage(users, "Alpha", "1st Platoon", "M12345")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from edms.core.domain import RequestRecord, Role, UserRecord
from edms.services.stage_engine import Stage

NOT_APPLICABLE = "N/A"


@dataclass(frozen=True)
class ReviewScope:
    """Organizational scope a reviewer must cover."""

    company: str
    uic: str
    platoon: str | None = None


def normalize_string(value) -> str:
    """Return the trimmed string, or '' for None, blanks and "N/A"."""
    text = str(value).strip() if value is not None else ""
    return text if text and text != NOT_APPLICABLE else ""


def normalize_optional(value) -> str | None:
    """Like normalize_string, but absence is None."""
    return normalize_string(value) or None


def has_reviewer(users: Iterable[UserRecord], role: str, scope: ReviewScope) -> bool:
    """True iff some user holds ``role`` over exactly this scope.

    A reviewer's authorized scope (role_company / role_platoon) takes
    precedence over their own assignment (company / platoon). The unit UIC
    must match exactly.
    """
    role = getattr(role, "value", role)
    for user in users:
        if str(user.role or "") != role:
            continue
        if normalize_string(user.role_company or user.company) != scope.company:
            continue
        if role == Role.PLATOON_REVIEWER.value:
            if normalize_string(user.role_platoon or user.platoon) != (scope.platoon or ""):
                continue
        if str(user.unit_uic or "") == str(scope.uic or ""):
            return True
    return False


def resolve_initial_stage(
    users: Iterable[UserRecord],
    origin_company,
    origin_platoon,
    origin_uic,
) -> str:
    """Pick the entry stage for a request submitted from the given scope."""
    users = list(users)
    scope = ReviewScope(
        company=normalize_string(origin_company),
        platoon=normalize_string(origin_platoon),
        uic=str(origin_uic or ""),
    )
    if has_reviewer(users, Role.PLATOON_REVIEWER, scope):
        return Stage.PLATOON_REVIEW.value
    if has_reviewer(users, Role.COMPANY_REVIEWER, scope):
        return Stage.COMPANY_REVIEW.value
    return Stage.BATTALION_REVIEW.value


def is_staff(user: UserRecord | None) -> bool:
    """Battalion-level staff: command staff, unit admins and the commander."""
    if user is None:
        return False
    return bool(user.is_command_staff or user.is_unit_admin or user.role == Role.COMMANDER.value)


def is_in_scope(
    actor: UserRecord | None,
    originator: UserRecord | None,
    request: RequestRecord,
) -> bool:
    """Whether ``actor`` covers the originator's organizational scope.

    Platoon reviewers: same company, platoon and UIC.
    Company reviewers: same company and UIC.
    Staff and commander: same UIC as the request.
    """
    if actor is None or originator is None:
        return False

    actor_uic = str(actor.unit_uic or "")
    request_uic = str(request.unit_uic or originator.unit_uic or "")

    if actor.role == Role.PLATOON_REVIEWER.value:
        return (
            normalize_string(actor.role_company or actor.company) == normalize_string(originator.company)
            and normalize_string(actor.role_platoon or actor.platoon) == normalize_string(originator.platoon)
            and actor_uic == request_uic
        )

    if actor.role == Role.COMPANY_REVIEWER.value:
        return (
            normalize_string(actor.role_company or actor.company) == normalize_string(originator.company)
            and actor_uic == request_uic
        )

    if is_staff(actor):
        return actor_uic == request_uic

    return False
