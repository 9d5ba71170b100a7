"""
Domain value types for the request routing core.

These are plain immutable values. The stage engine, reviewer resolver and
retention calculator operate only on them; repositories translate between
these values and whatever backing store holds them.

Usage:
    from edms.core.domain import ActivityEntry, RequestRecord, UserRecord
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum


class Role(str, Enum):
    MEMBER = "MEMBER"
    PLATOON_REVIEWER = "PLATOON_REVIEWER"
    COMPANY_REVIEWER = "COMPANY_REVIEWER"
    COMMANDER = "COMMANDER"


RETENTION_FIELDS = (
    "ssic",
    "ssic_nomenclature",
    "ssic_bucket",
    "ssic_bucket_title",
    "is_permanent",
    "retention_value",
    "retention_unit",
    "cutoff_trigger",
    "cutoff_description",
    "disposal_action",
)


def _iso(value):
    return value.isoformat() if value else None


@dataclass(frozen=True)
class UserRecord:
    """A roster entry. Org-scope fields are already normalized (None, never "N/A")."""

    id: str
    role: str = Role.MEMBER.value
    unit_uic: str | None = None
    company: str | None = None
    platoon: str | None = None
    role_company: str | None = None
    role_platoon: str | None = None
    is_command_staff: bool = False
    is_unit_admin: bool = False
    rank: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    mi: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        """Activity-log actor name: "Rank Last, First MI"."""
        if self.last_name and self.first_name:
            name = f"{self.rank or ''} {self.last_name}, {self.first_name}"
            if self.mi:
                name += f" {self.mi}"
            return name.strip()
        return self.email or self.id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "unit_uic": self.unit_uic,
            "company": self.company,
            "platoon": self.platoon,
            "role_company": self.role_company,
            "role_platoon": self.role_platoon,
            "is_command_staff": self.is_command_staff,
            "is_unit_admin": self.is_unit_admin,
            "rank": self.rank,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "mi": self.mi,
            "email": self.email,
            "display_name": self.display_name,
        }


@dataclass(frozen=True)
class ActivityEntry:
    """One audit-trail line. ``kind`` is the transition action that produced it."""

    actor: str
    timestamp: datetime
    action: str
    kind: str
    actor_id: str | None = None
    actor_role: str | None = None
    comment: str | None = None
    from_section: str | None = None
    to_section: str | None = None
    from_stage: str | None = None
    to_stage: str | None = None
    intent_key: str | None = None

    def to_dict(self) -> dict:
        return {
            "actor": self.actor,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "timestamp": _iso(self.timestamp),
            "action": self.action,
            "kind": self.kind,
            "comment": self.comment,
            "from_section": self.from_section,
            "to_section": self.to_section,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
        }


@dataclass(frozen=True)
class RoutingChange:
    """Section move carried by a transition. ``from_section`` defaults to the current one."""

    to_section: str | None
    from_section: str | None = None


@dataclass(frozen=True)
class RequestRecord:
    id: str
    subject: str
    uploaded_by_id: str
    current_stage: str
    created_at: datetime
    unit_uic: str | None = None
    notes: str | None = None
    due_date: date | None = None
    route_section: str | None = None
    document_ids: tuple[str, ...] = ()
    activity: tuple[ActivityEntry, ...] = ()
    filed_at: datetime | None = None
    final_status: str | None = None
    commander_approval_date: datetime | None = None
    installation_id: str | None = None
    external_pending_unit_uic: str | None = None
    external_pending_unit_name: str | None = None
    # Retention (all-or-none)
    ssic: str | None = None
    ssic_nomenclature: str | None = None
    ssic_bucket: str | None = None
    ssic_bucket_title: str | None = None
    is_permanent: bool | None = None
    retention_value: int | None = None
    retention_unit: str | None = None
    cutoff_trigger: str | None = None
    cutoff_description: str | None = None
    disposal_action: str | None = None
    version: int = 0

    @property
    def has_retention(self) -> bool:
        return any(getattr(self, name) is not None for name in RETENTION_FIELDS)

    def evolve(self, **changes) -> "RequestRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject": self.subject,
            "notes": self.notes,
            "due_date": _iso(self.due_date),
            "unit_uic": self.unit_uic,
            "uploaded_by_id": self.uploaded_by_id,
            "current_stage": self.current_stage,
            "route_section": self.route_section,
            "document_ids": list(self.document_ids),
            "activity": [a.to_dict() for a in self.activity],
            "created_at": _iso(self.created_at),
            "filed_at": _iso(self.filed_at),
            "final_status": self.final_status,
            "commander_approval_date": _iso(self.commander_approval_date),
            "installation_id": self.installation_id,
            "external_pending_unit_uic": self.external_pending_unit_uic,
            "external_pending_unit_name": self.external_pending_unit_name,
            "retention": {name: getattr(self, name) for name in RETENTION_FIELDS}
            if self.has_retention else None,
            "version": self.version,
        }
