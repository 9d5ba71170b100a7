"""
Request repository — storage boundary for the routing core.

The stage engine never touches storage; callers load a RequestRecord from a
RequestRepository, run it through the engine and hand the result back.

Two implementations:
    - SqlAlchemyRequestRepository: Flask-SQLAlchemy rows (Request +
      append-only RequestActivity). Writes are checked against the stored
      ``version`` and raise ConflictError when the caller's copy is stale.
    - InMemoryRequestRepository: dict-backed, same contract; used by tests
      and by callers that only need the routing rules.

The matching user directories map roster rows to UserRecord values and fold
the "N/A" sentinel to None on the way in.

Usage:
    from edms.services.request_repository import SqlAlchemyRequestRepository

    repo = SqlAlchemyRequestRepository()
    record = repo.get(request_id)
    saved = repo.upsert(record.evolve(subject="New subject"))
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from edms.core.domain import ActivityEntry, RequestRecord, UserRecord
from edms.core.exceptions import ConflictError, ValidationError
from edms.models import db
from edms.models.request import Request, RequestActivity
from edms.models.user import User
from edms.services.reviewer_resolver import normalize_optional

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "subject",
    "notes",
    "due_date",
    "unit_uic",
    "uploaded_by_id",
    "current_stage",
    "route_section",
    "created_at",
    "final_status",
    "commander_approval_date",
    "installation_id",
    "external_pending_unit_uic",
    "external_pending_unit_name",
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

_ACTIVITY_FIELDS = (
    "actor",
    "actor_id",
    "actor_role",
    "timestamp",
    "action",
    "kind",
    "comment",
    "from_section",
    "to_section",
    "from_stage",
    "to_stage",
    "intent_key",
)


class RequestRepository(Protocol):
    def get(self, request_id: str) -> RequestRecord | None: ...

    def list(
        self,
        *,
        unit_uic: str | None = None,
        stage: str | None = None,
        uploaded_by_id: str | None = None,
        filed: bool | None = None,
    ) -> list[RequestRecord]: ...

    def upsert(self, request: RequestRecord) -> RequestRecord: ...

    def delete(self, request_id: str) -> bool: ...


class UserDirectory(Protocol):
    def get(self, user_id: str) -> UserRecord | None: ...

    def list(self, *, unit_uic: str | None = None) -> list[UserRecord]: ...


# ── Shared checks ────────────────────────────────────────────────────────


def _check_write(stored: RequestRecord | None, incoming: RequestRecord) -> None:
    """Version and append-only checks shared by both implementations."""
    if stored is None:
        if incoming.version != 0:
            raise ConflictError("Request", incoming.id, incoming.version, None)
        return
    if stored.version != incoming.version:
        raise ConflictError("Request", incoming.id, incoming.version, stored.version)
    if len(incoming.activity) < len(stored.activity):
        raise ValidationError("Activity log is append-only", details={"activity": "shrunk"})
    if incoming.activity[:len(stored.activity)] != stored.activity:
        raise ValidationError("Activity log is append-only", details={"activity": "rewritten"})


def _match(record: RequestRecord, unit_uic, stage, uploaded_by_id, filed) -> bool:
    if unit_uic is not None and record.unit_uic != unit_uic:
        return False
    if stage is not None and record.current_stage != stage:
        return False
    if uploaded_by_id is not None and record.uploaded_by_id != uploaded_by_id:
        return False
    if filed is not None and (record.filed_at is not None) != filed:
        return False
    return True


# ── Row mapping ──────────────────────────────────────────────────────────


def user_from_row(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        role=row.role or "MEMBER",
        unit_uic=normalize_optional(row.unit_uic),
        company=normalize_optional(row.company),
        platoon=normalize_optional(row.platoon),
        role_company=normalize_optional(row.role_company),
        role_platoon=normalize_optional(row.role_platoon),
        is_command_staff=bool(row.is_command_staff),
        is_unit_admin=bool(row.is_unit_admin),
        rank=row.rank,
        first_name=row.first_name,
        last_name=row.last_name,
        mi=row.mi,
        email=row.email,
    )


def request_from_row(row: Request) -> RequestRecord:
    activity = tuple(
        ActivityEntry(**{name: getattr(a, name) for name in _ACTIVITY_FIELDS})
        for a in row.activity
    )
    return RequestRecord(
        id=row.id,
        document_ids=tuple(row.document_ids or ()),
        activity=activity,
        filed_at=row.filed_at,
        version=row.version,
        **{name: getattr(row, name) for name in _SCALAR_FIELDS},
    )


# ── SQLAlchemy ───────────────────────────────────────────────────────────


class SqlAlchemyRequestRepository:
    """Request storage on the shared Flask-SQLAlchemy session.

    ``upsert`` and ``delete`` commit; on a database error the session is
    rolled back and the error propagates, leaving stored state unchanged.
    """

    def get(self, request_id: str) -> RequestRecord | None:
        row = db.session.get(Request, request_id)
        return request_from_row(row) if row else None

    def list(self, *, unit_uic=None, stage=None, uploaded_by_id=None, filed=None) -> list[RequestRecord]:
        q = Request.query.options(selectinload(Request.activity))
        if unit_uic is not None:
            q = q.filter(Request.unit_uic == unit_uic)
        if stage is not None:
            q = q.filter(Request.current_stage == stage)
        if uploaded_by_id is not None:
            q = q.filter(Request.uploaded_by_id == uploaded_by_id)
        if filed is True:
            q = q.filter(Request.filed_at.isnot(None))
        elif filed is False:
            q = q.filter(Request.filed_at.is_(None))
        return [request_from_row(r) for r in q.order_by(Request.created_at.desc()).all()]

    def upsert(self, request: RequestRecord) -> RequestRecord:
        try:
            row = (
                Request.query
                .filter_by(id=request.id)
                .with_for_update()
                .one_or_none()
            )
            _check_write(request_from_row(row) if row else None, request)

            if row is None:
                row = Request(id=request.id)
                db.session.add(row)
                existing = 0
            else:
                existing = len(row.activity)

            for name in _SCALAR_FIELDS:
                setattr(row, name, getattr(request, name))
            row.document_ids = list(request.document_ids)
            if row.filed_at is None:
                row.filed_at = request.filed_at

            for seq, entry in enumerate(request.activity[existing:], start=existing):
                row.activity.append(RequestActivity(
                    seq=seq,
                    **{name: getattr(entry, name) for name in _ACTIVITY_FIELDS},
                ))

            row.version = request.version + 1
            db.session.commit()
        except (ConflictError, ValidationError):
            db.session.rollback()
            raise
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Request upsert failed for %s", request.id)
            raise

        logger.debug("Request %s stored at version %s", row.id, row.version)
        return request_from_row(row)

    def delete(self, request_id: str) -> bool:
        row = db.session.get(Request, request_id)
        if row is None:
            return False
        try:
            db.session.delete(row)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Request delete failed for %s", request_id)
            raise
        return True


class SqlAlchemyUserDirectory:
    def get(self, user_id: str) -> UserRecord | None:
        row = db.session.get(User, user_id) if user_id else None
        return user_from_row(row) if row else None

    def list(self, *, unit_uic: str | None = None) -> list[UserRecord]:
        q = User.query
        if unit_uic is not None:
            q = q.filter(User.unit_uic == unit_uic)
        return [user_from_row(u) for u in q.order_by(User.last_name, User.id).all()]


# ── In-memory ────────────────────────────────────────────────────────────


class InMemoryRequestRepository:
    """Dict-backed repository with the same version and append-only rules."""

    def __init__(self, records=()):
        self._lock = threading.Lock()
        self._records: dict[str, RequestRecord] = {r.id: r for r in records}

    def get(self, request_id: str) -> RequestRecord | None:
        return self._records.get(request_id)

    def list(self, *, unit_uic=None, stage=None, uploaded_by_id=None, filed=None) -> list[RequestRecord]:
        found = [
            r for r in self._records.values()
            if _match(r, unit_uic, stage, uploaded_by_id, filed)
        ]
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    def upsert(self, request: RequestRecord) -> RequestRecord:
        with self._lock:
            stored = self._records.get(request.id)
            _check_write(stored, request)
            if stored is not None and stored.filed_at is not None:
                request = request.evolve(filed_at=stored.filed_at)
            saved = request.evolve(version=request.version + 1)
            self._records[saved.id] = saved
        return saved

    def delete(self, request_id: str) -> bool:
        with self._lock:
            return self._records.pop(request_id, None) is not None


class InMemoryUserDirectory:
    def __init__(self, users=()):
        self._users: dict[str, UserRecord] = {u.id: u for u in users}

    def add(self, user: UserRecord) -> None:
        self._users[user.id] = user

    def get(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)

    def list(self, *, unit_uic: str | None = None) -> list[UserRecord]:
        return [u for u in self._users.values() if unit_uic is None or u.unit_uic == unit_uic]
