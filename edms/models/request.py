"""
EDMS Request Routing
Request domain models.

Models:
    - Request: a document-routing case moving through the review chain.
    - RequestActivity: immutable, append-only activity trail for a request.

``Request.version`` is an optimistic concurrency token: the repository
increments it on every write and refuses writes based on an older value.
"""

import uuid
from datetime import UTC, datetime

from edms.models import db


def _uuid():
    return str(uuid.uuid4())


class Request(db.Model):
    __tablename__ = "requests"
    __table_args__ = (
        db.Index("idx_requests_unit_stage", "unit_uic", "current_stage"),
        db.Index("idx_requests_owner", "uploaded_by_id"),
        db.Index("idx_requests_filed", "filed_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    subject = db.Column(db.String(300), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    unit_uic = db.Column(db.String(20), nullable=True)
    uploaded_by_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Routing
    current_stage = db.Column(
        db.String(30), nullable=False,
        comment="PLATOON_REVIEW | COMPANY_REVIEW | BATTALION_REVIEW | … | ARCHIVED",
    )
    route_section = db.Column(
        db.String(100), nullable=True,
        comment="Battalion/command/installation section or HQMC branch at the current stage",
    )
    installation_id = db.Column(db.String(36), nullable=True)
    external_pending_unit_uic = db.Column(db.String(20), nullable=True)
    external_pending_unit_name = db.Column(db.String(200), nullable=True)

    document_ids = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    commander_approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    filed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    final_status = db.Column(
        db.String(20), nullable=True,
        comment="Filed | Approved | Rejected | Archived",
    )

    # Retention (all-or-none)
    ssic = db.Column(db.String(20), nullable=True)
    ssic_nomenclature = db.Column(db.String(300), nullable=True)
    ssic_bucket = db.Column(db.String(20), nullable=True)
    ssic_bucket_title = db.Column(db.String(200), nullable=True)
    is_permanent = db.Column(db.Boolean, nullable=True)
    retention_value = db.Column(db.Integer, nullable=True)
    retention_unit = db.Column(db.String(10), nullable=True, comment="years | months | days")
    cutoff_trigger = db.Column(db.String(30), nullable=True, comment="CALENDAR_YEAR | FISCAL_YEAR | …")
    cutoff_description = db.Column(db.String(300), nullable=True)
    disposal_action = db.Column(db.String(300), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=0)

    activity = db.relationship(
        "RequestActivity",
        backref="request",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="RequestActivity.seq",
    )

    def __repr__(self):
        return f"<Request {self.id}: {self.current_stage} v{self.version}>"


class RequestActivity(db.Model):
    """
    One activity-trail line.  Rows are only ever inserted; ``seq`` keeps
    the order in which they were appended.
    """

    __tablename__ = "request_activity"
    __table_args__ = (
        db.UniqueConstraint("request_id", "seq", name="uq_request_activity_seq"),
        db.Index("idx_request_activity_intent", "request_id", "intent_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.String(36),
        db.ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq = db.Column(db.Integer, nullable=False)

    actor = db.Column(db.String(200), nullable=False)
    actor_id = db.Column(db.String(36), nullable=True)
    actor_role = db.Column(db.String(30), nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    action = db.Column(db.String(300), nullable=False)
    kind = db.Column(
        db.String(40), nullable=False,
        comment="approve | return | route_section | commander_approve | … | submit | file",
    )
    comment = db.Column(db.Text, nullable=True)
    from_section = db.Column(db.String(100), nullable=True)
    to_section = db.Column(db.String(100), nullable=True)
    from_stage = db.Column(db.String(30), nullable=True)
    to_stage = db.Column(db.String(30), nullable=True)
    intent_key = db.Column(db.String(100), nullable=True)

    def __repr__(self):
        return f"<RequestActivity {self.request_id}#{self.seq}: {self.kind}>"
