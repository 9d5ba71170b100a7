"""
EDMS Request Routing
User roster model.

Models:
    - User: a member of a unit, with an optional reviewer scope.

Org-scope columns may hold the legacy "N/A" sentinel; the request
repository folds it to None when mapping rows to UserRecord values.
"""

import uuid
from datetime import UTC, datetime

from edms.models import db


def _uuid():
    return str(uuid.uuid4())


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.Index("idx_users_unit", "unit_uic"),
        db.Index("idx_users_role_scope", "role", "unit_uic", "company"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(200), nullable=True, unique=True)
    rank = db.Column(db.String(20), nullable=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    mi = db.Column(db.String(5), nullable=True)

    role = db.Column(
        db.String(30), nullable=False, default="MEMBER",
        comment="MEMBER | PLATOON_REVIEWER | COMPANY_REVIEWER | COMMANDER",
    )
    unit_uic = db.Column(db.String(20), nullable=True)
    company = db.Column(db.String(100), nullable=True)
    platoon = db.Column(db.String(100), nullable=True)

    # Scope a reviewer is authorized over; overrides company/platoon when set
    role_company = db.Column(db.String(100), nullable=True)
    role_platoon = db.Column(db.String(100), nullable=True)

    is_command_staff = db.Column(db.Boolean, nullable=False, default=False)
    is_unit_admin = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self):
        return f"<User {self.id}: {self.role} {self.unit_uic}>"
