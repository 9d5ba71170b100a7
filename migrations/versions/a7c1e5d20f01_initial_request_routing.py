"""initial_request_routing

Create `users`, `requests` and `request_activity` tables.

Revision ID: a7c1e5d20f01
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a7c1e5d20f01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("rank", sa.String(length=20), nullable=True),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("mi", sa.String(length=5), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="MEMBER"),
            sa.Column("unit_uic", sa.String(length=20), nullable=True),
            sa.Column("company", sa.String(length=100), nullable=True),
            sa.Column("platoon", sa.String(length=100), nullable=True),
            sa.Column("role_company", sa.String(length=100), nullable=True),
            sa.Column("role_platoon", sa.String(length=100), nullable=True),
            sa.Column("is_command_staff", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_unit_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("idx_users_unit", "users", ["unit_uic"])
        op.create_index("idx_users_role_scope", "users", ["role", "unit_uic", "company"])

    if "requests" not in existing_tables:
        op.create_table(
            "requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("subject", sa.String(length=300), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("unit_uic", sa.String(length=20), nullable=True),
            sa.Column("uploaded_by_id", sa.String(length=36), nullable=False),
            sa.Column("current_stage", sa.String(length=30), nullable=False),
            sa.Column("route_section", sa.String(length=100), nullable=True),
            sa.Column("installation_id", sa.String(length=36), nullable=True),
            sa.Column("external_pending_unit_uic", sa.String(length=20), nullable=True),
            sa.Column("external_pending_unit_name", sa.String(length=200), nullable=True),
            sa.Column("document_ids", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("commander_approval_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("filed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("final_status", sa.String(length=20), nullable=True),
            sa.Column("ssic", sa.String(length=20), nullable=True),
            sa.Column("ssic_nomenclature", sa.String(length=300), nullable=True),
            sa.Column("ssic_bucket", sa.String(length=20), nullable=True),
            sa.Column("ssic_bucket_title", sa.String(length=200), nullable=True),
            sa.Column("is_permanent", sa.Boolean(), nullable=True),
            sa.Column("retention_value", sa.Integer(), nullable=True),
            sa.Column("retention_unit", sa.String(length=10), nullable=True),
            sa.Column("cutoff_trigger", sa.String(length=30), nullable=True),
            sa.Column("cutoff_description", sa.String(length=300), nullable=True),
            sa.Column("disposal_action", sa.String(length=300), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["uploaded_by_id"], ["users.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_requests_unit_stage", "requests", ["unit_uic", "current_stage"])
        op.create_index("idx_requests_owner", "requests", ["uploaded_by_id"])
        op.create_index("idx_requests_filed", "requests", ["filed_at"])

    if "request_activity" not in existing_tables:
        op.create_table(
            "request_activity",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("request_id", sa.String(length=36), nullable=False),
            sa.Column("seq", sa.Integer(), nullable=False),
            sa.Column("actor", sa.String(length=200), nullable=False),
            sa.Column("actor_id", sa.String(length=36), nullable=True),
            sa.Column("actor_role", sa.String(length=30), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("action", sa.String(length=300), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("from_section", sa.String(length=100), nullable=True),
            sa.Column("to_section", sa.String(length=100), nullable=True),
            sa.Column("from_stage", sa.String(length=30), nullable=True),
            sa.Column("to_stage", sa.String(length=30), nullable=True),
            sa.Column("intent_key", sa.String(length=100), nullable=True),
            sa.ForeignKeyConstraint(["request_id"], ["requests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("request_id", "seq", name="uq_request_activity_seq"),
        )
        op.create_index("ix_request_activity_request_id", "request_activity", ["request_id"])
        op.create_index("idx_request_activity_intent", "request_activity", ["request_id", "intent_key"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "request_activity" in existing_tables:
        op.drop_index("idx_request_activity_intent", table_name="request_activity")
        op.drop_index("ix_request_activity_request_id", table_name="request_activity")
        op.drop_table("request_activity")
    if "requests" in existing_tables:
        op.drop_index("idx_requests_filed", table_name="requests")
        op.drop_index("idx_requests_owner", table_name="requests")
        op.drop_index("idx_requests_unit_stage", table_name="requests")
        op.drop_table("requests")
    if "users" in existing_tables:
        op.drop_index("idx_users_role_scope", table_name="users")
        op.drop_index("idx_users_unit", table_name="users")
        op.drop_table("users")
