"""visitor action requests

Revision ID: 20261020_visitor_requests
Revises: 20261019_initial_visit_schema
Create Date: 2026-10-20 09:00:00.000000

This migration adds:
1. visitor_requests (staff BLOCK/BLACKLIST requests awaiting an admin decision)
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_visitor_requests"
down_revision = "20261019_initial_visit_schema"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "visitor_requests",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("visitor_id", sa.String(length=36), nullable=False),
        sa.Column("request_type", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("requested_by_id", sa.String(length=36), nullable=False),
        sa.Column("processed_by_id", sa.String(length=36), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("request_type IN ('BLOCK', 'BLACKLIST')", name="ck_visitor_requests_type"),
        sa.CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_visitor_requests_status"),
        sa.ForeignKeyConstraint(["visitor_id"], ["visitors.id"]),
        sa.ForeignKeyConstraint(["requested_by_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["processed_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_visitor_requests_visitor_id", "visitor_requests", ["visitor_id"], unique=False)
    op.create_index(
        "ix_visitor_requests_status_created", "visitor_requests", ["status", "created_at"], unique=False
    )


def downgrade():
    op.drop_index("ix_visitor_requests_status_created", table_name="visitor_requests")
    op.drop_index("ix_visitor_requests_visitor_id", table_name="visitor_requests")
    op.drop_table("visitor_requests")
