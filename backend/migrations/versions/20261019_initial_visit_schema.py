"""initial visit management schema

Revision ID: 20261019_initial_visit_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration adds:
1. users (hosts, approvers, gate staff)
2. visitors (email-keyed identity with blacklist flag)
3. visits (lifecycle row; pass pair and guest count check constraints)
4. notifications (persisted dispatcher effects)
5. activity_logs (append-only audit of transitions)
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_visit_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. USERS
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("department", sa.String(length=128), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    # ==========================================================================
    # 2. VISITORS
    # ==========================================================================
    op.create_table(
        "visitors",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("designation", sa.String(length=128), nullable=True),
        sa.Column("id_type", sa.String(length=64), nullable=True),
        sa.Column("id_number", sa.String(length=128), nullable=True),
        sa.Column("is_blacklisted", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("blacklist_reason", sa.Text(), nullable=True),
        sa.Column("blacklisted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("blacklisted_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_visitors_email", "visitors", ["email"], unique=True)
    op.create_index("ix_visitors_is_blacklisted", "visitors", ["is_blacklisted"], unique=False)

    # ==========================================================================
    # 3. VISITS
    # ==========================================================================
    op.create_table(
        "visits",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("visitor_id", sa.String(length=36), nullable=False),
        sa.Column("host_employee_id", sa.String(length=36), nullable=False),
        sa.Column("approved_by_id", sa.String(length=36), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("purpose", sa.String(length=32), nullable=False, server_default="OTHER"),
        sa.Column("purpose_details", sa.Text(), nullable=True),
        sa.Column("vehicle_number", sa.String(length=32), nullable=True),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_time_in", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_time_out", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_time_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_time_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("extension_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_extended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pass_number", sa.String(length=64), nullable=True),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("number_of_guests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("guest_details", sa.JSON(), nullable=False),
        sa.Column("is_walk_in", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("walk_in_created_by", sa.String(length=36), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "(pass_number IS NULL AND qr_code IS NULL) OR "
            "(pass_number IS NOT NULL AND qr_code IS NOT NULL)",
            name="ck_visits_pass_pair",
        ),
        sa.CheckConstraint("number_of_guests >= 0 AND number_of_guests <= 10", name="ck_visits_guest_count"),
        sa.CheckConstraint("extension_count >= 0", name="ck_visits_extension_count"),
        sa.ForeignKeyConstraint(["visitor_id"], ["visitors.id"]),
        sa.ForeignKeyConstraint(["host_employee_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["approved_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pass_number"),
    )
    op.create_index("ix_visits_visitor_id", "visits", ["visitor_id"], unique=False)
    op.create_index("ix_visits_host_employee_id", "visits", ["host_employee_id"], unique=False)
    op.create_index("ix_visits_status", "visits", ["status"], unique=False)
    op.create_index("ix_visits_visitor_status", "visits", ["visitor_id", "status"], unique=False)
    op.create_index("ix_visits_host_scheduled", "visits", ["host_employee_id", "scheduled_date"], unique=False)

    # ==========================================================================
    # 4. NOTIFICATIONS
    # ==========================================================================
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("target_type", sa.String(length=16), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=False),
        sa.Column("visit_id", sa.String(length=36), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["visit_id"], ["visits.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_kind", "notifications", ["kind"], unique=False)
    op.create_index("ix_notifications_visit_id", "notifications", ["visit_id"], unique=False)
    op.create_index("ix_notifications_target", "notifications", ["target_type", "target_id"], unique=False)

    # ==========================================================================
    # 5. ACTIVITY LOGS
    # ==========================================================================
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("visit_id", sa.String(length=36), nullable=True),
        sa.Column("visitor_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["visit_id"], ["visits.id"]),
        sa.ForeignKeyConstraint(["visitor_id"], ["visitors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_logs_actor_id", "activity_logs", ["actor_id"], unique=False)
    op.create_index("ix_activity_logs_visitor_id", "activity_logs", ["visitor_id"], unique=False)
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"], unique=False)
    op.create_index("ix_activity_logs_visit_created", "activity_logs", ["visit_id", "created_at"], unique=False)


def downgrade():
    op.drop_index("ix_activity_logs_visit_created", table_name="activity_logs")
    op.drop_index("ix_activity_logs_action", table_name="activity_logs")
    op.drop_index("ix_activity_logs_visitor_id", table_name="activity_logs")
    op.drop_index("ix_activity_logs_actor_id", table_name="activity_logs")
    op.drop_table("activity_logs")

    op.drop_index("ix_notifications_target", table_name="notifications")
    op.drop_index("ix_notifications_visit_id", table_name="notifications")
    op.drop_index("ix_notifications_kind", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_visits_host_scheduled", table_name="visits")
    op.drop_index("ix_visits_visitor_status", table_name="visits")
    op.drop_index("ix_visits_status", table_name="visits")
    op.drop_index("ix_visits_host_employee_id", table_name="visits")
    op.drop_index("ix_visits_visitor_id", table_name="visits")
    op.drop_table("visits")

    op.drop_index("ix_visitors_is_blacklisted", table_name="visitors")
    op.drop_index("ix_visitors_email", table_name="visitors")
    op.drop_table("visitors")

    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
