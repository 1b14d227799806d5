"""scheduling engine schema

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

SUBSCRIPTION_STATUSES = "('draft','pending_payment','payment_received','teacher_assigned','active','completed','cancelled')"
WEEK_STATUSES = "('draft','submitted','approved','rejected')"
SESSION_STATUSES = (
    "('scheduled','in_progress','completed','cancelled','student_no_show','teacher_no_show',"
    "'student_requested_postpone','postpone_approved')"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_courses_slug", "courses", ["slug"], unique=True)

    op.create_table(
        "packages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("sessions_per_week", sa.Integer(), nullable=False),
        sa.Column("weeks_per_cycle", sa.Integer(), nullable=False),
        sa.Column("session_duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="SAR"),
        sa.Column("lemon_variant_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("sessions_per_week > 0", name="ck_package_sessions_per_week_positive"),
        sa.CheckConstraint("weeks_per_cycle > 0", name="ck_package_weeks_per_cycle_positive"),
        sa.CheckConstraint("session_duration_minutes > 0", name="ck_package_duration_positive"),
        sa.CheckConstraint("price_cents >= 0", name="ck_package_price_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_packages_slug", "packages", ["slug"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("teacher_id", sa.Integer(), nullable=True),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("package_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("weeks_total", sa.Integer(), nullable=False),
        sa.Column("sessions_total", sa.Integer(), nullable=False),
        sa.Column("sessions_remaining", sa.Integer(), nullable=False),
        sa.Column("postpone_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("postpone_remaining", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cycle_start_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("cycle_end_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("lemon_subscription_id", sa.String(length=120), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(f"status in {SUBSCRIPTION_STATUSES}", name="ck_subscription_status"),
        sa.CheckConstraint("weeks_total > 0", name="ck_subscription_weeks_positive"),
        sa.CheckConstraint(
            "sessions_remaining >= 0 AND sessions_remaining <= sessions_total",
            name="ck_subscription_sessions_remaining_bounds",
        ),
        sa.CheckConstraint(
            "postpone_remaining >= 0 AND postpone_remaining <= postpone_total",
            name="ck_subscription_postpone_remaining_bounds",
        ),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_student_id", "subscriptions", ["student_id"], unique=False)
    op.create_index("ix_subscriptions_teacher_id", "subscriptions", ["teacher_id"], unique=False)
    op.create_index("ix_subscriptions_course_id", "subscriptions", ["course_id"], unique=False)
    op.create_index("ix_subscriptions_package_id", "subscriptions", ["package_id"], unique=False)

    op.create_table(
        "subscription_weeks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subscription_id", sa.Integer(), nullable=False),
        sa.Column("week_index", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("teacher_comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("week_index >= 1", name="ck_subscription_week_index_positive"),
        sa.CheckConstraint(f"status in {WEEK_STATUSES}", name="ck_subscription_week_status"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id", "week_index", name="uq_subscription_week_index"),
    )
    op.create_index("ix_subscription_weeks_subscription_id", "subscription_weeks", ["subscription_id"], unique=False)

    op.create_table(
        "week_slots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("week_id", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("note", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_at > start_at", name="ck_week_slot_range"),
        sa.ForeignKeyConstraint(["week_id"], ["subscription_weeks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_week_slots_week_id", "week_slots", ["week_id"], unique=False)
    op.create_index("ix_week_slots_start_at", "week_slots", ["start_at"], unique=False)

    op.create_table(
        "teacher_availability_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("teacher_id", sa.Integer(), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_availability_weekday_range"),
        sa.CheckConstraint("end_time > start_time", name="ck_availability_time_range"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_teacher_availability_rules_teacher_id",
        "teacher_availability_rules",
        ["teacher_id"],
        unique=False,
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subscription_id", sa.Integer(), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="scheduled"),
        sa.Column("zoom_meeting_id", sa.String(length=64), nullable=True),
        sa.Column("zoom_join_url", sa.String(length=1200), nullable=True),
        sa.Column("zoom_start_url", sa.String(length=2400), nullable=True),
        sa.Column("postpone_reason", sa.Text(), nullable=True),
        sa.Column("postpone_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("postpone_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(f"status in {SESSION_STATUSES}", name="ck_session_status"),
        sa.CheckConstraint("end_at > start_at", name="ck_session_range"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["slot_id"], ["week_slots.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slot_id"),
    )
    op.create_index("ix_sessions_subscription_id", "sessions", ["subscription_id"], unique=False)
    op.create_index("ix_sessions_start_at", "sessions", ["start_at"], unique=False)
    op.create_index("ix_sessions_end_at", "sessions", ["end_at"], unique=False)
    op.create_index("ix_sessions_status", "sessions", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("sessions")
    op.drop_table("teacher_availability_rules")
    op.drop_table("week_slots")
    op.drop_table("subscription_weeks")
    op.drop_table("subscriptions")
    op.drop_table("packages")
    op.drop_table("courses")
