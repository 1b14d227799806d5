from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tutorhub.core.enums import SubscriptionStatus, WeekStatus, sql_in
from tutorhub.db.base import Base
from tutorhub.models.common import TimestampMixin, WallClock


class Subscription(TimestampMixin, Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(f"status in {sql_in(SubscriptionStatus)}", name="ck_subscription_status"),
        CheckConstraint("weeks_total > 0", name="ck_subscription_weeks_positive"),
        CheckConstraint(
            "sessions_remaining >= 0 AND sessions_remaining <= sessions_total",
            name="ck_subscription_sessions_remaining_bounds",
        ),
        CheckConstraint(
            "postpone_remaining >= 0 AND postpone_remaining <= postpone_total",
            name="ck_subscription_postpone_remaining_bounds",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    teacher_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="RESTRICT"), index=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="RESTRICT"), index=True)
    status: Mapped[str] = mapped_column(String(32), default=SubscriptionStatus.DRAFT, nullable=False)
    weeks_total: Mapped[int] = mapped_column(Integer, nullable=False)
    sessions_total: Mapped[int] = mapped_column(Integer, nullable=False)
    sessions_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    postpone_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    postpone_remaining: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cycle_start_at: Mapped[datetime | None] = mapped_column(WallClock, nullable=True)
    cycle_end_at: Mapped[datetime | None] = mapped_column(WallClock, nullable=True)
    lemon_subscription_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)


class SubscriptionWeek(TimestampMixin, Base):
    __tablename__ = "subscription_weeks"
    __table_args__ = (
        UniqueConstraint("subscription_id", "week_index", name="uq_subscription_week_index"),
        CheckConstraint("week_index >= 1", name="ck_subscription_week_index_positive"),
        CheckConstraint(f"status in {sql_in(WeekStatus)}", name="ck_subscription_week_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id", ondelete="CASCADE"), index=True)
    week_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=WeekStatus.DRAFT, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    teacher_comment: Mapped[str | None] = mapped_column(Text, nullable=True)


class WeekSlot(TimestampMixin, Base):
    __tablename__ = "week_slots"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_week_slot_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    week_id: Mapped[int] = mapped_column(ForeignKey("subscription_weeks.id", ondelete="CASCADE"), index=True)
    start_at: Mapped[datetime] = mapped_column(WallClock, index=True, nullable=False)
    end_at: Mapped[datetime] = mapped_column(WallClock, nullable=False)
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
