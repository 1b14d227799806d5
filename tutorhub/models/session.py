from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tutorhub.core.enums import SessionStatus, sql_in
from tutorhub.db.base import Base
from tutorhub.models.common import TimestampMixin, WallClock


class TutoringSession(TimestampMixin, Base):
    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint(f"status in {sql_in(SessionStatus)}", name="ck_session_status"),
        CheckConstraint("end_at > start_at", name="ck_session_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id", ondelete="CASCADE"), index=True)
    slot_id: Mapped[int | None] = mapped_column(
        ForeignKey("week_slots.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )
    start_at: Mapped[datetime] = mapped_column(WallClock, index=True, nullable=False)
    end_at: Mapped[datetime] = mapped_column(WallClock, index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default=SessionStatus.SCHEDULED, index=True, nullable=False)
    zoom_meeting_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    zoom_join_url: Mapped[str | None] = mapped_column(String(1200), nullable=True)
    zoom_start_url: Mapped[str | None] = mapped_column(String(2400), nullable=True)
    postpone_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    postpone_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    postpone_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Wall clock: the sweep backdates this to end_at.
    completed_at: Mapped[datetime | None] = mapped_column(WallClock, nullable=True)
