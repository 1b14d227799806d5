from __future__ import annotations

from datetime import time

from sqlalchemy import Boolean, CheckConstraint, Integer, Time
from sqlalchemy.orm import Mapped, mapped_column

from tutorhub.db.base import Base
from tutorhub.models.common import TimestampMixin


class AvailabilityRule(TimestampMixin, Base):
    __tablename__ = "teacher_availability_rules"
    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_availability_weekday_range"),
        CheckConstraint("end_time > start_time", name="ck_availability_time_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    teacher_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    # 0 = Sunday ... 6 = Saturday
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
