from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SlotIn(BaseModel):
    start_at: datetime
    end_at: datetime
    note: str | None = Field(default=None, max_length=500)


class SlotOut(BaseModel):
    id: int
    week_id: int
    start_at: datetime
    end_at: datetime
    note: str | None = None


class WeekOut(BaseModel):
    id: int
    subscription_id: int
    week_index: int
    status: str
    capacity: int
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    teacher_comment: str | None = None
    slots: list[SlotOut] = Field(default_factory=list)


class WeekDeclineIn(BaseModel):
    comment: str | None = Field(default=None, max_length=2000)


class CandidateOut(BaseModel):
    start_at: datetime
    end_at: datetime
    taken: bool
    week_index: int | None = None
