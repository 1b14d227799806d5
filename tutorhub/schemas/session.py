from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SessionOut(BaseModel):
    id: int
    subscription_id: int
    slot_id: int | None = None
    start_at: datetime
    end_at: datetime
    status: str
    zoom_join_url: str | None = None
    zoom_start_url: str | None = None
    postpone_reason: str | None = None
    postpone_requested_at: datetime | None = None
    postpone_approved_at: datetime | None = None
    completed_at: datetime | None = None
    can_join: bool = False


class PostponeRequestIn(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class NoShowIn(BaseModel):
    party: Literal["student", "teacher"]


class MeetingLinksIn(BaseModel):
    join_url: str = Field(min_length=1, max_length=1200)
    start_url: str | None = Field(default=None, max_length=2400)
    meeting_id: str | None = Field(default=None, max_length=64)


class SyncFailureOut(BaseModel):
    session_id: int
    error: str


class SyncReportOut(BaseModel):
    updated: int
    skipped: int
    failures: list[SyncFailureOut] = Field(default_factory=list)
