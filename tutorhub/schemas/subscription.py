from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SubscriptionCreateIn(BaseModel):
    course_id: int = Field(ge=1)
    package_id: int = Field(ge=1)
    # Admins creating on behalf of a student.
    student_id: int | None = Field(default=None, ge=1)


class AssignTeacherIn(BaseModel):
    teacher_id: int = Field(ge=1)


class SubscriptionCancelIn(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


class ProgressOut(BaseModel):
    completed: int
    total: int
    percentage: int


class SubscriptionOut(BaseModel):
    id: int
    student_id: int
    teacher_id: int | None = None
    course_id: int
    package_id: int
    status: str
    weeks_total: int
    sessions_total: int
    sessions_remaining: int
    postpone_total: int
    postpone_remaining: int
    cycle_start_at: datetime | None = None
    cycle_end_at: datetime | None = None
    progress: ProgressOut
    created_at: datetime
