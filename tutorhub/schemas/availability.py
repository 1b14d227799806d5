from __future__ import annotations

from datetime import time

from pydantic import BaseModel, Field


class AvailabilityRuleIn(BaseModel):
    # 0 = Sunday ... 6 = Saturday
    weekday: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True


class AvailabilityRuleUpdateIn(BaseModel):
    weekday: int | None = Field(default=None, ge=0, le=6)
    start_time: time | None = None
    end_time: time | None = None
    is_active: bool | None = None


class AvailabilityRuleOut(BaseModel):
    id: int
    teacher_id: int
    weekday: int
    start_time: str
    end_time: str
    is_active: bool
