from __future__ import annotations

from pydantic import BaseModel


class WebhookAckOut(BaseModel):
    ok: bool = True
    event_name: str
    subscription_id: int | None = None
    changed: bool = False
