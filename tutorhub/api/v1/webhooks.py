from __future__ import annotations

import logging

import orjson
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.db.session import get_db
from tutorhub.schemas.webhook import WebhookAckOut
from tutorhub.services import payments
from tutorhub.services.subscriptions import mark_payment_received

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/webhooks/lemonsqueezy", response_model=WebhookAckOut)
async def lemonsqueezy_webhook(
    request: Request,
    x_signature: str | None = Header(default=None, alias="X-Signature"),
    db: AsyncSession = Depends(get_db),
):
    body = await request.body()
    payments.verify_signature(body, x_signature)
    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    signal = payments.parse_event(payload)
    if not signal.paid or signal.subscription_id is None:
        logger.info("Ignoring Lemon Squeezy event %s", signal.event_name or "<unnamed>")
        return WebhookAckOut(event_name=signal.event_name, subscription_id=signal.subscription_id)

    _row, changed = await mark_payment_received(
        db,
        subscription_id=signal.subscription_id,
        external_ref=signal.external_ref,
    )
    return WebhookAckOut(event_name=signal.event_name, subscription_id=signal.subscription_id, changed=changed)
