from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

from tutorhub.core.config import settings
from tutorhub.core.errors import InvalidWebhookSignature

logger = logging.getLogger(__name__)

PAID_EVENTS = {"order_created", "subscription_created", "subscription_payment_success"}


@dataclass(frozen=True, slots=True)
class PaymentSignal:
    event_name: str
    subscription_id: int | None
    external_ref: str | None
    paid: bool


def verify_signature(body: bytes, signature: str | None, secret: str | None = None) -> None:
    secret = settings.lemon_webhook_secret if secret is None else secret
    if not secret:
        logger.warning("LEMON_WEBHOOK_SECRET is not set, accepting unsigned webhook")
        return
    if not signature:
        raise InvalidWebhookSignature("Missing webhook signature")
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(digest, signature.strip().lower()):
        raise InvalidWebhookSignature("Webhook signature mismatch")


def _as_int(raw: Any) -> int | None:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def _as_dict(raw: Any) -> dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def parse_event(payload: Any) -> PaymentSignal:
    payload = _as_dict(payload)
    meta = _as_dict(payload.get("meta"))
    event_name = str(meta.get("event_name") or "").strip().lower()
    custom = _as_dict(meta.get("custom_data"))
    subscription_id = _as_int(custom.get("subscription_id"))

    data = _as_dict(payload.get("data"))
    attributes = _as_dict(data.get("attributes"))
    external_ref = str(data.get("id") or "").strip() or None

    paid = event_name in PAID_EVENTS
    if event_name == "order_created":
        paid = str(attributes.get("status") or "paid").lower() == "paid"
    return PaymentSignal(
        event_name=event_name,
        subscription_id=subscription_id,
        external_ref=external_ref,
        paid=paid,
    )
