import hashlib
import hmac

import pytest

from tutorhub.core.errors import InvalidWebhookSignature
from tutorhub.services.payments import parse_event, verify_signature

SECRET = "whsec_test"
BODY = b'{"meta":{"event_name":"order_created"}}'


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def test_valid_signature_passes() -> None:
    verify_signature(BODY, _sign(BODY), secret=SECRET)


def test_tampered_body_is_rejected() -> None:
    with pytest.raises(InvalidWebhookSignature):
        verify_signature(BODY + b" ", _sign(BODY), secret=SECRET)


def test_missing_signature_is_rejected() -> None:
    with pytest.raises(InvalidWebhookSignature):
        verify_signature(BODY, None, secret=SECRET)


def test_unsigned_webhooks_accepted_without_secret() -> None:
    verify_signature(BODY, None, secret="")


def test_parse_paid_order() -> None:
    signal = parse_event(
        {
            "meta": {"event_name": "order_created", "custom_data": {"subscription_id": "12"}},
            "data": {"id": "998", "attributes": {"status": "paid"}},
        }
    )
    assert signal.paid
    assert signal.subscription_id == 12
    assert signal.external_ref == "998"


def test_parse_pending_order_and_unrelated_events() -> None:
    pending = parse_event(
        {
            "meta": {"event_name": "order_created", "custom_data": {"subscription_id": 3}},
            "data": {"id": "1", "attributes": {"status": "pending"}},
        }
    )
    assert not pending.paid
    refund = parse_event({"meta": {"event_name": "order_refunded"}, "data": {}})
    assert not refund.paid
    assert refund.subscription_id is None


def test_parse_tolerates_non_object_sections() -> None:
    signal = parse_event({"meta": {"event_name": "subscription_created", "custom_data": []}, "data": []})
    assert signal.paid
    assert signal.subscription_id is None
    assert signal.external_ref is None

    empty = parse_event({"meta": "order_created", "data": {"id": 5, "attributes": None}})
    assert empty.event_name == ""
    assert not empty.paid
    assert empty.external_ref == "5"
