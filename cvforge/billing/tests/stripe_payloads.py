"""Builders for Stripe webhook payloads and signatures used in tests."""

import hashlib
import hmac
import json
import time
from datetime import datetime

from django.utils import timezone


def _ts(value: datetime | int | None) -> int:
    if value is None:
        return int(timezone.now().timestamp())
    if isinstance(value, datetime):
        return int(value.timestamp())
    return value


def stripe_event(event_type: str, obj: dict, *, event_id: str = "evt_test_1", created=None) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": _ts(created),
        "livemode": False,
        "data": {"object": obj},
    }


def checkout_session(
    *,
    customer: str = "cus_test_1",
    resume_id: str = "",
    payment_intent: str | None = "pi_test_1",
    payment_status: str = "paid",
    mode: str = "payment",
    session_id: str = "cs_test_1",
) -> dict:
    metadata = {"type": "cv_purchase", "resumeId": resume_id} if mode == "payment" else {}
    return {
        "id": session_id,
        "object": "checkout.session",
        "customer": customer,
        "mode": mode,
        "payment_intent": payment_intent,
        "payment_status": payment_status,
        "amount_total": 999,
        "currency": "ron",
        "metadata": metadata,
    }


def subscription(
    *,
    customer: str = "cus_test_1",
    status: str = "active",
    period_end: datetime | int | None = None,
    subscription_id: str = "sub_test_1",
    period_end_on_item: bool = False,
) -> dict:
    data = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {"object": "list", "data": []},
    }
    if period_end is not None:
        if period_end_on_item:
            data["items"]["data"].append({"id": "si_test_1", "current_period_end": _ts(period_end)})
        else:
            data["current_period_end"] = _ts(period_end)
    return data


def invoice(
    *,
    customer: str = "cus_test_1",
    subscription_id: str | None = "sub_test_1",
    use_parent: bool = False,
    invoice_id: str = "in_test_1",
) -> dict:
    data = {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "amount_paid": 1999,
        "amount_due": 1999,
    }
    if subscription_id and use_parent:
        data["parent"] = {"subscription_details": {"subscription": subscription_id}}
    elif subscription_id:
        data["subscription"] = subscription_id
    return data


def payment_intent(
    *,
    intent_id: str = "pi_test_1",
    customer: str = "cus_test_1",
    resume_id: str | None = None,
) -> dict:
    metadata = {"type": "cv_purchase", "resumeId": resume_id} if resume_id else {}
    return {
        "id": intent_id,
        "object": "payment_intent",
        "customer": customer,
        "amount": 999,
        "currency": "ron",
        "metadata": metadata,
    }


def sign_payload(body: str, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{body}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def encode(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"))
