"""
Stripe webhook processing.

The pipeline for one delivery:

    raw body ─▶ SignatureVerifier ─▶ parse_event ─▶ ledger ─▶ EventDispatcher
                 (400 on failure)    (400 on failure)

Every authentic event is recorded in the ``WebhookEvent`` ledger before it
is dispatched. The ledger does three jobs:

1. Duplicate deliveries of an event that already reached PROCESSED or
   IGNORED are acknowledged without being dispatched again. (Handlers are
   idempotent anyway; this only saves work.)
2. It counts attempts. A retryable outcome asks Stripe to redeliver (HTTP
   500) until either the attempt limit or the retry window is used up.
3. After that the event is DEAD_LETTERED: logged at ERROR, acknowledged so
   Stripe stops, and kept with its payload for ``replay_webhook_events``.
   Without this an event for an account that never appears would be retried
   for days and then silently dropped by Stripe.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from cvforge.billing.config import StripeConfig
from cvforge.billing.constants import WebhookEventStatus
from cvforge.billing.dispatcher import EventDispatcher
from cvforge.billing.events import StripeEvent
from cvforge.billing.events import load_payload
from cvforge.billing.events import parse_event
from cvforge.billing.models import WebhookEvent
from cvforge.billing.reconciler import ReconcileOutcome
from cvforge.billing.reconciler import ReconcileResult
from cvforge.billing.signatures import SignatureVerifier

logger = logging.getLogger(__name__)

# Ledger states that mean "done, acknowledge redeliveries without work"
SETTLED_STATUSES = frozenset(
    {WebhookEventStatus.PROCESSED, WebhookEventStatus.IGNORED},
)

OUTCOME_STATUS = {
    ReconcileOutcome.APPLIED: WebhookEventStatus.PROCESSED,
    ReconcileOutcome.NOOP: WebhookEventStatus.PROCESSED,
    ReconcileOutcome.IGNORED: WebhookEventStatus.IGNORED,
    ReconcileOutcome.TERMINAL: WebhookEventStatus.IGNORED,
}


@dataclass(frozen=True)
class Delivery:
    """
    What happened to one webhook delivery.

    ``result`` is None when the delivery was a duplicate of a settled event.
    """

    event_id: str
    event_type: str
    result: ReconcileResult | None = None
    dead_lettered: bool = False

    @property
    def should_retry(self) -> bool:
        """True when Stripe should redeliver (the view answers 5xx)."""
        return (
            self.result is not None
            and self.result.retryable
            and not self.dead_lettered
        )


class WebhookProcessor:
    """
    Verifies, records and dispatches Stripe webhook deliveries.

    Usage:
        processor = WebhookProcessor(StripeConfig.from_settings())
        delivery = processor.handle(request.body, request.headers.get("Stripe-Signature"))
        status = 500 if delivery.should_retry else 200
    """

    def __init__(
        self,
        config: StripeConfig,
        dispatcher: EventDispatcher | None = None,
        *,
        max_attempts: int | None = None,
        retry_window: timedelta | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.config = config
        self.verifier = SignatureVerifier(config)
        self.dispatcher = dispatcher or EventDispatcher()
        self.max_attempts = max_attempts or settings.BILLING_WEBHOOK_MAX_ATTEMPTS
        self.retry_window = retry_window or timedelta(
            hours=settings.BILLING_WEBHOOK_RETRY_WINDOW_HOURS,
        )
        self.clock = clock

    def handle(self, payload: bytes, signature_header: str | None) -> Delivery:
        """
        Process one raw delivery.

        Raises:
            SignatureInvalidError: The payload is not authentic.
            MalformedEventError: The payload is authentic but unreadable.
        """
        text = self.verifier.verify(payload, signature_header)
        data = load_payload(text)
        event = parse_event(data)
        return self.process(event, data)

    def process(self, event: StripeEvent, data: dict[str, Any]) -> Delivery:
        record, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=event.id,
            defaults={"event_type": event.type, "payload": data},
        )
        if not created and record.status in SETTLED_STATUSES:
            logger.info("Duplicate delivery of settled event %s (%s)", event.id, event.type)
            return Delivery(event.id, event.type)

        return self._dispatch_and_record(record, event)

    def replay(self, record: WebhookEvent) -> Delivery:
        """
        Dispatch a stored event again from its saved payload.

        A replay that is still retryable leaves the row in its current state
        (FAILED or DEAD_LETTERED) with the new error.

        Raises:
            MalformedEventError: The stored payload can no longer be parsed.
        """
        event = parse_event(record.payload)
        return self._dispatch_and_record(record, event, replaying=True)

    # -------------------------------------------------------------------------
    # Ledger bookkeeping
    # -------------------------------------------------------------------------

    def _dispatch_and_record(
        self,
        record: WebhookEvent,
        event: StripeEvent,
        *,
        replaying: bool = False,
    ) -> Delivery:
        now = self.clock()
        WebhookEvent.objects.filter(pk=record.pk).update(
            attempts=F("attempts") + 1,
            modified=now,
        )
        record.refresh_from_db(fields=["attempts", "status", "created"])

        result = self.dispatcher.dispatch(event)

        if not result.retryable:
            WebhookEvent.objects.filter(pk=record.pk).update(
                status=OUTCOME_STATUS[result.outcome],
                last_error=result.detail if result.error else "",
                processed_at=now,
                modified=now,
            )
            return Delivery(event.id, event.type, result)

        if replaying:
            WebhookEvent.objects.filter(pk=record.pk).update(
                last_error=result.detail,
                modified=now,
            )
            return Delivery(
                event.id,
                event.type,
                result,
                dead_lettered=record.status == WebhookEventStatus.DEAD_LETTERED,
            )

        if self._retries_exhausted(record, now):
            WebhookEvent.objects.filter(pk=record.pk).update(
                status=WebhookEventStatus.DEAD_LETTERED,
                last_error=result.detail,
                modified=now,
            )
            logger.error(
                "Dead-lettered Stripe event %s (%s) after %s attempts: %s",
                event.id,
                event.type,
                record.attempts,
                result.detail,
            )
            return Delivery(event.id, event.type, result, dead_lettered=True)

        WebhookEvent.objects.filter(pk=record.pk).update(
            status=WebhookEventStatus.FAILED,
            last_error=result.detail,
            modified=now,
        )
        logger.warning(
            "Stripe event %s (%s) failed on attempt %s, asking for redelivery: %s",
            event.id,
            event.type,
            record.attempts,
            result.detail,
        )
        return Delivery(event.id, event.type, result)

    def _retries_exhausted(self, record: WebhookEvent, now: datetime) -> bool:
        if record.attempts >= self.max_attempts:
            return True
        return now - record.created >= self.retry_window
