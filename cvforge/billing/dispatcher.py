"""
Routes typed Stripe events to exactly one reconciler handler.
"""

from __future__ import annotations

import logging

from django.db import DatabaseError

from cvforge.billing.errors import TransientStoreError
from cvforge.billing.events import CheckoutSessionCompletedEvent
from cvforge.billing.events import InvoicePaidEvent
from cvforge.billing.events import InvoicePaymentFailedEvent
from cvforge.billing.events import PaymentIntentSucceededEvent
from cvforge.billing.events import StripeEvent
from cvforge.billing.events import SubscriptionChangedEvent
from cvforge.billing.events import SubscriptionDeletedEvent
from cvforge.billing.reconciler import ReconcileResult
from cvforge.billing.reconciler import StateReconciler

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Usage:
        result = EventDispatcher().dispatch(parse_event(data))
    """

    def __init__(self, reconciler: StateReconciler | None = None):
        self.reconciler = reconciler or StateReconciler()
        self.routes = {
            CheckoutSessionCompletedEvent: self.reconciler.checkout_completed,
            SubscriptionChangedEvent: self.reconciler.subscription_changed,
            SubscriptionDeletedEvent: self.reconciler.subscription_deleted,
            InvoicePaidEvent: self.reconciler.invoice_paid,
            InvoicePaymentFailedEvent: self.reconciler.invoice_payment_failed,
            PaymentIntentSucceededEvent: self.reconciler.payment_succeeded,
        }

    def dispatch(self, event: StripeEvent) -> ReconcileResult:
        handler = self.routes.get(type(event))
        if handler is None:
            logger.info("Unhandled Stripe event type: %s (%s)", event.type, event.id)
            return ReconcileResult.ignored(f"unhandled event type {event.type}")

        try:
            return handler(event)
        except DatabaseError as exc:
            logger.exception("Database error while reconciling %s %s", event.type, event.id)
            return ReconcileResult.from_error(TransientStoreError(str(exc)))
