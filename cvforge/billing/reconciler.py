"""
Idempotent reconciliation of Stripe events into local billing state.

Each handler takes one typed event and returns a ``ReconcileResult``. None
of them raise for expected conditions: a missing account is either a race
(retry later) or a permanent absence (acknowledge and log), and the result
says which. The webhook view decides the HTTP status from the result alone.

Every handler is safe to run any number of times for the same event:

- Purchases are keyed by PaymentIntent id and completed with conditional
  updates, so a replay never creates a second row or un-completes one.
- Subscription events carry Stripe's ``created`` timestamp. An account
  remembers the newest one it applied and skips anything older (same-second
  events are ordered by period end, then status), so the final state does
  not depend on delivery order.
- Invoice events write absolute values (status, credits = 0), so applying
  them twice equals applying them once.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from django.db import transaction
from django.db.models import DateTimeField
from django.db.models import Q
from django.db.models import Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from cvforge.billing.accounts import find_account_by_customer
from cvforge.billing.constants import CV_PURCHASE_METADATA_TYPE
from cvforge.billing.constants import PAID_CHECKOUT_STATUSES
from cvforge.billing.constants import PurchaseStatus
from cvforge.billing.constants import SubscriptionStatus
from cvforge.billing.errors import RaceConditionError
from cvforge.billing.errors import TerminalAbsenceError
from cvforge.billing.errors import WebhookError
from cvforge.billing.events import CheckoutSessionCompletedEvent
from cvforge.billing.events import InvoicePaidEvent
from cvforge.billing.events import InvoicePaymentFailedEvent
from cvforge.billing.events import PaymentIntentSucceededEvent
from cvforge.billing.events import SubscriptionChangedEvent
from cvforge.billing.events import SubscriptionDeletedEvent
from cvforge.billing.metering import reset_ai_credits
from cvforge.billing.models import Account
from cvforge.billing.models import Purchase
from cvforge.resumes.models import Resume

logger = logging.getLogger(__name__)


class ReconcileOutcome(enum.Enum):
    APPLIED = "applied"
    NOOP = "noop"
    IGNORED = "ignored"
    TERMINAL = "terminal"
    RETRYABLE = "retryable"


@dataclass(frozen=True)
class ReconcileResult:
    """
    What happened when an event was reconciled.

    ``error`` is set for TERMINAL and RETRYABLE outcomes and names the
    reason. Only RETRYABLE results ask Stripe to redeliver.
    """

    outcome: ReconcileOutcome
    detail: str = ""
    error: WebhookError | None = None

    @property
    def retryable(self) -> bool:
        return self.outcome is ReconcileOutcome.RETRYABLE

    @classmethod
    def applied(cls, detail: str) -> ReconcileResult:
        return cls(ReconcileOutcome.APPLIED, detail)

    @classmethod
    def noop(cls, detail: str) -> ReconcileResult:
        return cls(ReconcileOutcome.NOOP, detail)

    @classmethod
    def ignored(cls, detail: str) -> ReconcileResult:
        return cls(ReconcileOutcome.IGNORED, detail)

    @classmethod
    def from_error(cls, error: WebhookError) -> ReconcileResult:
        outcome = (
            ReconcileOutcome.RETRYABLE if error.retryable else ReconcileOutcome.TERMINAL
        )
        return cls(outcome, error.detail, error)


# Stripe subscription.status → stored status. Anything else is ACTIVE.
STRIPE_SUBSCRIPTION_STATUS_MAP = {
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.CANCELLED,
}


def map_subscription_status(stripe_status: str) -> SubscriptionStatus:
    return STRIPE_SUBSCRIPTION_STATUS_MAP.get(stripe_status, SubscriptionStatus.ACTIVE)


# Precedence between subscription events created in the same second.
SAME_SECOND_STATUS_RANK = [
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.CANCELLED,
]


def _supersedes(
    created: datetime,
    period_end: datetime | None,
    status: SubscriptionStatus,
) -> Q:
    """
    Match accounts whose applied subscription state this event replaces.

    Events are ordered by ``created``. Stripe timestamps have one-second
    resolution, so events from the same second are ordered by period end
    and then by ``SAME_SECOND_STATUS_RANK``. Every delivery order therefore
    ends on the same event.
    """
    newer = Q(subscription_event_at__isnull=True) | Q(subscription_event_at__lt=created)

    rank = SAME_SECOND_STATUS_RANK.index(status)
    status_not_higher = Q(status__in=SAME_SECOND_STATUS_RANK[: rank + 1])
    if period_end is None:
        tie_break = status_not_higher
    else:
        tie_break = (
            Q(current_period_end__isnull=True)
            | Q(current_period_end__lt=period_end)
            | (Q(current_period_end=period_end) & status_not_higher)
        )
    return newer | (Q(subscription_event_at=created) & tie_break)


class StateReconciler:
    """
    Applies typed Stripe events to Account, Purchase and Resume rows.

    Usage:
        reconciler = StateReconciler()
        result = reconciler.subscription_changed(event)
        if result.retryable:
            ...  # answer 500 so Stripe redelivers
    """

    def __init__(self, clock: Callable[[], datetime] = timezone.now):
        self.clock = clock

    # ==========================================================================
    # One-time purchases
    # ==========================================================================

    def checkout_completed(self, event: CheckoutSessionCompletedEvent) -> ReconcileResult:
        """
        Record a per-CV purchase and grant the export right.

        Subscription-mode sessions are acknowledged without changes; the
        subscription events that follow them carry the state.
        """
        session = event.data.obj
        if (
            session.mode != "payment"
            or session.metadata.get("type") != CV_PURCHASE_METADATA_TYPE
        ):
            return ReconcileResult.noop(
                f"checkout session {session.id} is not a per-CV purchase",
            )

        target = self._purchase_target(
            event,
            customer=session.customer,
            metadata=session.metadata,
            source=f"checkout session {session.id}",
        )
        if isinstance(target, ReconcileResult):
            return target
        account, resume = target

        now = self.clock()
        paid = session.payment_status in PAID_CHECKOUT_STATUSES
        changed = self._record_purchase(
            account,
            resume,
            payment_intent_id=session.payment_intent,
            defaults={
                "stripe_checkout_session_id": session.id,
                "amount": session.amount_total or 0,
                "currency": session.currency or "ron",
            },
            paid=paid,
            now=now,
        )
        if not changed:
            return ReconcileResult.noop(f"checkout session {session.id} already recorded")

        logger.info(
            "checkout.session.completed: customer=%s, resume=%s, payment_intent=%s, paid=%s",
            session.customer,
            resume.pk,
            session.payment_intent,
            paid,
        )
        return ReconcileResult.applied(f"recorded purchase for resume {resume.pk}")

    def payment_succeeded(self, event: PaymentIntentSucceededEvent) -> ReconcileResult:
        """
        Complete a per-CV purchase once its payment settles.

        This event may arrive before ``checkout.session.completed``. The
        PaymentIntent carries the same metadata as its session, so the
        purchase is recorded as completed here and the later session event
        finds it already done.
        """
        intent = event.data.obj
        purchase = (
            Purchase.objects.filter(stripe_payment_intent_id=intent.id)
            .only("id", "status", "resume_id")
            .first()
        )
        if purchase is not None:
            return self._settle_purchase(purchase, intent.id)

        if intent.metadata.get("type") != CV_PURCHASE_METADATA_TYPE:
            # Subscription payments have no Purchase row.
            return ReconcileResult.noop(f"no purchase for payment intent {intent.id}")

        target = self._purchase_target(
            event,
            customer=intent.customer,
            metadata=intent.metadata,
            source=f"payment intent {intent.id}",
        )
        if isinstance(target, ReconcileResult):
            return target
        account, resume = target

        changed = self._record_purchase(
            account,
            resume,
            payment_intent_id=intent.id,
            defaults={"amount": intent.amount, "currency": intent.currency or "ron"},
            paid=True,
            now=self.clock(),
        )
        if not changed:
            return ReconcileResult.noop(f"purchase for {intent.id} already completed")

        logger.info(
            "payment_intent.succeeded: recorded purchase %s for resume %s before checkout",
            intent.id,
            resume.pk,
        )
        return ReconcileResult.applied(f"completed purchase {intent.id}")

    def _settle_purchase(self, purchase: Purchase, intent_id: str) -> ReconcileResult:
        if purchase.status == PurchaseStatus.COMPLETED:
            return ReconcileResult.noop(f"purchase for {intent_id} already completed")

        now = self.clock()
        with transaction.atomic():
            completed = self._complete_purchase(purchase.pk, now)
            if completed and purchase.resume_id:
                self._mark_resume_purchased(purchase.resume_id, now)

        if not completed:
            return ReconcileResult.noop(f"purchase for {intent_id} already completed")

        logger.info("payment_intent.succeeded: completed purchase %s", intent_id)
        return ReconcileResult.applied(f"completed purchase {intent_id}")

    def _purchase_target(
        self,
        event,
        *,
        customer: str | None,
        metadata: dict[str, str],
        source: str,
    ) -> tuple[Account, Resume] | ReconcileResult:
        """Resolve the buying account and the owned résumé, or say why not."""
        try:
            resume_id = uuid.UUID(metadata.get("resumeId", ""))
        except ValueError:
            return self._terminal(event, f"{source} has no valid resumeId")

        if not customer:
            return self._terminal(event, f"{source} has no customer")

        account = find_account_by_customer(customer)
        if account is None:
            return self._retry(event, f"no account for customer {customer} yet")

        resume = Resume.objects.filter(pk=resume_id).only("id", "owner_id").first()
        if resume is None:
            return self._terminal(event, f"resume {resume_id} does not exist")
        if resume.owner_id != account.user_id:
            logger.warning(
                "SECURITY: %s links resume %s to customer %s which does not own it",
                source,
                resume_id,
                customer,
            )
            return self._terminal(
                event,
                f"resume {resume_id} is not owned by customer {customer}",
            )
        return account, resume

    def _record_purchase(
        self,
        account: Account,
        resume: Resume,
        *,
        payment_intent_id: str | None,
        defaults: dict,
        paid: bool,
        now: datetime,
    ) -> bool:
        """
        Upsert the purchase and, when paid, grant the export in one transaction.

        A completed row is never moved back to PENDING. Returns whether
        anything changed.
        """
        with transaction.atomic():
            changed = False
            if payment_intent_id:
                purchase, created = Purchase.objects.get_or_create(
                    stripe_payment_intent_id=payment_intent_id,
                    defaults={
                        **defaults,
                        "account": account,
                        "resume": resume,
                        "status": (
                            PurchaseStatus.COMPLETED if paid else PurchaseStatus.PENDING
                        ),
                        "completed_at": now if paid else None,
                    },
                )
                changed = created
                if paid and not created:
                    changed |= bool(self._complete_purchase(purchase.pk, now))
                if not created and defaults.get("stripe_checkout_session_id"):
                    Purchase.objects.filter(
                        pk=purchase.pk,
                        stripe_checkout_session_id="",
                    ).update(stripe_checkout_session_id=defaults["stripe_checkout_session_id"])
            if paid:
                changed |= bool(self._mark_resume_purchased(resume.pk, now))
        return changed

    # ==========================================================================
    # Subscriptions
    # ==========================================================================

    def subscription_changed(self, event: SubscriptionChangedEvent) -> ReconcileResult:
        """Copy status and period end from a created/updated subscription."""
        subscription = event.data.obj
        account = find_account_by_customer(subscription.customer)
        if account is None:
            return self._retry(
                event,
                f"no account for customer {subscription.customer} yet",
            )

        status = map_subscription_status(subscription.status)
        values = {
            "status": status,
            "stripe_subscription_id": subscription.id,
            "subscription_event_at": event.created,
            "modified": self.clock(),
        }
        if subscription.period_end is not None:
            values["current_period_end"] = subscription.period_end

        updated = (
            Account.objects.filter(pk=account.pk)
            .filter(_supersedes(event.created, subscription.period_end, status))
            .update(**values)
        )
        if not updated:
            logger.info(
                "%s: skipped stale event %s for customer %s",
                event.type,
                event.id,
                subscription.customer,
            )
            return ReconcileResult.noop(f"event {event.id} is older than applied state")

        logger.info(
            "%s: customer=%s, subscription=%s, status=%s, period_end=%s",
            event.type,
            subscription.customer,
            subscription.id,
            status,
            subscription.period_end,
        )
        return ReconcileResult.applied(f"account {account.pk} is now {status}")

    def subscription_deleted(self, event: SubscriptionDeletedEvent) -> ReconcileResult:
        """
        Cancel the account.

        The stored period end is kept so the wind-down window stays visible.
        Stripe's value is only used when we never stored one.
        """
        subscription = event.data.obj
        account = find_account_by_customer(subscription.customer)
        if account is None:
            # Deleting a subscription for an account we never had, or one
            # already gone, needs no action.
            return self._terminal(event, f"no account for customer {subscription.customer}")

        values = {
            "status": SubscriptionStatus.CANCELLED,
            "subscription_event_at": event.created,
            "modified": self.clock(),
        }
        if subscription.period_end is not None:
            values["current_period_end"] = Coalesce(
                "current_period_end",
                Value(subscription.period_end, output_field=DateTimeField()),
            )

        updated = (
            Account.objects.filter(pk=account.pk)
            .filter(
                _supersedes(
                    event.created,
                    subscription.period_end,
                    SubscriptionStatus.CANCELLED,
                ),
            )
            .update(**values)
        )
        if not updated:
            return ReconcileResult.noop(f"event {event.id} is older than applied state")

        logger.info(
            "customer.subscription.deleted: customer=%s, subscription=%s",
            subscription.customer,
            subscription.id,
        )
        return ReconcileResult.applied(f"account {account.pk} cancelled")

    # ==========================================================================
    # Invoices
    # ==========================================================================

    def invoice_paid(self, event: InvoicePaidEvent) -> ReconcileResult:
        """Reactivate the account and start a fresh AI credit period."""
        invoice = event.data.obj
        if not invoice.subscription_id:
            return ReconcileResult.noop(f"invoice {invoice.id} is not for a subscription")

        account = find_account_by_customer(invoice.customer)
        if account is None:
            return self._retry(event, f"no account for customer {invoice.customer} yet")

        now = self.clock()
        with transaction.atomic():
            Account.objects.filter(pk=account.pk).update(
                status=SubscriptionStatus.ACTIVE,
                modified=now,
            )
            reset_ai_credits(account.pk, now=now)
        logger.info(
            "invoice.paid: customer=%s, amount=%s, subscription=%s",
            invoice.customer,
            invoice.amount_paid,
            invoice.subscription_id,
        )
        return ReconcileResult.applied(f"account {account.pk} active, credits reset")

    def invoice_payment_failed(self, event: InvoicePaymentFailedEvent) -> ReconcileResult:
        invoice = event.data.obj
        if not invoice.subscription_id:
            return ReconcileResult.noop(f"invoice {invoice.id} is not for a subscription")

        account = find_account_by_customer(invoice.customer)
        if account is None:
            return self._terminal(event, f"no account for customer {invoice.customer}")

        Account.objects.filter(pk=account.pk).update(
            status=SubscriptionStatus.PAST_DUE,
            modified=self.clock(),
        )
        logger.warning(
            "invoice.payment_failed: customer=%s, amount_due=%s",
            invoice.customer,
            invoice.amount_due,
        )
        return ReconcileResult.applied(f"account {account.pk} past due")

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _complete_purchase(self, purchase_id: int, now: datetime) -> int:
        return Purchase.objects.filter(
            pk=purchase_id,
            status=PurchaseStatus.PENDING,
        ).update(status=PurchaseStatus.COMPLETED, completed_at=now, modified=now)

    def _mark_resume_purchased(self, resume_id, now: datetime) -> int:
        return Resume.objects.filter(pk=resume_id, is_purchased=False).update(
            is_purchased=True,
            purchased_at=now,
        )

    def _retry(self, event, detail: str) -> ReconcileResult:
        logger.warning("%s %s will be retried: %s", event.type, event.id, detail)
        return ReconcileResult.from_error(RaceConditionError(detail))

    def _terminal(self, event, detail: str) -> ReconcileResult:
        logger.error("%s %s cannot be applied: %s", event.type, event.id, detail)
        return ReconcileResult.from_error(TerminalAbsenceError(detail))
