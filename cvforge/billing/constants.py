"""
Billing constants for subscriptions, purchases and AI credits.

These enums define the stored subscription states, the one-way purchase
lifecycle, the webhook ledger states and the derived access levels used
throughout the billing module.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class SubscriptionStatus(models.TextChoices):
    """
    Stored subscription states.

    Only reconciled Stripe events move an account between these states:
        TRIAL → ACTIVE (subscription created / invoice paid)
        ACTIVE → PAST_DUE (invoice payment failed)
        PAST_DUE → ACTIVE (invoice paid)
        any → CANCELLED (subscription canceled, unpaid or deleted)

    "Expired" and "no access" are never stored. They are derived by
    ``calculate_access`` from these states plus the trial and period clocks.
    """

    TRIAL = "TRIAL", _("Trial")
    ACTIVE = "ACTIVE", _("Active")
    PAST_DUE = "PAST_DUE", _("Past Due")
    CANCELLED = "CANCELLED", _("Cancelled")


class PurchaseStatus(models.TextChoices):
    """One-time purchase lifecycle. PENDING → COMPLETED, never back."""

    PENDING = "PENDING", _("Pending")
    COMPLETED = "COMPLETED", _("Completed")


class WebhookEventStatus(models.TextChoices):
    """
    Ledger state of an inbound Stripe event.

    FAILED events are still being redelivered by Stripe. DEAD_LETTERED
    events exhausted our retry limit and wait for ``replay_webhook_events``.
    """

    RECEIVED = "RECEIVED", _("Received")
    PROCESSED = "PROCESSED", _("Processed")
    IGNORED = "IGNORED", _("Ignored")
    FAILED = "FAILED", _("Failed")
    DEAD_LETTERED = "DEAD_LETTERED", _("Dead-lettered")


class AccessLevel(models.TextChoices):
    """Derived access levels returned by the entitlement calculator."""

    FULL = "full", _("Full")
    TRIAL = "trial", _("Trial")
    EXPIRED = "expired", _("Expired")
    NONE = "none", _("None")


class PriceType(models.TextChoices):
    """What a checkout session is being created for."""

    MONTHLY = "monthly", _("Monthly subscription")
    YEARLY = "yearly", _("Yearly subscription")
    PER_CV = "per_cv", _("Single CV export")


# Trial duration in days, applied once at account provisioning
TRIAL_DURATION_DAYS = 14

# Days after the paid period ends that a PAST_DUE account keeps editing access
PAST_DUE_GRACE_DAYS = 7

# Monthly AI generation allowance per stored status
AI_CREDIT_LIMITS = {
    SubscriptionStatus.TRIAL: 10,
    SubscriptionStatus.ACTIVE: 50,
    SubscriptionStatus.PAST_DUE: 50,
    SubscriptionStatus.CANCELLED: 0,
}

# Checkout session metadata marking a one-time CV export purchase
CV_PURCHASE_METADATA_TYPE = "cv_purchase"

# Checkout payment_status values that mean the money has been collected
PAID_CHECKOUT_STATUSES = frozenset({"paid", "no_payment_required"})
