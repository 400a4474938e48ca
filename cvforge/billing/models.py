"""
Billing models for CVForge.

Key design decisions:
- Account is 1:1 with User and is the only place subscription state lives
- Stored status is one of four values; expiry is derived, never stored
- Purchase is keyed by the Stripe PaymentIntent id so a repeated webhook
  can never create a second row for the same payment
- WebhookEvent is the ledger of every authenticated Stripe delivery and
  doubles as the dead-letter store

Relationship: User ──1:1── Account ──1:N── Purchase ──N:1── Resume
"""

from django.conf import settings
from django.db import models
from django.utils import timezone
from model_utils.models import TimeStampedModel

from cvforge.billing.constants import PurchaseStatus
from cvforge.billing.constants import SubscriptionStatus
from cvforge.billing.constants import WebhookEventStatus


class Account(TimeStampedModel):
    """
    Billing account for a user.

    Created exactly once, the first time the user is seen, with a 14-day
    trial. After that only reconciled Stripe events change ``status`` and
    ``current_period_end``; ``trial_ends_at`` never changes again.

    Usage:
        account = user.billing_account
        decision = calculate_access(
            account.status, account.trial_ends_at, account.current_period_end, now
        )
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="billing_account",
    )
    status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.TRIAL,
    )
    trial_ends_at = models.DateTimeField(
        help_text="End of the free trial. Set once at provisioning.",
    )
    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the current paid period, as last reported by Stripe.",
    )

    # Stripe integration
    stripe_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Customer ID (cus_xxx). Null until first checkout.",
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Subscription ID (sub_xxx).",
    )
    subscription_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text=(
            "Stripe creation time of the newest subscription event applied. "
            "Older subscription events are skipped."
        ),
    )

    # AI credits
    ai_credits_used = models.PositiveIntegerField(
        default=0,
        help_text="AI generations consumed in the current billing period.",
    )
    ai_credits_reset_at = models.DateTimeField(
        default=timezone.now,
        help_text="When ai_credits_used was last reset to zero.",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status"], name="billing_acc_status_5b0c1e_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.user} - {self.get_status_display()}"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_trial_ends_at = instance.__dict__.get("trial_ends_at")
        return instance

    def save(self, *args, **kwargs):
        loaded = getattr(self, "_loaded_trial_ends_at", None)
        if loaded is not None and loaded != self.trial_ends_at:
            raise ValueError("trial_ends_at cannot be changed once set.")
        super().save(*args, **kwargs)
        self._loaded_trial_ends_at = self.trial_ends_at


class Purchase(TimeStampedModel):
    """
    One-time per-CV export purchase.

    At most one row exists per Stripe PaymentIntent. Status only moves
    PENDING → COMPLETED.
    """

    account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        related_name="purchases",
    )
    resume = models.ForeignKey(
        "resumes.Resume",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchases",
    )
    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx).",
    )
    stripe_checkout_session_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Checkout Session ID (cs_xxx).",
    )
    amount = models.PositiveIntegerField(
        default=0,
        help_text="Amount charged, in the currency's minor unit.",
    )
    currency = models.CharField(max_length=3, default="ron")
    status = models.CharField(
        max_length=20,
        choices=PurchaseStatus.choices,
        default=PurchaseStatus.PENDING,
    )
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created"]

    def __str__(self) -> str:
        return f"{self.stripe_payment_intent_id} ({self.get_status_display()})"


class WebhookEvent(TimeStampedModel):
    """
    Ledger entry for an authenticated Stripe event.

    ``created`` is when the event was first received. Retries increment
    ``attempts``; once the retry limit is reached the event is
    DEAD_LETTERED and acknowledged so Stripe stops redelivering it.
    """

    stripe_event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.RECEIVED,
    )
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    payload = models.JSONField(default=dict)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created"]
        indexes = [
            models.Index(fields=["status"], name="billing_web_status_8e2f4a_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.event_type} {self.stripe_event_id}"
