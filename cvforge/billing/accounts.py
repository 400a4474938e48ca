"""
Billing account provisioning and lookup.

Every user gets exactly one ``Account``. It is created the first time the
user is seen (the user post_save signal, or the access middleware for users
that predate billing) and starts a 14-day trial at that moment.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta

from django.utils import timezone

from cvforge.billing.constants import TRIAL_DURATION_DAYS
from cvforge.billing.constants import SubscriptionStatus
from cvforge.billing.models import Account

logger = logging.getLogger(__name__)


def provision_account(user, *, now: datetime | None = None) -> Account:
    """
    Return the user's billing account, creating it on first contact.

    Idempotent: a second call (or a concurrent one) returns the existing
    row and never moves ``trial_ends_at``.
    """
    now = now or timezone.now()
    account, created = Account.objects.get_or_create(
        user=user,
        defaults={
            "status": SubscriptionStatus.TRIAL,
            "trial_ends_at": now + timedelta(days=TRIAL_DURATION_DAYS),
            "ai_credits_reset_at": now,
        },
    )
    if created:
        logger.info(
            "Provisioned billing account %s for user %s (trial ends %s)",
            account.pk,
            user.pk,
            account.trial_ends_at.isoformat(),
        )
    return account


def find_account_by_customer(customer_id: str | None) -> Account | None:
    """Look up the account linked to a Stripe customer id."""
    if not customer_id:
        return None
    return Account.objects.filter(stripe_customer_id=customer_id).first()
