"""
Entitlement calculation.

``calculate_access`` is a pure function of the stored subscription state
and a clock. It is recomputed on every request; nothing derived from it is
ever written back, so an account's access changes the moment a trial or
period ends without any scheduled job.

Access table, evaluated in order (now = the instant being evaluated):

    ACTIVE      full, every capability
    TRIAL       trial, every capability, while now < trial_ends_at
    PAST_DUE    trial, edit only, while now < current_period_end + 7 days
    CANCELLED   trial, every capability, while now < current_period_end
    otherwise   expired, nothing
"""

from __future__ import annotations

import math
from dataclasses import asdict
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta

from django.utils import timezone

from cvforge.billing.constants import PAST_DUE_GRACE_DAYS
from cvforge.billing.constants import AccessLevel
from cvforge.billing.constants import SubscriptionStatus
from cvforge.billing.models import Account

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class AccessDecision:
    level: AccessLevel
    days_remaining: int = 0
    can_edit: bool = False
    can_export: bool = False
    can_use_ai: bool = False
    message: str = ""

    @property
    def is_expired(self) -> bool:
        return self.level in (AccessLevel.EXPIRED, AccessLevel.NONE)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["level"] = str(self.level)
        return data


NO_ACCOUNT = AccessDecision(
    level=AccessLevel.NONE,
    message="No billing account found.",
)


def days_until(end: datetime, now: datetime) -> int:
    """Whole days left until ``end``, rounded up. Zero once ``end`` passes."""
    seconds = (end - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / SECONDS_PER_DAY)


def calculate_access(
    status: str,
    trial_ends_at: datetime,
    current_period_end: datetime | None,
    now: datetime,
) -> AccessDecision:
    """
    Decide what an account may do at ``now``.

    Deterministic: the same inputs always produce the same decision.
    """
    if status == SubscriptionStatus.ACTIVE:
        return AccessDecision(
            level=AccessLevel.FULL,
            can_edit=True,
            can_export=True,
            can_use_ai=True,
            message="Your subscription is active.",
        )

    if status == SubscriptionStatus.TRIAL and now < trial_ends_at:
        days = days_until(trial_ends_at, now)
        return AccessDecision(
            level=AccessLevel.TRIAL,
            days_remaining=days,
            can_edit=True,
            can_export=True,
            can_use_ai=True,
            message=f"{days} day(s) left in your free trial.",
        )

    if status == SubscriptionStatus.PAST_DUE and current_period_end is not None:
        grace_ends_at = current_period_end + timedelta(days=PAST_DUE_GRACE_DAYS)
        if now < grace_ends_at:
            return AccessDecision(
                level=AccessLevel.TRIAL,
                can_edit=True,
                message="Payment failed. Please update your payment method.",
            )

    if (
        status == SubscriptionStatus.CANCELLED
        and current_period_end is not None
        and now < current_period_end
    ):
        days = days_until(current_period_end, now)
        return AccessDecision(
            level=AccessLevel.TRIAL,
            days_remaining=days,
            can_edit=True,
            can_export=True,
            can_use_ai=True,
            message=f"Subscription cancelled. Access ends in {days} day(s).",
        )

    return AccessDecision(
        level=AccessLevel.EXPIRED,
        message="Your trial has expired. Upgrade to continue.",
    )


def _load_state(user) -> dict | None:
    if user is None or user.pk is None:
        return None
    return (
        Account.objects.filter(user_id=user.pk)
        .values("status", "trial_ends_at", "current_period_end")
        .first()
    )


def get_access(user, now: datetime | None = None) -> AccessDecision:
    """
    Full access decision for a user.

    Usage:
        decision = get_access(request.user)
        if not decision.can_export:
            ...
    """
    state = _load_state(user)
    if state is None:
        return NO_ACCOUNT
    return calculate_access(now=now or timezone.now(), **state)


def is_expired(user, now: datetime | None = None) -> bool:
    """Fast-path gate: True when the user has no editing access at all."""
    state = _load_state(user)
    if state is None:
        return True
    return calculate_access(now=now or timezone.now(), **state).is_expired
