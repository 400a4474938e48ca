"""
AI credit metering.

Each account has a monthly allowance of AI generations that depends only on
its stored status. Consumption is a single conditional UPDATE so two
concurrent requests can never push ``ai_credits_used`` past the limit; the
counter goes back to zero only when an invoice is paid.

Usage:
    # Before calling the AI provider
    remaining = AICreditMeter().consume(request.user)

    # For display
    usage = AICreditMeter().get_usage(request.user)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from django.db.models import F
from django.utils import timezone

from cvforge.billing.constants import AI_CREDIT_LIMITS
from cvforge.billing.entitlements import calculate_access
from cvforge.billing.errors import BillingError
from cvforge.billing.models import Account

logger = logging.getLogger(__name__)

# A status change between our read and our conditional update changes the
# limit, so the update is retried against the fresh row this many times.
MAX_CONSUME_ATTEMPTS = 3


# =============================================================================
# Helper Functions
# =============================================================================


def get_ai_credit_limit(status: str) -> int:
    """Monthly AI generation limit for a stored subscription status."""
    return AI_CREDIT_LIMITS.get(status, 0)


def remaining_credits(status: str, used: int) -> int:
    return max(0, get_ai_credit_limit(status) - used)


def reset_ai_credits(account_id: int, *, now: datetime | None = None) -> None:
    """Start a fresh credit period. Only invoice reconciliation calls this."""
    now = now or timezone.now()
    Account.objects.filter(pk=account_id).update(
        ai_credits_used=0,
        ai_credits_reset_at=now,
    )


# =============================================================================
# Exceptions
# =============================================================================


class AIAccessDeniedError(BillingError):
    """Raised when the account's access level does not include AI features."""

    def __init__(self, detail: str = "AI features are not available on your plan."):
        super().__init__(detail, code="ai_access_denied")


class AICreditLimitError(BillingError):
    """Raised when consuming credits would exceed the monthly limit."""

    def __init__(self, limit: int, used: int):
        self.limit = limit
        self.used = used
        super().__init__(
            f"You have used all {limit} AI generations for this billing period.",
            code="ai_credit_limit",
        )


# =============================================================================
# Meter
# =============================================================================


@dataclass(frozen=True)
class AIUsage:
    status: str
    used: int
    limit: int
    remaining: int
    reset_at: datetime

    def as_dict(self) -> dict:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat(),
        }


class AICreditMeter:
    """
    Tracks AI generations against the status-derived monthly limit.
    """

    def get_usage(self, user) -> AIUsage | None:
        account = (
            Account.objects.filter(user_id=user.pk)
            .only("status", "ai_credits_used", "ai_credits_reset_at")
            .first()
        )
        if account is None:
            return None
        return AIUsage(
            status=account.status,
            used=account.ai_credits_used,
            limit=get_ai_credit_limit(account.status),
            remaining=remaining_credits(account.status, account.ai_credits_used),
            reset_at=account.ai_credits_reset_at,
        )

    def consume(self, user, amount: int = 1, *, now: datetime | None = None) -> int:
        """
        Use ``amount`` AI credits and return how many remain.

        Raises:
            AIAccessDeniedError: If the user's current access level does not
                allow AI features.
            AICreditLimitError: If the limit would be exceeded.
        """
        if amount < 1:
            raise ValueError("amount must be a positive integer")
        now = now or timezone.now()

        for _attempt in range(MAX_CONSUME_ATTEMPTS):
            account = (
                Account.objects.filter(user_id=user.pk)
                .only(
                    "status",
                    "trial_ends_at",
                    "current_period_end",
                    "ai_credits_used",
                )
                .first()
            )
            if account is None:
                raise AIAccessDeniedError("No billing account found.")

            decision = calculate_access(
                account.status,
                account.trial_ends_at,
                account.current_period_end,
                now,
            )
            if not decision.can_use_ai:
                raise AIAccessDeniedError(decision.message)

            limit = get_ai_credit_limit(account.status)
            updated = Account.objects.filter(
                pk=account.pk,
                status=account.status,
                ai_credits_used__lte=limit - amount,
            ).update(ai_credits_used=F("ai_credits_used") + amount)
            if updated:
                used = Account.objects.values_list("ai_credits_used", flat=True).get(
                    pk=account.pk,
                )
                return max(0, limit - used)

            if not Account.objects.filter(pk=account.pk, status=account.status).exists():
                # Status changed underneath us; re-evaluate with the new limit.
                continue

            logger.info(
                "AI credit limit reached for account %s (limit=%s)",
                account.pk,
                limit,
            )
            raise AICreditLimitError(limit=limit, used=account.ai_credits_used)

        raise AICreditLimitError(limit=limit, used=account.ai_credits_used)
