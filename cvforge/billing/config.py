"""
Explicit Stripe configuration.

Everything that talks to Stripe (the webhook signature verifier, the
webhook processor, the checkout service) receives a ``StripeConfig``
instead of reading settings or a module-level client on its own. Tests build
one directly; request handling builds one from Django settings.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: str
    webhook_tolerance: int = 300
    price_monthly: str = ""
    price_yearly: str = ""
    per_cv_amount: int = 999
    per_cv_currency: str = "ron"

    @classmethod
    def from_settings(cls) -> StripeConfig:
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            webhook_tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
            price_monthly=settings.STRIPE_PRICE_MONTHLY,
            price_yearly=settings.STRIPE_PRICE_YEARLY,
            per_cv_amount=settings.STRIPE_PER_CV_AMOUNT,
            per_cv_currency=settings.STRIPE_PER_CV_CURRENCY,
        )

    @property
    def is_configured(self) -> bool:
        """True when API calls to Stripe can be made."""
        return bool(self.secret_key)

    def subscription_price_id(self, price_type: str) -> str:
        """Stripe Price ID for a subscription price type, or "" if unset."""
        return {
            "monthly": self.price_monthly,
            "yearly": self.price_yearly,
        }.get(price_type, "")
