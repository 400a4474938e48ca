"""
Billing service for Stripe operations.

This service provides a clean interface for:
- Creating Stripe checkout sessions (subscriptions and per-CV purchases)
- Managing Stripe Customer Portal (self-service management)
- Getting or creating Stripe customers

We use Stripe Checkout (not custom payment forms) for PCI compliance.
Nothing here changes subscription state: that only happens when the
resulting webhooks are reconciled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import stripe

from cvforge.billing.config import StripeConfig
from cvforge.billing.constants import CV_PURCHASE_METADATA_TYPE
from cvforge.billing.models import Account

if TYPE_CHECKING:
    from cvforge.resumes.models import Resume

logger = logging.getLogger(__name__)


class BillingService:
    """
    Service for Stripe billing operations.

    Every call passes the API key explicitly; no global Stripe client state
    is configured.

    Usage:
        service = BillingService(StripeConfig.from_settings())
        checkout_url = service.create_subscription_checkout(
            account=account,
            price_id=config.price_monthly,
            success_url="https://example.com/dashboard?checkout=success",
            cancel_url="https://example.com/billing?checkout=cancelled",
        )
    """

    def __init__(self, config: StripeConfig):
        self.config = config

    def get_or_create_stripe_customer(self, account: Account) -> str:
        """
        Get existing Stripe customer or create a new one.

        Returns the Stripe customer ID (cus_xxx). Concurrent first checkouts
        share one customer through the idempotency key.
        """
        if account.stripe_customer_id:
            return account.stripe_customer_id

        user = account.user
        customer = stripe.Customer.create(
            api_key=self.config.secret_key,
            idempotency_key=f"cvforge-customer-{account.pk}",
            email=user.email,
            name=getattr(user, "name", "") or None,
            metadata={"user_id": str(user.pk)},
        )

        stored = Account.objects.filter(
            pk=account.pk,
            stripe_customer_id__isnull=True,
        ).update(stripe_customer_id=customer.id)
        if not stored:
            account.refresh_from_db(fields=["stripe_customer_id"])
            return account.stripe_customer_id
        account.stripe_customer_id = customer.id

        logger.info(
            "Created Stripe customer %s for account %s",
            customer.id,
            account.pk,
        )
        return customer.id

    def create_subscription_checkout(
        self,
        account: Account,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a Stripe Checkout session for a subscription.

        Returns the checkout session URL to redirect the user to.

        Raises:
            ValueError: If no price id is given
        """
        if not price_id:
            msg = "Subscription price is not configured"
            raise ValueError(msg)

        customer_id = self.get_or_create_stripe_customer(account)
        session = stripe.checkout.Session.create(
            api_key=self.config.secret_key,
            customer=customer_id,
            mode="subscription",
            line_items=[
                {
                    "price": price_id,
                    "quantity": 1,
                },
            ],
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=str(account.user_id),
            # Allow promotion codes
            allow_promotion_codes=True,
            # Collect billing address for tax purposes
            billing_address_collection="auto",
        )

        logger.info(
            "Created subscription checkout session %s for account %s, price %s",
            session.id,
            account.pk,
            price_id,
        )
        return session.url

    def create_cv_purchase_checkout(
        self,
        account: Account,
        resume: Resume,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a one-time payment Checkout session for a single CV export.

        The session and its PaymentIntent both carry the résumé id in their
        metadata; whichever webhook arrives first grants the export.
        Callers must have verified that the account owns the résumé.
        """
        customer_id = self.get_or_create_stripe_customer(account)
        metadata = {
            "resumeId": str(resume.pk),
            "type": CV_PURCHASE_METADATA_TYPE,
        }
        session = stripe.checkout.Session.create(
            api_key=self.config.secret_key,
            customer=customer_id,
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": self.config.per_cv_currency,
                        "product_data": {
                            "name": "CV Export",
                            "description": "One-time CV export to PDF and Word",
                        },
                        "unit_amount": self.config.per_cv_amount,
                    },
                    "quantity": 1,
                },
            ],
            metadata=metadata,
            # payment_intent.succeeded can arrive before the session event
            payment_intent_data={"metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=str(account.user_id),
        )

        logger.info(
            "Created CV purchase checkout session %s for account %s, resume %s",
            session.id,
            account.pk,
            resume.pk,
        )
        return session.url

    def get_customer_portal_url(self, account: Account, return_url: str) -> str:
        """
        Get a Stripe Customer Portal URL for self-service management.

        The portal allows customers to:
        - Update payment methods
        - View invoices and payment history
        - Cancel or modify their subscription

        Raises:
            ValueError: If the account has never been through checkout
        """
        if not account.stripe_customer_id:
            msg = "Account has no Stripe customer"
            raise ValueError(msg)

        session = stripe.billing_portal.Session.create(
            api_key=self.config.secret_key,
            customer=account.stripe_customer_id,
            return_url=return_url,
        )

        logger.info("Created portal session for account %s", account.pk)
        return session.url
