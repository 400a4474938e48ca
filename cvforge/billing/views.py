"""
Billing API endpoints.

- ``StripeWebhookView``: the Stripe webhook receiver. Authenticated by
  signature only, so DRF authentication and CSRF are off.
- ``CheckoutSessionView`` / ``CustomerPortalView``: thin wrappers around
  ``BillingService`` that return a Stripe-hosted URL.
- ``AccessStatusView``: the current user's access decision and AI usage.

All errors are returned as ``{"error": "..."}``.
"""

from __future__ import annotations

import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from cvforge.billing.accounts import provision_account
from cvforge.billing.config import StripeConfig
from cvforge.billing.constants import PriceType
from cvforge.billing.entitlements import get_access
from cvforge.billing.errors import CheckoutError
from cvforge.billing.errors import MalformedEventError
from cvforge.billing.errors import SignatureInvalidError
from cvforge.billing.metering import AICreditMeter
from cvforge.billing.models import Account
from cvforge.billing.serializers import CheckoutRequestSerializer
from cvforge.billing.services import BillingService
from cvforge.billing.webhooks import WebhookProcessor
from cvforge.resumes.models import Resume

logger = logging.getLogger(__name__)


def _unauthorized() -> Response:
    return Response({"error": "Unauthorized"}, status=status.HTTP_401_UNAUTHORIZED)


class StripeWebhookView(APIView):
    """
    Receive Stripe webhook deliveries.

    URL: /billing/webhooks/stripe/
    Method: POST
    Authentication: Stripe-Signature header (HMAC of the raw body)

    Responses:
        200 {"received": true}  processed, duplicate, ignored or dead-lettered
        400 {"error": ...}      bad signature or unreadable payload
        500 {"error": ...}      retryable failure; Stripe will redeliver
    """

    # The signature is the only credential; DRF auth (and its CSRF check) is off.
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        processor = WebhookProcessor(StripeConfig.from_settings())
        try:
            delivery = processor.handle(
                request.body,
                request.headers.get("Stripe-Signature"),
            )
        except (SignatureInvalidError, MalformedEventError) as exc:
            return Response({"error": exc.detail}, status=status.HTTP_400_BAD_REQUEST)

        if delivery.should_retry:
            return Response(
                {"error": "Webhook handler failed"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response({"received": True})


class CheckoutSessionView(APIView):
    """
    Create a Stripe Checkout session.

    Body: {"priceType": "monthly" | "yearly" | "per_cv", "resumeId": "<uuid>"}
    Returns: {"url": "<stripe checkout url>"}

    For per-CV purchases the résumé must exist and belong to the caller; this
    is checked before anything is sent to Stripe.
    """

    permission_classes = []

    def post(self, request):
        if not request.user.is_authenticated:
            return _unauthorized()

        serializer = CheckoutRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": serializer.error_message()},
                status=status.HTTP_400_BAD_REQUEST,
            )

        config = StripeConfig.from_settings()
        account = provision_account(request.user)
        try:
            url = self._create_session(
                config,
                account,
                serializer.validated_data["priceType"],
                serializer.validated_data.get("resumeId"),
            )
        except CheckoutError as exc:
            return Response({"error": exc.detail}, status=exc.status)
        except Exception:
            logger.exception("Checkout error for user %s", request.user.pk)
            return Response(
                {"error": "Failed to create checkout session"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response({"url": url})

    def _create_session(self, config, account, price_type, resume_id) -> str:
        base_url = settings.APP_BASE_URL.rstrip("/")
        service = BillingService(config)

        if price_type == PriceType.PER_CV:
            resume = self._owned_resume(account, resume_id)
            self._require_configured(config)
            return service.create_cv_purchase_checkout(
                account=account,
                resume=resume,
                success_url=f"{base_url}/editor/{resume.pk}?payment=success",
                cancel_url=f"{base_url}/editor/{resume.pk}?payment=cancelled",
            )

        price_id = config.subscription_price_id(price_type)
        if not price_id:
            raise CheckoutError(
                "Price not configured. Please contact support.",
                status=status.HTTP_400_BAD_REQUEST,
            )
        self._require_configured(config)
        return service.create_subscription_checkout(
            account=account,
            price_id=price_id,
            success_url=f"{base_url}/dashboard?checkout=success",
            cancel_url=f"{base_url}/billing?checkout=cancelled",
        )

    def _owned_resume(self, account, resume_id) -> Resume:
        if resume_id is None:
            raise CheckoutError("Invalid resume ID", status=status.HTTP_400_BAD_REQUEST)

        resume = Resume.objects.filter(pk=resume_id).first()
        if resume is None:
            raise CheckoutError("Resume not found", status=status.HTTP_404_NOT_FOUND)

        if resume.owner_id != account.user_id:
            logger.warning(
                "SECURITY: Ownership violation - user %s tried to buy resume %s",
                account.user_id,
                resume_id,
            )
            raise CheckoutError("Access denied", status=status.HTTP_403_FORBIDDEN)
        return resume

    def _require_configured(self, config: StripeConfig) -> None:
        if not config.is_configured:
            logger.error("Checkout requested but STRIPE_SECRET_KEY is not set")
            raise CheckoutError(
                "Payments are not available right now.",
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )


class CustomerPortalView(APIView):
    """
    Create a Stripe Customer Portal session.

    Returns: {"url": "<stripe portal url>"}
    """

    permission_classes = []

    def post(self, request):
        if not request.user.is_authenticated:
            return _unauthorized()

        account = Account.objects.filter(user=request.user).first()
        if account is None or not account.stripe_customer_id:
            return Response(
                {"error": "No billing account found"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        return_url = f"{settings.APP_BASE_URL.rstrip('/')}/billing"
        try:
            url = BillingService(StripeConfig.from_settings()).get_customer_portal_url(
                account,
                return_url=return_url,
            )
        except Exception:
            logger.exception("Portal session error for user %s", request.user.pk)
            return Response(
                {"error": "Failed to create portal session"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response({"url": url})


class AccessStatusView(APIView):
    """Current access decision and AI credit usage for the signed-in user."""

    permission_classes = []

    def get(self, request):
        if not request.user.is_authenticated:
            return _unauthorized()

        decision = get_access(request.user)
        usage = AICreditMeter().get_usage(request.user)
        return Response(
            {
                "access": decision.as_dict(),
                "ai_credits": usage.as_dict() if usage else None,
            },
        )
