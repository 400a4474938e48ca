"""
Tests for billing views.

Tests CheckoutSessionView, CustomerPortalView and AccessStatusView. Stripe
is never called: BillingService is patched where the views use it.
"""

import uuid
from unittest.mock import MagicMock
from unittest.mock import patch

import stripe
from django.test import TestCase
from django.test import override_settings
from django.urls import reverse
from rest_framework.test import APIClient

from cvforge.billing.constants import AccessLevel
from cvforge.billing.tests.factories import account_for
from cvforge.resumes.tests.factories import ResumeFactory


@override_settings(
    STRIPE_SECRET_KEY="sk_test_views",
    STRIPE_PRICE_MONTHLY="price_test_monthly",
    STRIPE_PRICE_YEARLY="",
    APP_BASE_URL="http://testserver",
)
class CheckoutSessionViewTests(TestCase):
    """Tests for POST /billing/checkout/."""

    def setUp(self):
        self.url = reverse("billing:checkout")
        self.account = account_for()
        self.user = self.account.user
        self.client = APIClient()
        self.client.force_authenticate(self.user)

    def test_anonymous_is_unauthorized(self):
        response = APIClient().post(self.url, {"priceType": "monthly"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Unauthorized"})

    def test_invalid_price_type(self):
        response = self.client.post(self.url, {"priceType": "weekly"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Invalid price type"})

    @patch("cvforge.billing.views.BillingService")
    def test_monthly_subscription_checkout(self, mock_service_class):
        mock_service = MagicMock()
        mock_service.create_subscription_checkout.return_value = "https://checkout.stripe.test/s"
        mock_service_class.return_value = mock_service

        response = self.client.post(self.url, {"priceType": "monthly"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"url": "https://checkout.stripe.test/s"})
        kwargs = mock_service.create_subscription_checkout.call_args.kwargs
        self.assertEqual(kwargs["price_id"], "price_test_monthly")
        self.assertEqual(kwargs["success_url"], "http://testserver/dashboard?checkout=success")

    @patch("cvforge.billing.views.BillingService")
    def test_unconfigured_price(self, mock_service_class):
        response = self.client.post(self.url, {"priceType": "yearly"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("Price not configured", response.json()["error"])
        mock_service_class.return_value.create_subscription_checkout.assert_not_called()

    @patch("cvforge.billing.views.BillingService")
    def test_per_cv_checkout(self, mock_service_class):
        resume = ResumeFactory(owner=self.user)
        mock_service = mock_service_class.return_value
        mock_service.create_cv_purchase_checkout.return_value = "https://checkout.stripe.test/cv"

        response = self.client.post(
            self.url,
            {"priceType": "per_cv", "resumeId": str(resume.pk)},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        kwargs = mock_service.create_cv_purchase_checkout.call_args.kwargs
        self.assertEqual(kwargs["resume"], resume)
        self.assertEqual(
            kwargs["success_url"],
            f"http://testserver/editor/{resume.pk}?payment=success",
        )

    def test_per_cv_requires_resume_id(self):
        response = self.client.post(self.url, {"priceType": "per_cv"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Invalid resume ID"})

    def test_per_cv_rejects_malformed_resume_id(self):
        response = self.client.post(
            self.url,
            {"priceType": "per_cv", "resumeId": "../../etc"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Invalid resume ID"})

    def test_per_cv_missing_resume(self):
        response = self.client.post(
            self.url,
            {"priceType": "per_cv", "resumeId": str(uuid.uuid4())},
            format="json",
        )

        self.assertEqual(response.status_code, 404)

    @patch("cvforge.billing.views.BillingService")
    def test_per_cv_foreign_resume_is_forbidden_before_stripe(self, mock_service_class):
        resume = ResumeFactory()

        with self.assertLogs("cvforge.billing.views", level="WARNING") as logs:
            response = self.client.post(
                self.url,
                {"priceType": "per_cv", "resumeId": str(resume.pk)},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {"error": "Access denied"})
        self.assertIn("SECURITY", logs.output[0])
        mock_service_class.return_value.create_cv_purchase_checkout.assert_not_called()
        mock_service_class.return_value.get_or_create_stripe_customer.assert_not_called()

    @patch("cvforge.billing.views.BillingService")
    def test_stripe_failure_is_500(self, mock_service_class):
        mock_service_class.return_value.create_subscription_checkout.side_effect = (
            stripe.APIConnectionError("network down")
        )

        response = self.client.post(self.url, {"priceType": "monthly"}, format="json")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to create checkout session"})

    @override_settings(STRIPE_SECRET_KEY="")
    def test_stripe_not_configured(self):
        response = self.client.post(self.url, {"priceType": "monthly"}, format="json")
        self.assertEqual(response.status_code, 500)


@override_settings(STRIPE_SECRET_KEY="sk_test_views", APP_BASE_URL="http://testserver")
class CustomerPortalViewTests(TestCase):
    """Tests for POST /billing/portal/."""

    def setUp(self):
        self.url = reverse("billing:portal")
        self.client = APIClient()

    def test_anonymous_is_unauthorized(self):
        response = self.client.post(self.url)
        self.assertEqual(response.status_code, 401)

    def test_without_stripe_customer(self):
        account = account_for()
        self.client.force_authenticate(account.user)

        response = self.client.post(self.url)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "No billing account found"})

    @patch("cvforge.billing.views.BillingService")
    def test_returns_portal_url(self, mock_service_class):
        account = account_for(stripe_customer_id="cus_portal")
        self.client.force_authenticate(account.user)
        mock_service_class.return_value.get_customer_portal_url.return_value = (
            "https://billing.stripe.test/p"
        )

        response = self.client.post(self.url)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"url": "https://billing.stripe.test/p"})
        mock_service_class.return_value.get_customer_portal_url.assert_called_once_with(
            account,
            return_url="http://testserver/billing",
        )

    @patch("cvforge.billing.views.BillingService")
    def test_stripe_failure_is_500(self, mock_service_class):
        account = account_for(stripe_customer_id="cus_portal")
        self.client.force_authenticate(account.user)
        mock_service_class.return_value.get_customer_portal_url.side_effect = (
            stripe.APIConnectionError("network down")
        )

        response = self.client.post(self.url)

        self.assertEqual(response.status_code, 500)


class AccessStatusViewTests(TestCase):
    """Tests for GET /billing/access/."""

    def setUp(self):
        self.url = reverse("billing:access")
        self.client = APIClient()

    def test_anonymous_is_unauthorized(self):
        self.assertEqual(self.client.get(self.url).status_code, 401)

    def test_returns_decision_and_usage(self):
        account = account_for(ai_credits_used=4)
        self.client.force_authenticate(account.user)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["access"]["level"], AccessLevel.TRIAL)
        self.assertEqual(data["access"]["days_remaining"], 14)
        self.assertTrue(data["access"]["can_export"])
        self.assertEqual(data["ai_credits"]["used"], 4)
        self.assertEqual(data["ai_credits"]["remaining"], 6)
