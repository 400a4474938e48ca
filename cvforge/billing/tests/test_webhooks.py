"""
Tests for the Stripe webhook endpoint, dispatcher and event ledger.
"""

from datetime import timedelta
from unittest.mock import patch

from django.conf import settings
from django.db import DatabaseError
from django.db import OperationalError
from django.test import TestCase
from django.test import override_settings
from django.urls import reverse
from django.utils import timezone

from config.settings import base as base_settings
from cvforge.billing.constants import SubscriptionStatus
from cvforge.billing.constants import WebhookEventStatus
from cvforge.billing.dispatcher import EventDispatcher
from cvforge.billing.errors import TransientStoreError
from cvforge.billing.events import parse_event
from cvforge.billing.models import Account
from cvforge.billing.models import Purchase
from cvforge.billing.models import WebhookEvent
from cvforge.billing.reconciler import ReconcileOutcome
from cvforge.billing.tests import stripe_payloads as payloads
from cvforge.billing.tests.factories import account_for
from cvforge.resumes.tests.factories import ResumeFactory

SECRET = "whsec_endpoint_test_secret"


class EventDispatcherTests(TestCase):
    """Tests for routing typed events."""

    def test_unhandled_type_is_ignored(self):
        event = parse_event(
            payloads.stripe_event("customer.created", {"id": "cus_1", "object": "customer"}),
        )

        with self.assertLogs("cvforge.billing.dispatcher", level="INFO") as logs:
            result = EventDispatcher().dispatch(event)

        self.assertEqual(result.outcome, ReconcileOutcome.IGNORED)
        self.assertIn("Unhandled Stripe event type: customer.created", logs.output[0])

    def test_database_error_becomes_retryable(self):
        event = parse_event(payloads.stripe_event("invoice.paid", payloads.invoice()))
        dispatcher = EventDispatcher()

        with patch.object(
            dispatcher.reconciler,
            "invoice_paid",
            side_effect=DatabaseError("connection lost"),
        ):
            dispatcher.routes[type(event)] = dispatcher.reconciler.invoice_paid
            result = dispatcher.dispatch(event)

        self.assertEqual(result.outcome, ReconcileOutcome.RETRYABLE)
        self.assertIsInstance(result.error, TransientStoreError)


@override_settings(
    STRIPE_WEBHOOK_SECRET=SECRET,
    BILLING_WEBHOOK_MAX_ATTEMPTS=3,
    BILLING_WEBHOOK_RETRY_WINDOW_HOURS=72,
)
class StripeWebhookViewTests(TestCase):
    """Tests for POST /billing/webhooks/stripe/."""

    def setUp(self):
        self.url = reverse("billing:stripe-webhook")
        self.account = account_for(stripe_customer_id="cus_test_1")

    def _post(self, event: dict, *, secret: str = SECRET, header: str | None = None):
        body = payloads.encode(event)
        signature = header if header is not None else payloads.sign_payload(body, secret)
        return self.client.post(
            self.url,
            data=body,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=signature,
        )

    def test_valid_event_is_processed(self):
        Account.objects.filter(pk=self.account.pk).update(ai_credits_used=9)

        response = self._post(payloads.stripe_event("invoice.paid", payloads.invoice()))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True})
        self.account.refresh_from_db()
        self.assertEqual(self.account.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(self.account.ai_credits_used, 0)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.PROCESSED)
        self.assertEqual(record.attempts, 1)
        self.assertIsNotNone(record.processed_at)

    def test_bad_signature_is_rejected_without_side_effects(self):
        response = self._post(
            payloads.stripe_event("invoice.paid", payloads.invoice()),
            secret="whsec_wrong",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
        self.assertFalse(WebhookEvent.objects.exists())
        self.account.refresh_from_db()
        self.assertEqual(self.account.status, SubscriptionStatus.TRIAL)

    def test_missing_signature_header_is_rejected(self):
        response = self.client.post(
            self.url,
            data=payloads.encode(payloads.stripe_event("invoice.paid", payloads.invoice())),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 400)

    def test_malformed_known_event_is_rejected(self):
        sub = payloads.subscription()
        del sub["customer"]

        response = self._post(payloads.stripe_event("customer.subscription.updated", sub))

        self.assertEqual(response.status_code, 400)
        self.assertFalse(WebhookEvent.objects.exists())

    def test_unhandled_event_is_acknowledged(self):
        response = self._post(
            payloads.stripe_event("customer.created", {"id": "cus_2", "object": "customer"}),
        )

        self.assertEqual(response.status_code, 200)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.IGNORED)

    def test_terminal_absence_is_acknowledged(self):
        response = self._post(
            payloads.stripe_event(
                "customer.subscription.deleted",
                payloads.subscription(customer="cus_gone", status="canceled"),
            ),
        )

        self.assertEqual(response.status_code, 200)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.IGNORED)
        self.assertIn("cus_gone", record.last_error)

    def test_retryable_failure_returns_500(self):
        response = self._post(
            payloads.stripe_event("invoice.paid", payloads.invoice(customer="cus_later")),
        )

        self.assertEqual(response.status_code, 500)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.FAILED)
        self.assertIn("cus_later", record.last_error)

    def test_statement_timeout_returns_500(self):
        timeout = OperationalError("canceling statement due to statement timeout")
        event = payloads.stripe_event("invoice.paid", payloads.invoice())

        with patch(
            "cvforge.billing.reconciler.find_account_by_customer",
            side_effect=timeout,
        ):
            with self.assertLogs("cvforge.billing.dispatcher", level="ERROR"):
                response = self._post(event)

        self.assertEqual(response.status_code, 500)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.FAILED)
        self.assertIn("statement timeout", record.last_error)
        self.account.refresh_from_db()
        self.assertEqual(self.account.status, SubscriptionStatus.TRIAL)

    def test_retry_succeeds_once_account_exists(self):
        event = payloads.stripe_event("invoice.paid", payloads.invoice(customer="cus_later"))
        self.assertEqual(self._post(event).status_code, 500)

        account_for(stripe_customer_id="cus_later")
        response = self._post(event)

        self.assertEqual(response.status_code, 200)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.PROCESSED)
        self.assertEqual(record.attempts, 2)

    def test_dead_letters_after_max_attempts(self):
        event = payloads.stripe_event("invoice.paid", payloads.invoice(customer="cus_never"))

        self.assertEqual(self._post(event).status_code, 500)
        self.assertEqual(self._post(event).status_code, 500)
        with self.assertLogs("cvforge.billing.webhooks", level="ERROR"):
            response = self._post(event)

        self.assertEqual(response.status_code, 200)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.DEAD_LETTERED)
        self.assertEqual(record.attempts, 3)

    def test_dead_letters_after_retry_window(self):
        event = payloads.stripe_event("invoice.paid", payloads.invoice(customer="cus_never"))
        self.assertEqual(self._post(event).status_code, 500)
        WebhookEvent.objects.filter(stripe_event_id="evt_test_1").update(
            created=timezone.now() - timedelta(hours=73),
        )

        response = self._post(event)

        self.assertEqual(response.status_code, 200)
        record = WebhookEvent.objects.get(stripe_event_id="evt_test_1")
        self.assertEqual(record.status, WebhookEventStatus.DEAD_LETTERED)

    def test_duplicate_delivery_is_short_circuited(self):
        resume = ResumeFactory(owner=self.account.user)
        event = payloads.stripe_event(
            "checkout.session.completed",
            payloads.checkout_session(resume_id=str(resume.pk)),
        )

        first = self._post(event)
        with patch("cvforge.billing.webhooks.EventDispatcher.dispatch") as dispatch:
            second = self._post(event)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        dispatch.assert_not_called()
        self.assertEqual(Purchase.objects.count(), 1)
        resume.refresh_from_db()
        self.assertTrue(resume.is_purchased)


def test_postgres_connections_carry_statement_and_lock_timeouts():
    options = base_settings.database_timeout_options(
        {"ENGINE": "django.db.backends.postgresql"},
    )
    assert f"statement_timeout={base_settings.DB_STATEMENT_TIMEOUT_MS}" in options["options"]
    assert f"lock_timeout={base_settings.DB_LOCK_TIMEOUT_MS}" in options["options"]


def test_configured_database_carries_timeouts():
    database = settings.DATABASES["default"]
    expected = base_settings.database_timeout_options(database)
    assert expected
    assert expected.items() <= database["OPTIONS"].items()
