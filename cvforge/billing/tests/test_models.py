"""
Tests for billing models.

Tests Account provisioning, trial immutability and model string forms.
"""

from datetime import timedelta

import pytest
from django.test import TestCase
from django.utils import timezone

from cvforge.billing.accounts import find_account_by_customer
from cvforge.billing.accounts import provision_account
from cvforge.billing.constants import TRIAL_DURATION_DAYS
from cvforge.billing.constants import PurchaseStatus
from cvforge.billing.constants import SubscriptionStatus
from cvforge.billing.models import Account
from cvforge.billing.tests.factories import PurchaseFactory
from cvforge.billing.tests.factories import account_for
from cvforge.users.tests.factories import UserFactory


class AccountModelTests(TestCase):
    """Tests for the Account model."""

    def test_new_user_gets_trial_account(self):
        before = timezone.now()
        user = UserFactory()

        account = Account.objects.get(user=user)

        self.assertEqual(account.status, SubscriptionStatus.TRIAL)
        self.assertIsNone(account.current_period_end)
        self.assertIsNone(account.stripe_customer_id)
        self.assertEqual(account.ai_credits_used, 0)
        self.assertGreaterEqual(
            account.trial_ends_at,
            before + timedelta(days=TRIAL_DURATION_DAYS),
        )

    def test_provisioning_is_idempotent(self):
        account = account_for()
        original_trial_end = account.trial_ends_at

        again = provision_account(account.user, now=timezone.now() + timedelta(days=5))

        self.assertEqual(again.pk, account.pk)
        self.assertEqual(again.trial_ends_at, original_trial_end)
        self.assertEqual(Account.objects.filter(user=account.user).count(), 1)

    def test_trial_end_cannot_be_changed(self):
        account = account_for()
        account.trial_ends_at = account.trial_ends_at + timedelta(days=30)

        with pytest.raises(ValueError, match="trial_ends_at"):
            account.save()

    def test_other_fields_can_be_saved(self):
        account = account_for()
        account.status = SubscriptionStatus.ACTIVE
        account.save()

        account.refresh_from_db()
        self.assertEqual(account.status, SubscriptionStatus.ACTIVE)

    def test_find_account_by_customer(self):
        account = account_for(stripe_customer_id="cus_lookup")

        self.assertEqual(find_account_by_customer("cus_lookup"), account)
        self.assertIsNone(find_account_by_customer("cus_unknown"))
        self.assertIsNone(find_account_by_customer(""))

    def test_str(self):
        account = account_for()
        self.assertIn("Trial", str(account))


class PurchaseModelTests(TestCase):
    def test_defaults(self):
        purchase = PurchaseFactory()

        self.assertEqual(purchase.status, PurchaseStatus.PENDING)
        self.assertIsNone(purchase.completed_at)
        self.assertEqual(purchase.resume.owner, purchase.account.user)
        self.assertIn(purchase.stripe_payment_intent_id, str(purchase))
