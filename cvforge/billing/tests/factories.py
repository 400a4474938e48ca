import factory
from factory.django import DjangoModelFactory

from cvforge.billing.constants import PurchaseStatus
from cvforge.billing.models import Account
from cvforge.billing.models import Purchase
from cvforge.resumes.tests.factories import ResumeFactory
from cvforge.users.tests.factories import UserFactory


def account_for(user=None, **fields) -> Account:
    """
    Return the user's auto-provisioned account with ``fields`` applied.

    Accounts are created by the user post_save signal, so tests adjust that
    row instead of creating a second one.
    """
    user = user or UserFactory()
    if fields:
        Account.objects.filter(user=user).update(**fields)
    return Account.objects.get(user=user)


class PurchaseFactory(DjangoModelFactory):
    class Meta:
        model = Purchase

    account = factory.LazyFunction(account_for)
    resume = factory.LazyAttribute(lambda o: ResumeFactory(owner=o.account.user))
    stripe_payment_intent_id = factory.Sequence(lambda n: f"pi_test_{n}")
    stripe_checkout_session_id = factory.Sequence(lambda n: f"cs_test_{n}")
    amount = 999
    currency = "ron"
    status = PurchaseStatus.PENDING
