from __future__ import annotations

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from cvforge.billing.accounts import provision_account


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_billing_account(sender, instance, created, **kwargs):
    if not created:
        return
    provision_account(instance)
