from django.apps import AppConfig


class BillingConfig(AppConfig):
    """
    Django app configuration for the billing app.

    Handles Stripe webhook reconciliation, checkout, entitlements and
    AI credit metering.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "cvforge.billing"
    verbose_name = "Billing"
