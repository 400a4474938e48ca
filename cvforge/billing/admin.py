"""
Django admin configuration for billing models.

Provides admin interfaces for:
- Account: View billing state (Stripe webhooks own status and periods)
- Purchase: View per-CV purchase history
- WebhookEvent: Inspect the webhook ledger and dead letters
"""

from django.contrib import admin

from cvforge.billing.models import Account
from cvforge.billing.models import Purchase
from cvforge.billing.models import WebhookEvent


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """Admin for billing accounts."""

    list_display = [
        "user",
        "status",
        "trial_ends_at",
        "current_period_end",
        "ai_credits_used",
        "stripe_customer_id",
    ]
    list_filter = ["status"]
    search_fields = ["user__email", "stripe_customer_id", "stripe_subscription_id"]
    raw_id_fields = ["user"]
    readonly_fields = [
        "trial_ends_at",
        "subscription_event_at",
        "ai_credits_reset_at",
        "created",
        "modified",
    ]


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    """Admin for per-CV purchases."""

    list_display = [
        "stripe_payment_intent_id",
        "account",
        "resume",
        "amount",
        "currency",
        "status",
        "completed_at",
    ]
    list_filter = ["status"]
    search_fields = ["stripe_payment_intent_id", "stripe_checkout_session_id"]
    raw_id_fields = ["account", "resume"]
    readonly_fields = ["created", "modified"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Read-only view of the Stripe webhook ledger."""

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "attempts",
        "created",
        "processed_at",
    ]
    list_filter = ["status", "event_type"]
    search_fields = ["stripe_event_id"]
    readonly_fields = [
        "stripe_event_id",
        "event_type",
        "status",
        "attempts",
        "last_error",
        "payload",
        "processed_at",
        "created",
        "modified",
    ]

    def has_add_permission(self, request):
        return False
