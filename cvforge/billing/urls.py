from django.urls import path

from cvforge.billing import views

app_name = "billing"

urlpatterns = [
    path(
        "webhooks/stripe/",
        views.StripeWebhookView.as_view(),
        name="stripe-webhook",
    ),
    path("checkout/", views.CheckoutSessionView.as_view(), name="checkout"),
    path("portal/", views.CustomerPortalView.as_view(), name="portal"),
    path("access/", views.AccessStatusView.as_view(), name="access"),
]
