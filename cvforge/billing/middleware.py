"""
Billing middleware for subscription enforcement.

This middleware recomputes the user's access on each request and blocks
users whose trial, grace period or paid period has ended from the app and
API. Nothing is cached between requests and nothing is written back, so a
reconciled webhook takes effect on the very next request.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from django.conf import settings
from django.http import HttpResponseRedirect
from django.http import JsonResponse

from cvforge.billing.accounts import provision_account
from cvforge.billing.entitlements import is_expired

if TYPE_CHECKING:
    from django.http import HttpRequest
    from django.http import HttpResponse

logger = logging.getLogger(__name__)


class SubscriptionAccessMiddleware:
    """
    Block users without access from the app and API.

    On each authenticated request to a protected path:
    - Provision the billing account if this is the user's first contact
    - Web requests from expired users: redirect to the billing page
    - API requests from expired users: 402 Payment Required JSON response

    This middleware should be added after AuthenticationMiddleware.
    """

    # Paths that don't require an active subscription
    EXEMPT_PATH_PREFIXES = [
        # Billing, checkout and Stripe webhooks
        "/billing/",
        # Authentication
        "/accounts/",
        # Static files
        "/static/",
        "/media/",
        # Admin
        "/admin/",
        # Public pages
        "/pricing/",
        "/terms/",
        "/privacy/",
        "/r/",
    ]

    # Exact paths that are exempt (for home page)
    EXEMPT_EXACT_PATHS = ["/"]

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        # Skip for unauthenticated users
        if not request.user.is_authenticated:
            return self.get_response(request)

        # Skip exempt paths
        if self._is_exempt_path(request.path):
            return self.get_response(request)

        provision_account(request.user)

        if is_expired(request.user):
            logger.info(
                "Blocked %s for user=%s: access expired",
                request.path,
                request.user.pk,
            )
            return self._block_request(request)

        return self.get_response(request)

    def _is_exempt_path(self, path: str) -> bool:
        """Check if the path is exempt from subscription checks."""
        if path in self.EXEMPT_EXACT_PATHS:
            return True
        return any(path.startswith(prefix) for prefix in self.EXEMPT_PATH_PREFIXES)

    def _is_api_request(self, request: HttpRequest) -> bool:
        """Check if this is an API request."""
        return request.path.startswith("/api/")

    def _block_request(self, request: HttpRequest) -> HttpResponse:
        if self._is_api_request(request):
            return JsonResponse(
                {
                    "detail": "Your trial has expired. Upgrade to continue.",
                    "code": "subscription_expired",
                },
                status=HTTPStatus.PAYMENT_REQUIRED,
            )
        # Redirect web requests to the billing page
        query = urlencode({"reason": "trial_expired"})
        return HttpResponseRedirect(f"{settings.BILLING_EXPIRED_REDIRECT_URL}?{query}")
