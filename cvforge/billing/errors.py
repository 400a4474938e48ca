"""
Billing error taxonomy.

Webhook errors fall into two groups:

- Rejections at the ingress boundary (``SignatureInvalidError``,
  ``MalformedEventError``) are raised before anything is dispatched and map
  to HTTP 400. Stripe is not asked to retry them.
- Reconciliation errors (``RaceConditionError``, ``TransientStoreError``,
  ``TerminalAbsenceError``) are never raised out of a handler. They travel
  inside a ``ReconcileResult`` and the webhook view alone decides the HTTP
  status from ``retryable``.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base exception for billing-related errors."""

    def __init__(self, detail: str, code: str = "billing_error"):
        self.detail = detail
        self.code = code
        super().__init__(detail)


class WebhookError(BillingError):
    """Base class for errors raised while handling a Stripe webhook."""

    retryable = False

    def __init__(self, detail: str, code: str = "webhook_error"):
        super().__init__(detail, code=code)


class SignatureInvalidError(WebhookError):
    """The payload could not be authenticated. Never retried."""

    def __init__(self, detail: str = "Invalid webhook signature."):
        super().__init__(detail, code="signature_invalid")


class MalformedEventError(WebhookError):
    """The payload is authentic but not a shape we can reconcile."""

    def __init__(self, detail: str = "Malformed webhook payload."):
        super().__init__(detail, code="malformed_event")


class RaceConditionError(WebhookError):
    """
    The local record the event refers to does not exist yet.

    Typical cause: Stripe delivered the event before the transaction that
    provisions the account (or stores its customer id) committed.
    """

    retryable = True

    def __init__(self, detail: str):
        super().__init__(detail, code="race_condition")


class TransientStoreError(WebhookError):
    """The database failed while applying the event."""

    retryable = True

    def __init__(self, detail: str):
        super().__init__(detail, code="transient_store_error")


class TerminalAbsenceError(WebhookError):
    """
    The local record is permanently absent.

    Retrying cannot help: "never existed" and "already gone" need the same
    (lack of) action.
    """

    def __init__(self, detail: str):
        super().__init__(detail, code="terminal_absence")


class CheckoutError(BillingError):
    """A checkout or portal request the caller has to correct or retry."""

    def __init__(self, detail: str, status: int, code: str = "checkout_error"):
        self.status = status
        super().__init__(detail, code=code)
