"""
Stripe webhook signature verification.

Stripe signs every delivery with ``Stripe-Signature: t=<unix>,v1=<hex>``
where ``v1`` is HMAC-SHA256 over ``"<t>.<raw body>"`` keyed by the endpoint
secret. The check must run on the exact bytes Stripe sent, so callers pass
``request.body`` and never a re-serialized payload.

We delegate the comparison to ``stripe.WebhookSignature`` (constant-time,
and it accepts any of several ``v1`` entries during secret rotation) and
translate its failures into ``SignatureInvalidError``.
"""

from __future__ import annotations

import logging

import stripe

from cvforge.billing.config import StripeConfig
from cvforge.billing.errors import SignatureInvalidError

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """
    Authenticates raw webhook payloads against the configured endpoint secret.

    Usage:
        verifier = SignatureVerifier(StripeConfig.from_settings())
        text = verifier.verify(request.body, request.headers.get("Stripe-Signature"))
    """

    def __init__(self, config: StripeConfig):
        self.config = config

    def verify(self, payload: bytes, signature_header: str | None) -> str:
        """
        Verify the payload and return it decoded as text.

        Raises:
            SignatureInvalidError: If the secret is not configured, the header
                is missing, the timestamp is outside the tolerance window, or
                no signature matches.
        """
        if not self.config.webhook_secret:
            logger.error("Stripe webhook secret is not configured")
            raise SignatureInvalidError("Webhook secret is not configured.")

        if not signature_header:
            raise SignatureInvalidError("Missing Stripe-Signature header.")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalidError("Payload is not valid UTF-8.") from exc

        try:
            stripe.WebhookSignature.verify_header(
                text,
                signature_header,
                self.config.webhook_secret,
                tolerance=self.config.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature rejected: %s", exc)
            raise SignatureInvalidError() from exc

        return text
