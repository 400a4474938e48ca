"""
Tests for Stripe webhook signature verification.
"""

import time

import pytest

from cvforge.billing.config import StripeConfig
from cvforge.billing.errors import SignatureInvalidError
from cvforge.billing.signatures import SignatureVerifier
from cvforge.billing.tests.stripe_payloads import sign_payload

SECRET = "whsec_unit_test_secret"
BODY = '{"id":"evt_1","type":"invoice.paid"}'


@pytest.fixture
def verifier():
    return SignatureVerifier(
        StripeConfig(secret_key="sk_test_x", webhook_secret=SECRET, webhook_tolerance=300),
    )


def test_valid_signature_returns_text(verifier):
    header = sign_payload(BODY, SECRET)
    assert verifier.verify(BODY.encode(), header) == BODY


def test_any_matching_v1_signature_is_accepted(verifier):
    """During secret rotation Stripe sends several v1 entries."""
    header = sign_payload(BODY, SECRET)
    timestamp = header.split(",")[0]
    good = header.split("v1=")[1]
    rotated = f"{timestamp},v1={'0' * 64},v1={good}"

    assert verifier.verify(BODY.encode(), rotated) == BODY


def test_tampered_body_is_rejected(verifier):
    header = sign_payload(BODY, SECRET)
    with pytest.raises(SignatureInvalidError):
        verifier.verify(BODY.replace("invoice.paid", "invoice.void").encode(), header)


def test_wrong_secret_is_rejected(verifier):
    header = sign_payload(BODY, "whsec_someone_else")
    with pytest.raises(SignatureInvalidError):
        verifier.verify(BODY.encode(), header)


def test_stale_timestamp_is_rejected(verifier):
    header = sign_payload(BODY, SECRET, timestamp=int(time.time()) - 3600)
    with pytest.raises(SignatureInvalidError):
        verifier.verify(BODY.encode(), header)


def test_missing_header_is_rejected(verifier):
    with pytest.raises(SignatureInvalidError, match="Missing"):
        verifier.verify(BODY.encode(), None)


def test_malformed_header_is_rejected(verifier):
    with pytest.raises(SignatureInvalidError):
        verifier.verify(BODY.encode(), "garbage")


def test_missing_secret_fails_closed():
    verifier = SignatureVerifier(StripeConfig(secret_key="sk_test_x", webhook_secret=""))
    header = sign_payload(BODY, SECRET)
    with pytest.raises(SignatureInvalidError, match="not configured"):
        verifier.verify(BODY.encode(), header)


def test_non_utf8_body_is_rejected(verifier):
    with pytest.raises(SignatureInvalidError):
        verifier.verify(b"\xff\xfe\x00", sign_payload("x", SECRET))
