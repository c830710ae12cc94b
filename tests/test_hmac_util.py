from __future__ import annotations
from app.services.hmac import payment_signature, verify_hmac, verify_payment_signature
import hmac
import hashlib
import pytest


@pytest.mark.parametrize("secret", ["test-razorpay-secret", "test-razorpay-webhook-secret"])
def test_verify_hmac_success(secret):
    body = b'{"ok":true}'
    sig = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    assert verify_hmac(sig, body, secret)


@pytest.mark.parametrize("secret", ["test-razorpay-secret", "test-razorpay-webhook-secret"])
def test_verify_hmac_fail(secret):
    body = b'{"ok":true}'
    sig = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    assert not verify_hmac('bad' + sig[3:], body, secret)


def test_verify_hmac_missing_secret_fails_closed():
    body = b"{}"
    sig = hmac.new(b"", body, hashlib.sha256).hexdigest()
    assert not verify_hmac(sig, body, "")


def test_payment_signature_over_order_and_payment():
    expected = hmac.new(
        b"secret", b"order_1|pay_1", hashlib.sha256
    ).hexdigest()
    assert payment_signature("order_1", "pay_1", "secret") == expected
    assert verify_payment_signature("order_1", "pay_1", expected, "secret")
    assert not verify_payment_signature("order_1", "pay_2", expected, "secret")
    assert not verify_payment_signature("order_1", "pay_1", expected.upper(), "secret")
