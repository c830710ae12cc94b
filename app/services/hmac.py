"""HMAC utilities for verifying payment signatures."""
from __future__ import annotations

import hmac
import hashlib


def sign(secret: str, message: bytes | str) -> str:
    """Return the hex HMAC-SHA256 of ``message``."""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_hmac(sig_header: str, body: bytes, secret: str) -> bool:
    """Return ``True`` if HMAC-SHA256 signature matches the body."""
    if not sig_header or not secret:
        return False
    expected = sign(secret, body)
    return hmac.compare_digest(expected, sig_header)


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Checkout signature: HMAC over ``order_id|payment_id``."""
    return sign(secret, f"{order_id}|{payment_id}")


def verify_payment_signature(
    order_id: str, payment_id: str, signature: str, secret: str
) -> bool:
    if not signature or not secret:
        return False
    expected = payment_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)
