import hashlib
import hmac
import json

from app.config import Settings
from tests.utils.auth import build_auth_headers, unique_email

settings = Settings()


def test_consume_metrics(client):
    email = unique_email("metrics")
    resp = client.post(
        "/v1/ai/consume", headers=build_auth_headers(email), json={"model": "auto"}
    )
    assert resp.status_code == 200
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text
    assert 'credits_consumed_total{pool="monthly"}' in body
    assert "store_op_seconds_bucket" in body


def test_model_forbidden_metric(client):
    email = unique_email("metrics")
    resp = client.post(
        "/v1/ai/consume",
        headers=build_auth_headers(email),
        json={"model": "provider-5/gpt-5-nano"},
    )
    assert resp.status_code == 403
    assert "model_forbidden_total" in client.get("/metrics").text


def test_signature_invalid_metric(client):
    raw = json.dumps({"event": "payment.failed", "payload": {}})
    header_sig = hmac.new(b"not-the-secret", raw.encode(), hashlib.sha256).hexdigest()
    resp = client.post(
        "/v1/payments/razorpay/webhook",
        headers={"X-Razorpay-Signature": header_sig, "Content-Type": "application/json"},
        content=raw,
    )
    assert resp.status_code == 401
    body = client.get("/metrics").text
    assert 'signature_invalid_total{source="webhook"}' in body
