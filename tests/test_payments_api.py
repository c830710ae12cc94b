import hashlib
import hmac
import json

from app.config import Settings
from app.services.hmac import payment_signature
from tests.utils.auth import build_auth_headers, unique_email

settings = Settings()


def _webhook_headers(body: bytes, secret: str | None = None) -> dict[str, str]:
    sig = hmac.new(
        (secret or settings.razorpay_webhook_secret).encode(), body, hashlib.sha256
    ).hexdigest()
    return {"X-Razorpay-Signature": sig, "Content-Type": "application/json"}


def _create_subscription_order(client, email):
    resp = client.post(
        "/v1/payments/subscription/order",
        headers=build_auth_headers(email),
        json={"email": email},
    )
    assert resp.status_code == 200
    return resp.json()["order"]


def test_subscription_order(client):
    email = unique_email("sub")
    order = _create_subscription_order(client, email)
    assert order["id"].startswith("order_sandbox_")
    assert order["amount"] == settings.subscription_price_paise
    assert order["currency"] == "INR"


def test_client_confirmation_activates_pro_once(client):
    email = unique_email("sub")
    order = _create_subscription_order(client, email)
    payment_id = "pay_" + order["id"][-10:]
    payload = {
        "razorpay_order_id": order["id"],
        "razorpay_payment_id": payment_id,
        "razorpay_signature": payment_signature(
            order["id"], payment_id, settings.razorpay_key_secret
        ),
        "user_email": email,
    }
    resp = client.post("/v1/payments/razorpay/webhook", json=payload)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["duplicate"] is False
    assert body["account"]["plan"] == "pro"
    assert body["account"]["monthlyCredits"] == 25000
    assert body["account"]["isPro"] is True

    resp = client.post("/v1/payments/razorpay/webhook", json=payload)
    assert resp.json()["duplicate"] is True
    assert resp.json()["message"] == "Payment already processed"


def test_client_confirmation_bad_signature(client):
    email = unique_email("sub")
    order = _create_subscription_order(client, email)
    resp = client.post(
        "/v1/payments/razorpay/webhook",
        json={
            "razorpay_order_id": order["id"],
            "razorpay_payment_id": "pay_forged",
            "razorpay_signature": "0" * 64,
            "user_email": email,
        },
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "SIGNATURE_INVALID"

    resp = client.get("/v1/user/account", headers=build_auth_headers(email))
    assert resp.json()["account"]["plan"] == "free"


def test_client_confirmation_missing_fields(client):
    resp = client.post(
        "/v1/payments/razorpay/webhook", json={"razorpay_order_id": "order_1"}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "BAD_REQUEST"


def test_webhook_captured_credits_order(client):
    email = unique_email("hook")
    order = _create_subscription_order(client, email)
    body = json.dumps(
        {
            "event": "payment.captured",
            "payload": {
                "payment": {"entity": {"id": "pay_" + order["id"][-10:], "order_id": order["id"]}}
            },
        }
    ).encode()
    resp = client.post(
        "/v1/payments/razorpay/webhook", content=body, headers=_webhook_headers(body)
    )
    assert resp.status_code == 200
    assert resp.json()["result"] == "credited"

    resp = client.post(
        "/v1/payments/razorpay/webhook", content=body, headers=_webhook_headers(body)
    )
    assert resp.json()["result"] == "duplicate"


def test_webhook_invalid_signature_is_401(client):
    body = json.dumps({"event": "payment.captured", "payload": {}}).encode()
    resp = client.post(
        "/v1/payments/razorpay/webhook",
        content=body,
        headers=_webhook_headers(body, secret="wrong-secret"),
    )
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "SIGNATURE_INVALID"


def test_webhook_unknown_event_acknowledged(client):
    body = json.dumps({"event": "order.paid", "payload": {}}).encode()
    resp = client.post(
        "/v1/payments/razorpay/webhook", content=body, headers=_webhook_headers(body)
    )
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "event": "order.paid", "result": "ignored"}


def test_webhook_requires_signature_or_confirmation(client):
    resp = client.post("/v1/payments/razorpay/webhook", json={"event": "payment.captured"})
    assert resp.status_code == 400


def test_webhook_malformed_json(client):
    resp = client.post(
        "/v1/payments/razorpay/webhook",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400


def test_client_confirmation_for_credit_topup(client):
    email = unique_email("buyer")
    resp = client.post(
        "/v1/credits/purchase", headers=build_auth_headers(email), json={"packageId": 1}
    )
    order_id = resp.json()["order"]["id"]
    payment_id = "pay_" + order_id[-10:]
    resp = client.post(
        "/v1/payments/razorpay/webhook",
        json={
            "orderId": order_id,
            "paymentId": payment_id,
            "signature": payment_signature(order_id, payment_id, settings.razorpay_key_secret),
            "email": email,
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Payment verified and credits added"
    assert body["account"]["plan"] == "free"

    resp = client.get("/v1/credits", headers=build_auth_headers(email))
    assert resp.json()["credits"]["purchased"] == 50


def test_signed_envelope_is_routed_by_header(client):
    email = unique_email("hook")
    order = _create_subscription_order(client, email)
    body = json.dumps(
        {
            "event": "payment.captured",
            "orderId": order["id"],
            "payload": {
                "payment": {"entity": {"id": "pay_" + order["id"][-10:], "order_id": order["id"]}}
            },
        }
    ).encode()
    resp = client.post(
        "/v1/payments/razorpay/webhook", content=body, headers=_webhook_headers(body)
    )
    assert resp.status_code == 200
    assert resp.json()["result"] == "credited"


def test_confirmation_with_forged_header_is_rejected(client):
    email = unique_email("sub")
    order = _create_subscription_order(client, email)
    payment_id = "pay_" + order["id"][-10:]
    body = json.dumps(
        {
            "razorpay_order_id": order["id"],
            "razorpay_payment_id": payment_id,
            "razorpay_signature": payment_signature(
                order["id"], payment_id, settings.razorpay_key_secret
            ),
            "user_email": email,
        }
    ).encode()
    resp = client.post(
        "/v1/payments/razorpay/webhook",
        content=body,
        headers=_webhook_headers(body, secret="wrong-secret"),
    )
    assert resp.status_code == 401

    resp = client.get("/v1/user/account", headers=build_auth_headers(email))
    assert resp.json()["account"]["plan"] == "free"
