from datetime import datetime, timezone

from sqlalchemy import update

from app.config import Settings
from app.db import init_db
from app.models import CreditWallet
from app.services.hmac import payment_signature
from tests.utils.auth import build_auth_headers, unique_email

settings = Settings()


def _set_wallet(email, weekly, purchased):
    session_factory = init_db(settings)
    with session_factory() as db:
        db.execute(
            update(CreditWallet)
            .where(CreditWallet.email == email)
            .values(
                weekly_credits=weekly,
                purchased_credits=purchased,
                week_start_date=datetime.now(timezone.utc).replace(tzinfo=None),
            )
        )
        db.commit()
    session_factory.kw["bind"].dispose()


def test_get_credits_creates_wallet(client):
    email = unique_email()
    resp = client.get("/v1/credits", params={"email": email}, headers=build_auth_headers(email))
    assert resp.status_code == 200
    credits = resp.json()["credits"]
    assert credits["weekly"] == 10
    assert credits["purchased"] == 0
    assert credits["total"] == 10
    assert credits["isPro"] is False
    assert credits["daysUntilReset"] == 7
    assert credits["status"] == "high"


def test_get_credits_other_email_forbidden(client):
    email = unique_email()
    resp = client.get(
        "/v1/credits",
        params={"email": unique_email("other")},
        headers=build_auth_headers(email),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "FORBIDDEN"


def test_deduct_drains_weekly_then_purchased(client):
    email = unique_email()
    headers = build_auth_headers(email)
    client.get("/v1/credits", headers=headers)
    _set_wallet(email, 3, 10)

    resp = client.post(
        "/v1/credits/deduct",
        headers=headers,
        json={"email": email, "amount": 5, "description": "AI edit"},
    )
    assert resp.status_code == 200
    credits = resp.json()["credits"]
    assert (credits["weekly"], credits["purchased"], credits["total"]) == (0, 8, 8)


def test_deduct_insufficient_returns_402_unchanged(client):
    email = unique_email()
    headers = build_auth_headers(email)
    client.get("/v1/credits", headers=headers)
    _set_wallet(email, 2, 1)

    resp = client.post(
        "/v1/credits/deduct",
        headers=headers,
        json={"email": email, "amount": 10, "description": "AI edit"},
    )
    assert resp.status_code == 402
    detail = resp.json()["detail"]
    assert detail["code"] == "INSUFFICIENT_CREDITS"
    assert detail["credits"]["weekly"] == 2
    assert detail["credits"]["purchased"] == 1

    resp = client.get("/v1/credits", headers=headers)
    assert resp.json()["credits"]["total"] == 3


def test_deduct_rejects_non_positive_amount(client):
    email = unique_email()
    resp = client.post(
        "/v1/credits/deduct",
        headers=build_auth_headers(email),
        json={"email": email, "amount": 0, "description": "noop"},
    )
    assert resp.status_code == 422


def test_packages_sorted(client):
    email = unique_email()
    resp = client.get("/v1/credits/packages", headers=build_auth_headers(email))
    assert resp.status_code == 200
    packages = resp.json()["packages"]
    assert [p["sortOrder"] for p in packages] == sorted(p["sortOrder"] for p in packages)
    assert packages[0]["credits"] == 50
    assert packages[0]["priceInr"] == 99


def test_purchase_and_verify_flow(client):
    email = unique_email("buyer")
    headers = build_auth_headers(email)
    resp = client.post(
        "/v1/credits/purchase", headers=headers, json={"packageId": 1, "email": email}
    )
    assert resp.status_code == 200
    body = resp.json()
    order_id = body["order"]["id"]
    assert body["order"]["amount"] == 9900
    assert body["razorpayKeyId"] == settings.razorpay_key_id

    payment_id = "pay_" + order_id[-10:]
    payload = {
        "orderId": order_id,
        "paymentId": payment_id,
        "signature": payment_signature(order_id, payment_id, settings.razorpay_key_secret),
        "packageId": 1,
        "email": email,
    }
    resp = client.post("/v1/credits/verify-purchase", headers=headers, json=payload)
    assert resp.status_code == 200
    body = resp.json()
    assert body["duplicate"] is False
    assert body["purchase"]["creditsAdded"] == 50
    assert body["credits"]["purchased"] == 50

    resp = client.post("/v1/credits/verify-purchase", headers=headers, json=payload)
    assert resp.status_code == 200
    assert resp.json()["duplicate"] is True
    assert resp.json()["credits"]["purchased"] == 50


def test_verify_purchase_bad_signature(client):
    email = unique_email("buyer")
    headers = build_auth_headers(email)
    order_id = client.post(
        "/v1/credits/purchase", headers=headers, json={"packageId": 1}
    ).json()["order"]["id"]
    resp = client.post(
        "/v1/credits/verify-purchase",
        headers=headers,
        json={
            "razorpay_order_id": order_id,
            "razorpay_payment_id": "pay_x",
            "razorpay_signature": "deadbeef",
            "packageId": 1,
        },
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "SIGNATURE_INVALID"
    resp = client.get("/v1/credits", headers=headers)
    assert resp.json()["credits"]["purchased"] == 0


def test_purchase_unknown_package(client):
    email = unique_email()
    resp = client.post(
        "/v1/credits/purchase", headers=build_auth_headers(email), json={"packageId": 999}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "PACKAGE_NOT_FOUND"
