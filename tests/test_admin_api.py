from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from app.config import Settings
from app.db import init_db
from app.models import Account
from tests.utils.auth import build_admin_headers, build_auth_headers, unique_email

settings = Settings()


def _touch(client, email):
    resp = client.get("/v1/user/account", headers=build_auth_headers(email))
    assert resp.status_code == 200


def test_admin_requires_token(client):
    resp = client.post("/v1/admin/plans/assign", json={"email": "a@example.com", "durationDays": 5})
    assert resp.status_code == 401


def test_admin_rejects_non_admin_role(client):
    resp = client.post(
        "/v1/admin/plans/assign",
        headers=build_admin_headers(role="user"),
        json={"email": "a@example.com", "durationDays": 5},
    )
    assert resp.status_code == 403


def test_admin_rejects_bad_signature(client):
    resp = client.post(
        "/v1/admin/subscriptions/check",
        headers=build_admin_headers(secret="not-the-secret"),
    )
    assert resp.status_code == 401


def test_assign_plan_unknown_account(client):
    resp = client.post(
        "/v1/admin/plans/assign",
        headers=build_admin_headers(),
        json={"email": unique_email("ghost"), "durationDays": 30},
    )
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "ACCOUNT_NOT_FOUND"


def test_assign_then_cancel_plan(client):
    email = unique_email("manual")
    _touch(client, email)
    resp = client.post(
        "/v1/admin/plans/assign",
        headers=build_admin_headers(),
        json={"email": email, "durationDays": 30},
    )
    assert resp.status_code == 200
    account = resp.json()["account"]
    assert account["plan"] == "pro"
    assert account["isPro"] is True
    assert account["isManualAssignment"] is True
    assert account["monthlyCredits"] == 25000

    resp = client.post(
        "/v1/admin/plans/cancel", headers=build_admin_headers(), json={"email": email}
    )
    assert resp.status_code == 200
    account = resp.json()["account"]
    assert account["plan"] == "free"
    assert account["monthlyCredits"] == 5000
    assert account["subscriptionEnd"] is None


def test_cancel_keeps_special_account(client):
    _touch(client, "vip@example.com")
    resp = client.post(
        "/v1/admin/plans/cancel",
        headers=build_admin_headers(),
        json={"email": "vip@example.com"},
    )
    assert resp.status_code == 200
    assert resp.json()["account"]["isPro"] is True
    assert resp.json()["message"] == "Special account keeps its Pro plan"


def test_adjust_credits(client):
    email = unique_email("adjust")
    _touch(client, email)
    resp = client.post(
        "/v1/admin/credits/adjust",
        headers=build_admin_headers(),
        json={"email": email, "monthlyDelta": -100, "purchasedDelta": 25},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["account"]["monthlyCredits"] == 4900
    assert body["purchasedCredits"] == 25

    resp = client.post(
        "/v1/admin/credits/adjust",
        headers=build_admin_headers(),
        json={"email": email, "purchasedDelta": -26},
    )
    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "INSUFFICIENT_CREDITS"


def test_manual_subscription_check(client):
    email = unique_email("lapsed")
    _touch(client, email)
    session_factory = init_db(settings)
    with session_factory() as db:
        db.execute(
            update(Account)
            .where(Account.email == email)
            .values(
                plan="pro",
                subscription_end=(datetime.now(timezone.utc) - timedelta(hours=1)).replace(
                    tzinfo=None
                ),
            )
        )
        db.commit()
    session_factory.kw["bind"].dispose()

    resp = client.post("/v1/admin/subscriptions/check", headers=build_admin_headers())
    assert resp.status_code == 200
    body = resp.json()
    assert email in body["downgraded"]
    assert body["downgradedCount"] >= 1

    resp = client.get("/v1/user/account", headers=build_auth_headers(email))
    assert resp.json()["account"]["plan"] == "free"
