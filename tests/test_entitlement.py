from datetime import date, datetime, timedelta, timezone

from app.services.entitlement import (
    effective_plan,
    status_message,
    subscription_details,
)
from app.services.reset_policy import AccountState

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _account(email="user@example.com", plan="pro", start=None, end=None) -> AccountState:
    return AccountState(
        email=email,
        plan=plan,
        monthly_credits=25000,
        last_monthly_reset=date(2026, 3, 1),
        subscription_start=start,
        subscription_end=end,
        is_manual_assignment=False,
    )


def test_pro_with_past_end_is_not_pro():
    resolved = effective_plan(_account(end=NOW - timedelta(days=1)), NOW)
    assert resolved.plan == "free"
    assert not resolved.is_pro
    assert resolved.is_expired


def test_expiry_boundary_is_inclusive():
    assert effective_plan(_account(end=NOW), NOW).is_expired


def test_pro_without_end_is_pro():
    resolved = effective_plan(_account(end=None), NOW)
    assert resolved.is_pro
    assert not resolved.is_expired


def test_pro_with_future_end_is_pro():
    end = NOW + timedelta(days=3)
    resolved = effective_plan(_account(end=end), NOW)
    assert resolved.is_pro
    assert resolved.expires_at == end


def test_naive_stored_end_is_read_as_utc():
    end = (NOW - timedelta(minutes=1)).replace(tzinfo=None)
    assert effective_plan(_account(end=end), NOW).is_expired


def test_free_plan_is_free():
    assert effective_plan(_account(plan="free"), NOW).plan == "free"


def test_special_account_is_always_pro():
    account = _account(email="VIP@example.com", plan="free", end=NOW - timedelta(days=30))
    resolved = effective_plan(account, NOW, ["vip@example.com"])
    assert resolved.is_pro
    assert resolved.is_special
    assert not resolved.is_expired


def test_subscription_details_expiring_soon():
    account = _account(start=NOW - timedelta(days=25), end=NOW + timedelta(days=5))
    details = subscription_details(account, NOW)
    assert details.is_active
    assert details.days_remaining == 5
    assert details.is_expiring_soon
    assert status_message(effective_plan(account, NOW), details) == "Pro Plan (Expires in 5 days)"


def test_status_message_for_expired_and_permanent():
    expired = _account(start=NOW - timedelta(days=40), end=NOW - timedelta(days=10))
    resolved = effective_plan(expired, NOW)
    details = subscription_details(expired, NOW)
    assert not details.is_active
    assert status_message(resolved, details).startswith("Pro Plan (Expired on 2026-03-05")

    permanent = _account()
    assert (
        status_message(effective_plan(permanent, NOW), subscription_details(permanent, NOW))
        == "Pro Plan (Permanent)"
    )
