"""Wire models shared by the v1 routers (camelCase on the wire)."""
from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.services.entitlement import EffectivePlan, SubscriptionDetails
from app.services.reset_policy import (
    AccountState,
    WalletState,
    as_utc,
    credit_status,
    days_until_weekly_reset,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreditsSnapshot(CamelModel):
    weekly: int
    purchased: int
    total: int
    week_start_date: datetime | None = None
    is_pro: bool
    days_until_reset: int
    status: str


class AccountSnapshot(CamelModel):
    email: str
    plan: str
    effective_plan: str
    is_pro: bool
    is_expired: bool
    monthly_credits: int
    last_monthly_reset: date | None = None
    subscription_start: datetime | None = None
    subscription_end: datetime | None = None
    is_manual_assignment: bool


class SubscriptionOut(CamelModel):
    has_subscription: bool
    is_active: bool
    start_date: datetime | None = None
    end_date: datetime | None = None
    days_remaining: int | None = None
    is_expiring_soon: bool


class OrderOut(CamelModel):
    id: str
    amount: int
    currency: str
    receipt: str


def credits_snapshot(
    wallet: WalletState, resolved: EffectivePlan, now: datetime, period_days: int = 7
) -> CreditsSnapshot:
    return CreditsSnapshot(
        weekly=wallet.weekly_credits,
        purchased=wallet.purchased_credits,
        total=wallet.total,
        week_start_date=as_utc(wallet.week_start_date),
        is_pro=resolved.is_pro,
        days_until_reset=days_until_weekly_reset(wallet.week_start_date, now, period_days),
        status=credit_status(wallet.total, resolved.is_pro),
    )


def account_snapshot(account: AccountState, resolved: EffectivePlan) -> AccountSnapshot:
    return AccountSnapshot(
        email=account.email,
        plan=account.plan,
        effective_plan=resolved.plan,
        is_pro=resolved.is_pro,
        is_expired=resolved.is_expired,
        monthly_credits=account.monthly_credits,
        last_monthly_reset=account.last_monthly_reset,
        subscription_start=as_utc(account.subscription_start),
        subscription_end=as_utc(account.subscription_end),
        is_manual_assignment=account.is_manual_assignment,
    )


def subscription_out(details: SubscriptionDetails) -> SubscriptionOut:
    return SubscriptionOut(**details._asdict())
