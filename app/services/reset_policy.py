"""Monthly and weekly replenishment rules.

Every function here is pure and takes ``now`` explicitly; the ledger applies
the result to the store with a compare-and-set on the old anchor.

- Monthly: the anchor is a *date*. A reset fires once
  ``(now.date() - anchor).days >= 30`` and replaces the balance with the seed
  of the current plan (no carry-over). Because of the date truncation an
  account can reset up to 24h early relative to its creation time.
- Weekly: the anchor is a timestamp. A reset fires once 7 days have elapsed
  and reseeds ``weekly_credits`` only; ``purchased_credits`` is never touched.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple

from app.config import Settings

FREE = "free"
PRO = "pro"


class AccountState(NamedTuple):
    email: str
    plan: str
    monthly_credits: int
    last_monthly_reset: date | None
    subscription_start: datetime | None
    subscription_end: datetime | None
    is_manual_assignment: bool


class WalletState(NamedTuple):
    email: str
    weekly_credits: int
    purchased_credits: int
    week_start_date: datetime | None

    @property
    def total(self) -> int:
        return self.weekly_credits + self.purchased_credits


def as_utc(value: datetime | str | None) -> datetime | None:
    """Normalize stored timestamps (naive UTC or ISO strings) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def monthly_seed(plan: str, cfg: Settings) -> int:
    return cfg.pro_monthly_credits if plan == PRO else cfg.free_monthly_credits


def weekly_seed(plan: str, cfg: Settings) -> int:
    return cfg.pro_weekly_credits if plan == PRO else cfg.free_weekly_credits


def monthly_reset_due(last_reset: date | None, now: datetime, period_days: int = 30) -> bool:
    if last_reset is None:
        return True
    return (now.date() - last_reset).days >= period_days


def weekly_reset_due(
    week_start: datetime | None, now: datetime, period_days: int = 7
) -> bool:
    if week_start is None:
        return True
    return now - as_utc(week_start) >= timedelta(days=period_days)


def maybe_reset_monthly(
    account: AccountState, now: datetime, plan: str, cfg: Settings
) -> AccountState:
    """Return the account after a monthly reset check.

    ``plan`` is the effective plan used to pick the seed value.
    """
    if not monthly_reset_due(account.last_monthly_reset, now, cfg.monthly_reset_days):
        return account
    return account._replace(
        monthly_credits=monthly_seed(plan, cfg),
        last_monthly_reset=now.date(),
    )


def maybe_reset_weekly(
    wallet: WalletState, plan: str, now: datetime, cfg: Settings
) -> WalletState:
    if not weekly_reset_due(wallet.week_start_date, now, cfg.weekly_reset_days):
        return wallet
    return wallet._replace(
        weekly_credits=weekly_seed(plan, cfg),
        week_start_date=now,
    )


def days_until_weekly_reset(
    week_start: datetime | None, now: datetime, period_days: int = 7
) -> int:
    if week_start is None:
        return 0
    remaining = as_utc(week_start) + timedelta(days=period_days) - now
    days = math.ceil(remaining.total_seconds() / 86400)
    return max(0, days)


def credit_status(total: int, is_pro: bool) -> str:
    """Bucket a wallet total into empty/low/medium/high."""
    threshold = 20 if is_pro else 2
    if total <= 0:
        return "empty"
    if total <= threshold:
        return "low"
    if total <= threshold * 3:
        return "medium"
    return "high"


__all__ = [
    "FREE",
    "PRO",
    "AccountState",
    "WalletState",
    "as_utc",
    "monthly_seed",
    "weekly_seed",
    "monthly_reset_due",
    "weekly_reset_due",
    "maybe_reset_monthly",
    "maybe_reset_weekly",
    "days_until_weekly_reset",
    "credit_status",
]
