"""Effective plan resolution.

The stored ``plan`` column is only the nominal plan: a pro account whose
``subscription_end`` has passed keeps ``plan='pro'`` until the sweep runs,
but must be gated as free from the moment the boundary is crossed. Resolve
on every request; never cache the result.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, NamedTuple

from app.services.reset_policy import FREE, PRO, AccountState, as_utc

EXPIRING_SOON_DAYS = 7


class EffectivePlan(NamedTuple):
    plan: str
    is_pro: bool
    is_expired: bool
    expires_at: datetime | None
    is_special: bool = False


class SubscriptionDetails(NamedTuple):
    has_subscription: bool
    is_active: bool
    start_date: datetime | None
    end_date: datetime | None
    days_remaining: int | None
    is_expiring_soon: bool


def _is_special(email: str, special_emails: Iterable[str]) -> bool:
    normalized = email.strip().lower()
    return any(normalized == item.strip().lower() for item in special_emails)


def effective_plan(
    account: AccountState | None,
    now: datetime,
    special_emails: Iterable[str] = (),
) -> EffectivePlan:
    if account is None:
        return EffectivePlan(FREE, False, False, None)
    if _is_special(account.email, special_emails):
        return EffectivePlan(PRO, True, False, None, is_special=True)
    if account.plan != PRO:
        return EffectivePlan(FREE, False, False, as_utc(account.subscription_end))
    end = as_utc(account.subscription_end)
    if end is None:
        # manual or legacy pro without expiry stays active until cancelled
        return EffectivePlan(PRO, True, False, None)
    if end <= now:
        return EffectivePlan(FREE, False, True, end)
    return EffectivePlan(PRO, True, False, end)


def subscription_details(account: AccountState | None, now: datetime) -> SubscriptionDetails:
    if account is None:
        return SubscriptionDetails(False, False, None, None, None, False)
    start = as_utc(account.subscription_start)
    end = as_utc(account.subscription_end)
    if start is None or end is None:
        return SubscriptionDetails(False, account.plan == PRO, None, None, None, False)
    is_active = account.plan == PRO and end > now
    days_remaining = 0
    if is_active:
        days_remaining = math.ceil((end - now).total_seconds() / 86400)
    return SubscriptionDetails(
        has_subscription=True,
        is_active=is_active,
        start_date=start,
        end_date=end,
        days_remaining=days_remaining,
        is_expiring_soon=is_active and 0 < days_remaining <= EXPIRING_SOON_DAYS,
    )


def status_message(resolved: EffectivePlan, details: SubscriptionDetails) -> str:
    if resolved.is_special:
        return "Pro Plan (Permanent Account)"
    if resolved.is_expired and resolved.expires_at is not None:
        return f"Pro Plan (Expired on {resolved.expires_at.date().isoformat()})"
    if not resolved.is_pro:
        return "Free Plan"
    if not (details.has_subscription and details.is_active):
        return "Pro Plan (Permanent)"
    days = details.days_remaining or 0
    if days > EXPIRING_SOON_DAYS:
        return f"Pro Plan ({days} days remaining)"
    if days > 0:
        return f"Pro Plan (Expires in {days} days)"
    return "Pro Plan (Expires today!)"


__all__ = [
    "EffectivePlan",
    "SubscriptionDetails",
    "effective_plan",
    "subscription_details",
    "status_message",
]
