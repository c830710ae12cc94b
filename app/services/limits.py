"""Per-plan usage allowances counted from the usage log.

Free accounts get a daily image allowance and a monthly research allowance;
pro accounts are unlimited (reported as ``-1``).
"""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import NamedTuple

from sqlalchemy.orm import Session

from app.config import Settings
from app.services.entitlement import EffectivePlan
from app.services.reset_policy import FREE, PRO
from app.services.store import BalanceStore
from app.services.usage_log import count_usage

IMAGE_OPERATION = "image_generation"
RESEARCH_OPERATION = "research"
UNLIMITED = -1


class ImageLimit(NamedTuple):
    can_generate: bool
    daily_count: int
    daily_limit: int
    message: str


class ResearchLimit(NamedTuple):
    can_research: bool
    monthly_count: int
    monthly_limit: int
    remaining: int
    message: str


class PlanLimits(NamedTuple):
    plan: str
    is_pro: bool
    images: ImageLimit
    research: ResearchLimit


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def image_limit(resolved: EffectivePlan, daily_count: int, cfg: Settings) -> ImageLimit:
    if resolved.is_pro:
        suffix = (
            f" (expires {resolved.expires_at.date().isoformat()})"
            if resolved.expires_at
            else " (permanent)"
        )
        return ImageLimit(
            True,
            daily_count,
            UNLIMITED,
            f"Unlimited image generation available with Pro plan{suffix}",
        )
    limit = cfg.free_daily_images
    remaining = max(0, limit - daily_count)
    can_generate = daily_count < limit
    if resolved.is_expired and resolved.expires_at is not None:
        message = (
            f"Your Pro subscription expired on {resolved.expires_at.date().isoformat()}. "
            f"You now have free plan limits: {remaining} images remaining today."
        )
    elif can_generate:
        message = f"{remaining} images remaining today (Free plan)"
    else:
        message = (
            f"Daily limit of {limit} images reached. "
            "Upgrade to Pro for unlimited generation."
        )
    return ImageLimit(can_generate, daily_count, limit, message)


def research_limit(resolved: EffectivePlan, monthly_count: int, cfg: Settings) -> ResearchLimit:
    if resolved.is_pro:
        return ResearchLimit(
            True,
            monthly_count,
            UNLIMITED,
            UNLIMITED,
            "Unlimited Research available with Pro plan",
        )
    limit = cfg.free_monthly_research
    remaining = max(0, limit - monthly_count)
    if monthly_count < limit:
        return ResearchLimit(
            True,
            monthly_count,
            limit,
            remaining,
            f"{remaining} Research uses remaining this month (Free plan)",
        )
    return ResearchLimit(
        False,
        monthly_count,
        limit,
        0,
        f"Monthly limit of {limit} Research uses reached. "
        "Upgrade to Pro for unlimited Research.",
    )


def _counts_sync(db: Session, email: str, now: datetime) -> tuple[int, int]:
    day_start, day_end = day_bounds(now)
    month_start, month_end = month_bounds(now)
    return (
        count_usage(db, email, IMAGE_OPERATION, day_start, day_end),
        count_usage(db, email, RESEARCH_OPERATION, month_start, month_end),
    )


async def plan_limits(
    store: BalanceStore, cfg: Settings, email: str, resolved: EffectivePlan, now: datetime
) -> PlanLimits:
    daily, monthly = await store.run(_counts_sync, email, now)
    return PlanLimits(
        plan=PRO if resolved.is_pro else FREE,
        is_pro=resolved.is_pro,
        images=image_limit(resolved, daily, cfg),
        research=research_limit(resolved, monthly, cfg),
    )


__all__ = [
    "ImageLimit",
    "ResearchLimit",
    "PlanLimits",
    "IMAGE_OPERATION",
    "RESEARCH_OPERATION",
    "day_bounds",
    "month_bounds",
    "image_limit",
    "research_limit",
    "plan_limits",
]
