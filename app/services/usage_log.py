"""Best-effort usage logging.

Writes are scheduled as background tasks and never awaited on the request
path; a failed write is logged and counted, never propagated.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.metrics import usage_log_fail_total
from app.models import UsageLog
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

_pending: set[asyncio.Task] = set()


class UsageEntry(NamedTuple):
    user_email: str
    operation_type: str
    credits_consumed: int
    credits_remaining: int | None
    model: str | None = None


def append_usage(db: Session, entry: UsageEntry) -> None:
    db.add(
        UsageLog(
            user_email=entry.user_email,
            model=entry.model,
            operation_type=entry.operation_type,
            credits_consumed=entry.credits_consumed,
            credits_remaining=entry.credits_remaining,
        )
    )
    db.commit()


async def _write(store: BalanceStore, entry: UsageEntry) -> None:
    try:
        await store.run(append_usage, entry)
    except Exception:
        usage_log_fail_total.inc()
        logger.warning(
            "Usage log write failed for %s", entry.operation_type,
            exc_info=True,
            extra={"email": entry.user_email},
        )


def record_usage(store: BalanceStore, entry: UsageEntry) -> None:
    """Schedule a usage log write without blocking the caller."""
    task = asyncio.get_running_loop().create_task(_write(store, entry))
    _pending.add(task)
    task.add_done_callback(_pending.discard)


async def drain() -> None:
    """Wait for scheduled usage writes (shutdown and tests)."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


def count_usage(
    db: Session, email: str, operation_type: str, since: datetime, until: datetime
) -> int:
    stmt = (
        select(func.count(UsageLog.id))
        .where(UsageLog.user_email == email)
        .where(UsageLog.operation_type == operation_type)
        .where(UsageLog.created_at >= since.replace(tzinfo=None))
        .where(UsageLog.created_at < until.replace(tzinfo=None))
    )
    return int(db.execute(stmt).scalar_one())


__all__ = ["UsageEntry", "append_usage", "record_usage", "drain", "count_usage"]
