"""Account and wallet balances.

All balance changes go through single conditional ``UPDATE`` statements so
that concurrent requests for the same account serialize in the database:

- monthly: ``monthly_credits >= :cost`` guards the decrement;
- wallet: ``weekly + purchased >= :amount`` guards a two-pool decrement that
  drains ``weekly_credits`` first and takes the remainder from
  ``purchased_credits``.

Resets are applied with a compare-and-set on the previous anchor, so only one
of several concurrent requests performs a given reset.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings
from app.metrics import credits_consumed_total, insufficient_credits_total
from app.models import Account, CreditWallet
from app.services.entitlement import EffectivePlan, effective_plan
from app.services.errors import AccountNotFound, InsufficientCredits, LedgerError
from app.services.reset_policy import (
    FREE,
    PRO,
    AccountState,
    WalletState,
    maybe_reset_monthly,
    maybe_reset_weekly,
    monthly_seed,
    weekly_seed,
)
from app.services.store import BalanceStore
from app.services.usage_log import UsageEntry, record_usage

logger = logging.getLogger(__name__)


class ConsumeResult(NamedTuple):
    credits_consumed: int
    credits_remaining: int


class WalletResult(NamedTuple):
    success: bool
    weekly_credits: int
    purchased_credits: int
    message: str | None = None
    week_start_date: datetime | None = None

    @property
    def total(self) -> int:
        return self.weekly_credits + self.purchased_credits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def naive(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def normalize_email(email: str) -> str:
    return email.strip().lower()


def account_state(row: Account) -> AccountState:
    return AccountState(
        email=row.email,
        plan=row.plan,
        monthly_credits=row.monthly_credits,
        last_monthly_reset=row.last_monthly_reset,
        subscription_start=row.subscription_start,
        subscription_end=row.subscription_end,
        is_manual_assignment=bool(row.is_manual_assignment),
    )


def wallet_state(row: CreditWallet) -> WalletState:
    return WalletState(
        email=row.email,
        weekly_credits=row.weekly_credits,
        purchased_credits=row.purchased_credits,
        week_start_date=row.week_start_date,
    )


def _reload(db: Session, model, key):
    db.expire_all()
    return db.get(model, key)


def get_account_sync(db: Session, email: str) -> AccountState:
    row = db.get(Account, email)
    if row is None:
        raise AccountNotFound(email)
    return account_state(row)


def ensure_account_sync(db: Session, email: str, now: datetime, cfg: Settings) -> AccountState:
    """Load the account, creating it on first touch, and apply the monthly reset."""
    row = db.get(Account, email)
    if row is None:
        plan = PRO if cfg.is_special(email) else FREE
        db.add(
            Account(
                email=email,
                plan=plan,
                monthly_credits=monthly_seed(plan, cfg),
                last_monthly_reset=now.date(),
                is_manual_assignment=False,
                created_at=naive(now),
                updated_at=naive(now),
            )
        )
        try:
            db.commit()
            logger.info("Account created on %s plan", plan, extra={"email": email})
        except IntegrityError:
            db.rollback()
        row = _reload(db, Account, email)

    state = account_state(row)
    resolved = effective_plan(state, now, cfg.special_account_emails)
    reset = maybe_reset_monthly(state, now, resolved.plan, cfg)
    if reset == state:
        return state

    anchor = (
        Account.last_monthly_reset.is_(None)
        if state.last_monthly_reset is None
        else Account.last_monthly_reset == state.last_monthly_reset
    )
    result = db.execute(
        update(Account)
        .where(Account.email == email, anchor)
        .values(
            monthly_credits=reset.monthly_credits,
            last_monthly_reset=reset.last_monthly_reset,
            updated_at=naive(now),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 1:
        logger.info(
            "Monthly credits reset to %d", reset.monthly_credits, extra={"email": email}
        )
        return reset
    # another request reset first
    return account_state(_reload(db, Account, email))


def consume_sync(db: Session, email: str, cost: int, now: datetime) -> int:
    result = db.execute(
        update(Account)
        .where(Account.email == email, Account.monthly_credits >= cost)
        .values(
            monthly_credits=Account.monthly_credits - cost,
            updated_at=naive(now),
        )
        .execution_options(synchronize_session=False)
    )
    balance = db.execute(
        select(Account.monthly_credits).where(Account.email == email)
    ).scalar_one_or_none()
    if result.rowcount != 1:
        db.rollback()
        if balance is None:
            raise AccountNotFound(email)
        raise InsufficientCredits(required=cost, available=balance)
    db.commit()
    return balance


def ensure_wallet_sync(
    db: Session, email: str, plan: str, now: datetime, cfg: Settings
) -> WalletState:
    """Load the wallet, creating it seeded for ``plan``, and roll the week forward."""
    row = db.get(CreditWallet, email)
    if row is None:
        db.add(
            CreditWallet(
                email=email,
                weekly_credits=weekly_seed(plan, cfg),
                purchased_credits=0,
                week_start_date=naive(now),
                updated_at=naive(now),
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
        row = _reload(db, CreditWallet, email)

    state = wallet_state(row)
    reset = maybe_reset_weekly(state, plan, now, cfg)
    if reset == state:
        return state

    anchor = (
        CreditWallet.week_start_date.is_(None)
        if state.week_start_date is None
        else CreditWallet.week_start_date == state.week_start_date
    )
    result = db.execute(
        update(CreditWallet)
        .where(CreditWallet.email == email, anchor)
        .values(
            weekly_credits=reset.weekly_credits,
            week_start_date=naive(reset.week_start_date),
            updated_at=naive(now),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 1:
        logger.info(
            "Weekly credits reset to %d", reset.weekly_credits, extra={"email": email}
        )
        return reset._replace(week_start_date=naive(reset.week_start_date))
    return wallet_state(_reload(db, CreditWallet, email))


def deduct_wallet_sync(
    db: Session, email: str, amount: int, plan: str, now: datetime, cfg: Settings
) -> WalletResult:
    ensure_wallet_sync(db, email, plan, now, cfg)

    weekly = CreditWallet.weekly_credits
    purchased = CreditWallet.purchased_credits
    weekly_covers = weekly >= amount
    result = db.execute(
        update(CreditWallet)
        .where(CreditWallet.email == email, (weekly + purchased) >= amount)
        .values(
            weekly_credits=case((weekly_covers, weekly - amount), else_=0),
            purchased_credits=case(
                (weekly_covers, purchased), else_=purchased - (amount - weekly)
            ),
            updated_at=naive(now),
        )
        .execution_options(synchronize_session=False)
    )
    row = db.execute(
        select(
            CreditWallet.weekly_credits,
            CreditWallet.purchased_credits,
            CreditWallet.week_start_date,
        ).where(CreditWallet.email == email)
    ).one()
    if result.rowcount != 1:
        db.rollback()
        return WalletResult(
            success=False,
            weekly_credits=row.weekly_credits,
            purchased_credits=row.purchased_credits,
            message="Insufficient credits",
            week_start_date=row.week_start_date,
        )
    db.commit()
    return WalletResult(
        success=True,
        weekly_credits=row.weekly_credits,
        purchased_credits=row.purchased_credits,
        week_start_date=row.week_start_date,
    )


def adjust_credits_sync(
    db: Session,
    email: str,
    monthly_delta: int,
    purchased_delta: int,
    now: datetime,
    cfg: Settings,
) -> tuple[AccountState, WalletState]:
    """Operator adjustment of both balances; refuses to go below zero."""
    account = get_account_sync(db, email)
    plan = effective_plan(account, now, cfg.special_account_emails).plan
    ensure_wallet_sync(db, email, plan, now, cfg)

    if monthly_delta:
        result = db.execute(
            update(Account)
            .where(Account.email == email, Account.monthly_credits + monthly_delta >= 0)
            .values(
                monthly_credits=Account.monthly_credits + monthly_delta,
                updated_at=naive(now),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            available = _reload(db, Account, email).monthly_credits
            raise InsufficientCredits(required=-monthly_delta, available=available)
    if purchased_delta:
        result = db.execute(
            update(CreditWallet)
            .where(
                CreditWallet.email == email,
                CreditWallet.purchased_credits + purchased_delta >= 0,
            )
            .values(
                purchased_credits=CreditWallet.purchased_credits + purchased_delta,
                updated_at=naive(now),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            available = _reload(db, CreditWallet, email).purchased_credits
            raise InsufficientCredits(required=-purchased_delta, available=available)
    db.commit()
    return (
        account_state(_reload(db, Account, email)),
        wallet_state(db.get(CreditWallet, email)),
    )


async def resolve_account(
    store: BalanceStore, cfg: Settings, email: str, now: datetime | None = None
) -> tuple[AccountState, EffectivePlan]:
    """Ensure the account exists, apply the monthly reset and resolve its plan."""
    now = now or utcnow()
    email = normalize_email(email)
    account = await store.run(ensure_account_sync, email, now, cfg)
    return account, effective_plan(account, now, cfg.special_account_emails)


async def consume(
    store: BalanceStore,
    email: str,
    cost: int,
    *,
    model: str | None = None,
    operation_type: str = "ai",
    now: datetime | None = None,
) -> ConsumeResult:
    """Atomically deduct ``cost`` from the monthly balance."""
    if cost < 0:
        raise LedgerError("Cost must be non-negative", cost=cost)
    now = now or utcnow()
    email = normalize_email(email)
    try:
        balance = await store.run(consume_sync, email, cost, now)
    except InsufficientCredits:
        insufficient_credits_total.labels("monthly").inc()
        raise
    credits_consumed_total.labels("monthly").inc(cost)
    record_usage(
        store,
        UsageEntry(
            user_email=email,
            operation_type=operation_type,
            credits_consumed=cost,
            credits_remaining=balance,
            model=model,
        ),
    )
    return ConsumeResult(credits_consumed=cost, credits_remaining=balance)


async def get_wallet(
    store: BalanceStore,
    cfg: Settings,
    email: str,
    plan: str,
    now: datetime | None = None,
) -> WalletState:
    now = now or utcnow()
    return await store.run(ensure_wallet_sync, normalize_email(email), plan, now, cfg)


async def deduct_wallet(
    store: BalanceStore,
    cfg: Settings,
    email: str,
    amount: int,
    description: str,
    plan: str,
    now: datetime | None = None,
) -> WalletResult:
    """Deduct ``amount`` from the wallet, weekly pool first; all-or-nothing."""
    if amount <= 0:
        raise LedgerError("Amount must be greater than 0", amount=amount)
    now = now or utcnow()
    email = normalize_email(email)
    result = await store.run(deduct_wallet_sync, email, amount, plan, now, cfg)
    if not result.success:
        insufficient_credits_total.labels("wallet").inc()
        return result
    credits_consumed_total.labels("wallet").inc(amount)
    record_usage(
        store,
        UsageEntry(
            user_email=email,
            operation_type="website_builder",
            credits_consumed=amount,
            credits_remaining=result.total,
        ),
    )
    return result


async def adjust_credits(
    store: BalanceStore,
    cfg: Settings,
    email: str,
    monthly_delta: int = 0,
    purchased_delta: int = 0,
    now: datetime | None = None,
) -> tuple[AccountState, WalletState]:
    now = now or utcnow()
    return await store.run(
        adjust_credits_sync,
        normalize_email(email),
        monthly_delta,
        purchased_delta,
        now,
        cfg,
    )


__all__ = [
    "ConsumeResult",
    "WalletResult",
    "utcnow",
    "naive",
    "normalize_email",
    "account_state",
    "wallet_state",
    "get_account_sync",
    "ensure_account_sync",
    "consume_sync",
    "ensure_wallet_sync",
    "deduct_wallet_sync",
    "adjust_credits_sync",
    "resolve_account",
    "consume",
    "get_wallet",
    "deduct_wallet",
    "adjust_credits",
]
