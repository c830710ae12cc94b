"""Purchase reconciliation.

Turns verified gateway payments into balance changes. A payment is credited
at most once: the recorded order is claimed with

    UPDATE payment_records SET payment_id = :pid, status = 'active'
    WHERE order_id = :oid AND payment_id IS NULL

and the grant commits in the same transaction as the claim. A redelivery
finds the order already claimed and credits nothing. ``payment_id`` is also
unique, so one payment can never be attached to two orders.
"""
from __future__ import annotations

import calendar
import logging
from datetime import datetime, timedelta
from typing import Any, NamedTuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import Settings
from app.metrics import (
    downgrade_total,
    payment_duplicate_total,
    payment_fail_total,
    purchase_credited_total,
    signature_invalid_total,
)
from app.models import Account, CreditPackage, CreditWallet, PaymentRecord, UsageLog
from app.services.entitlement import effective_plan
from app.services.errors import (
    AccountNotFound,
    LedgerError,
    OrderMismatch,
    OrderNotFound,
    PackageNotFound,
    SignatureInvalid,
)
from app.services.hmac import verify_payment_signature
from app.services.ledger import (
    _reload,
    account_state,
    ensure_wallet_sync,
    naive,
    normalize_email,
    utcnow,
    wallet_state,
)
from app.services.razorpay import GatewayOrder, RazorpayClient, make_receipt
from app.services.reset_policy import FREE, PRO, AccountState, WalletState, monthly_seed
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

PLAN_PRO = "pro"
PLAN_CREDITS = "website_credits"
SWEEP_MODEL = "subscription_system"


class PurchaseResult(NamedTuple):
    email: str
    kind: str
    order_id: str
    payment_id: str
    duplicate: bool
    credits_added: int
    account: AccountState | None
    wallet: WalletState | None


class OrderResult(NamedTuple):
    order: GatewayOrder
    package: CreditPackage | None


class DowngradeResult(NamedTuple):
    checked: int
    downgraded: list[str]


def add_months(value: datetime, months: int = 1) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# --- balance grants (no commit; callers own the transaction) ---------------


def _grant_pro(
    db: Session,
    email: str,
    now: datetime,
    cfg: Settings,
    end: datetime | None,
    manual: bool = False,
) -> None:
    values = dict(
        plan=PRO,
        monthly_credits=monthly_seed(PRO, cfg),
        last_monthly_reset=now.date(),
        subscription_start=naive(now),
        subscription_end=naive(end),
        is_manual_assignment=manual,
        updated_at=naive(now),
    )
    result = db.execute(
        update(Account)
        .where(Account.email == email)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(Account(email=email, created_at=naive(now), **values))
        db.flush()


def _downgrade(db: Session, email: str, now: datetime, cfg: Settings, clear_dates: bool) -> bool:
    values: dict[str, Any] = dict(
        plan=FREE,
        monthly_credits=monthly_seed(FREE, cfg),
        last_monthly_reset=now.date(),
        is_manual_assignment=False,
        updated_at=naive(now),
    )
    if clear_dates:
        values.update(subscription_start=None, subscription_end=None)
    result = db.execute(
        update(Account)
        .where(Account.email == email)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _grant_credits(db: Session, email: str, credits: int, now: datetime) -> None:
    db.execute(
        update(CreditWallet)
        .where(CreditWallet.email == email)
        .values(
            purchased_credits=CreditWallet.purchased_credits + credits,
            updated_at=naive(now),
        )
        .execution_options(synchronize_session=False)
    )


def _claim(db: Session, order_id: str, payment_id: str, now: datetime) -> bool:
    try:
        result = db.execute(
            update(PaymentRecord)
            .where(PaymentRecord.order_id == order_id, PaymentRecord.payment_id.is_(None))
            .values(payment_id=payment_id, status="active", updated_at=naive(now))
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        # payment already attached to another order
        db.rollback()
        return False
    return result.rowcount == 1


def _balances(db: Session, email: str) -> tuple[AccountState | None, WalletState | None]:
    db.expire_all()
    account = db.get(Account, email)
    wallet = db.get(CreditWallet, email)
    return (
        account_state(account) if account is not None else None,
        wallet_state(wallet) if wallet is not None else None,
    )


def _plan_for(db: Session, email: str, now: datetime, cfg: Settings) -> str:
    row = db.get(Account, email)
    state = account_state(row) if row is not None else None
    if state is None and cfg.is_special(email):
        return PRO
    return effective_plan(state, now, cfg.special_account_emails).plan


# --- crediting ---------------------------------------------------------------


def credit_order_sync(
    db: Session,
    order_id: str,
    payment_id: str,
    email: str | None,
    package_id: int | None,
    now: datetime,
    cfg: Settings,
) -> PurchaseResult:
    """Claim ``order_id`` for ``payment_id`` and apply its grant once."""
    record = db.execute(
        select(PaymentRecord).where(PaymentRecord.order_id == order_id)
    ).scalar_one_or_none()

    if record is None:
        if package_id is not None or not email:
            raise OrderNotFound(order_id)
        return _credit_unrecorded_subscription(db, order_id, payment_id, email, now, cfg)

    owner = record.user_email
    if email and normalize_email(email) != owner:
        raise OrderMismatch(order_id)
    if package_id is not None and record.package_id != package_id:
        raise OrderMismatch(order_id)

    credits = 0
    if record.plan_type == PLAN_CREDITS:
        package = db.get(CreditPackage, record.package_id)
        if package is None:
            raise PackageNotFound(record.package_id)
        credits = record.credits or package.credits
        # lazy wallet creation commits on its own, before the claim
        ensure_wallet_sync(db, owner, _plan_for(db, owner, now, cfg), now, cfg)

    if not _claim(db, order_id, payment_id, now):
        db.rollback()
        account, wallet = _balances(db, owner)
        return PurchaseResult(
            owner, record.plan_type, order_id, payment_id, True, 0, account, wallet
        )

    if record.plan_type == PLAN_CREDITS:
        _grant_credits(db, owner, credits, now)
    else:
        _grant_pro(db, owner, now, cfg, add_months(now, 1))
    db.commit()

    account, wallet = _balances(db, owner)
    return PurchaseResult(
        owner, record.plan_type, order_id, payment_id, False, credits, account, wallet
    )


def _credit_unrecorded_subscription(
    db: Session,
    order_id: str,
    payment_id: str,
    email: str,
    now: datetime,
    cfg: Settings,
) -> PurchaseResult:
    email = normalize_email(email)
    db.add(
        PaymentRecord(
            user_email=email,
            order_id=order_id,
            payment_id=payment_id,
            plan_type=PLAN_PRO,
            amount=cfg.subscription_price_paise,
            currency=cfg.currency,
            status="active",
            created_at=naive(now),
            updated_at=naive(now),
        )
    )
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        account, wallet = _balances(db, email)
        return PurchaseResult(email, PLAN_PRO, order_id, payment_id, True, 0, account, wallet)
    _grant_pro(db, email, now, cfg, add_months(now, 1))
    db.commit()
    account, wallet = _balances(db, email)
    return PurchaseResult(email, PLAN_PRO, order_id, payment_id, False, 0, account, wallet)


def _log_credited(result: PurchaseResult, source: str) -> PurchaseResult:
    extra = {"email": result.email, "order_id": result.order_id, "payment_id": result.payment_id}
    if result.duplicate:
        payment_duplicate_total.inc()
        logger.info("audit: duplicate %s payment delivery ignored", source, extra=extra)
    else:
        purchase_credited_total.labels(result.kind).inc()
        logger.info("audit: %s payment credited as %s", source, result.kind, extra=extra)
    return result


async def verify_and_credit(
    store: BalanceStore,
    cfg: Settings,
    order_id: str,
    payment_id: str,
    signature: str,
    email: str,
    package_id: int | None = None,
    now: datetime | None = None,
) -> PurchaseResult:
    """Verify a client checkout confirmation and credit it exactly once."""
    if not verify_payment_signature(order_id, payment_id, signature, cfg.razorpay_key_secret):
        signature_invalid_total.labels("client").inc()
        logger.warning(
            "audit: invalid payment signature",
            extra={"email": email, "order_id": order_id, "payment_id": payment_id},
        )
        raise SignatureInvalid()
    now = now or utcnow()
    result = await store.run(
        credit_order_sync, order_id, payment_id, normalize_email(email), package_id, now, cfg
    )
    return _log_credited(result, "client")


# --- orders ------------------------------------------------------------------


def _record_order_sync(
    db: Session,
    email: str,
    order: GatewayOrder,
    plan_type: str,
    package_id: int | None,
    credits: int | None,
    now: datetime,
) -> None:
    db.add(
        PaymentRecord(
            user_email=email,
            order_id=order.id,
            plan_type=plan_type,
            package_id=package_id,
            credits=credits,
            amount=order.amount,
            currency=order.currency,
            status="pending",
            created_at=naive(now),
            updated_at=naive(now),
        )
    )
    db.commit()


def _active_package_sync(db: Session, package_id: int) -> CreditPackage:
    package = db.get(CreditPackage, package_id)
    if package is None or not package.is_active:
        raise PackageNotFound(package_id)
    db.expunge(package)
    return package


def list_packages_sync(db: Session) -> list[CreditPackage]:
    rows = list(
        db.execute(
            select(CreditPackage)
            .where(CreditPackage.is_active.is_(True))
            .order_by(CreditPackage.sort_order, CreditPackage.id)
        ).scalars()
    )
    db.expunge_all()
    return rows


async def create_topup_order(
    store: BalanceStore,
    gateway: RazorpayClient,
    cfg: Settings,
    email: str,
    package_id: int,
    now: datetime | None = None,
) -> OrderResult:
    now = now or utcnow()
    email = normalize_email(email)
    package = await store.run(_active_package_sync, package_id)
    order = await gateway.create_order(
        amount=package.price_inr * 100,
        currency=cfg.currency,
        receipt=make_receipt("credits"),
        notes={"email": email, "package_id": str(package.id), "credits": str(package.credits)},
    )
    await store.run(
        _record_order_sync, email, order, PLAN_CREDITS, package.id, package.credits, now
    )
    logger.info("Top-up order created", extra={"email": email, "order_id": order.id})
    return OrderResult(order, package)


async def create_subscription_order(
    store: BalanceStore,
    gateway: RazorpayClient,
    cfg: Settings,
    email: str,
    now: datetime | None = None,
) -> OrderResult:
    now = now or utcnow()
    email = normalize_email(email)
    order = await gateway.create_order(
        amount=cfg.subscription_price_paise,
        currency=cfg.currency,
        receipt=make_receipt("pro"),
        notes={"email": email, "plan": PLAN_PRO},
    )
    await store.run(_record_order_sync, email, order, PLAN_PRO, None, None, now)
    logger.info("Subscription order created", extra={"email": email, "order_id": order.id})
    return OrderResult(order, None)


# --- provider webhook events -------------------------------------------------


def _entity(event: dict, name: str) -> dict:
    payload = event.get("payload") or {}
    return (payload.get(name) or {}).get("entity") or {}


def _subscription_owner(db: Session, subscription_id: str, notes: dict) -> str | None:
    owner = db.execute(
        select(PaymentRecord.user_email)
        .where(PaymentRecord.subscription_id == subscription_id)
        .order_by(PaymentRecord.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if owner:
        return owner
    email = notes.get("email") or notes.get("user_email")
    return normalize_email(email) if email else None


def mark_failed_sync(db: Session, order_id: str, now: datetime) -> bool:
    """Fail a pending order; an already credited record is left as is."""
    result = db.execute(
        update(PaymentRecord)
        .where(PaymentRecord.order_id == order_id, PaymentRecord.status == "pending")
        .values(status="failed", updated_at=naive(now))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def renew_subscription_sync(
    db: Session,
    subscription_id: str,
    payment: dict,
    subscription: dict,
    now: datetime,
    cfg: Settings,
) -> PurchaseResult | None:
    if subscription.get("status") == "cancelled":
        return None
    cancelled = db.execute(
        select(PaymentRecord.id).where(
            PaymentRecord.subscription_id == subscription_id,
            PaymentRecord.status == "cancelled",
        )
    ).first()
    if cancelled is not None:
        return None
    email = _subscription_owner(db, subscription_id, subscription.get("notes") or {})
    if email is None:
        return None

    payment_id = payment["id"]
    order_id = payment.get("order_id") or f"sub_{payment_id}"
    db.add(
        PaymentRecord(
            user_email=email,
            order_id=order_id,
            payment_id=payment_id,
            subscription_id=subscription_id,
            plan_type=PLAN_PRO,
            amount=payment.get("amount", cfg.subscription_price_paise),
            currency=payment.get("currency", cfg.currency),
            status="active",
            created_at=naive(now),
            updated_at=naive(now),
        )
    )
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        account, wallet = _balances(db, email)
        return PurchaseResult(email, PLAN_PRO, order_id, payment_id, True, 0, account, wallet)
    _grant_pro(db, email, now, cfg, add_months(now, 1))
    db.commit()
    account, wallet = _balances(db, email)
    return PurchaseResult(email, PLAN_PRO, order_id, payment_id, False, 0, account, wallet)


def cancel_subscription_sync(
    db: Session, subscription_id: str, notes: dict, now: datetime, cfg: Settings
) -> str | None:
    email = _subscription_owner(db, subscription_id, notes)
    if email is None:
        return None
    db.execute(
        update(PaymentRecord)
        .where(PaymentRecord.subscription_id == subscription_id)
        .values(status="cancelled", updated_at=naive(now))
        .execution_options(synchronize_session=False)
    )
    if not cfg.is_special(email):
        _downgrade(db, email, now, cfg, clear_dates=True)
    db.commit()
    return email


async def handle_webhook_event(
    store: BalanceStore, cfg: Settings, event: dict, now: datetime | None = None
) -> str:
    """Apply a verified provider event; returns a short outcome label."""
    now = now or utcnow()
    name = event.get("event", "")

    if name == "payment.captured":
        payment = _entity(event, "payment")
        order_id, payment_id = payment.get("order_id"), payment.get("id")
        if not order_id or not payment_id:
            return "ignored"
        try:
            result = await store.run(
                credit_order_sync, order_id, payment_id, None, None, now, cfg
            )
        except OrderNotFound:
            logger.info("Captured payment for unknown order", extra={"order_id": order_id})
            return "ignored"
        _log_credited(result, "webhook")
        return "duplicate" if result.duplicate else "credited"

    if name == "payment.failed":
        payment = _entity(event, "payment")
        order_id = payment.get("order_id")
        payment_fail_total.inc()
        if not order_id:
            return "ignored"
        failed = await store.run(mark_failed_sync, order_id, now)
        logger.info(
            "Payment failed", extra={"order_id": order_id, "payment_id": payment.get("id")}
        )
        return "failed" if failed else "ignored"

    if name == "subscription.charged":
        subscription = _entity(event, "subscription")
        payment = _entity(event, "payment")
        if not subscription.get("id") or not payment.get("id"):
            return "ignored"
        result = await store.run(
            renew_subscription_sync, subscription["id"], payment, subscription, now, cfg
        )
        if result is None:
            return "ignored"
        _log_credited(result, "renewal")
        return "duplicate" if result.duplicate else "renewed"

    if name == "subscription.cancelled":
        subscription = _entity(event, "subscription")
        if not subscription.get("id"):
            return "ignored"
        email = await store.run(
            cancel_subscription_sync,
            subscription["id"],
            subscription.get("notes") or {},
            now,
            cfg,
        )
        if email is None:
            return "ignored"
        logger.info("audit: subscription cancelled", extra={"email": email})
        return "cancelled"

    logger.info("Unhandled webhook event %s", name, extra={"event": name})
    return "ignored"


# --- operator actions --------------------------------------------------------


def assign_plan_sync(
    db: Session, email: str, duration_days: int, now: datetime, cfg: Settings
) -> AccountState:
    if db.get(Account, email) is None:
        raise AccountNotFound(email)
    _grant_pro(db, email, now, cfg, now + timedelta(days=duration_days), manual=True)
    db.commit()
    return account_state(_reload(db, Account, email))


def cancel_plan_sync(db: Session, email: str, now: datetime, cfg: Settings) -> AccountState:
    if db.get(Account, email) is None:
        raise AccountNotFound(email)
    if not cfg.is_special(email):
        db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.user_email == email,
                PaymentRecord.plan_type == PLAN_PRO,
                PaymentRecord.status == "active",
            )
            .values(status="cancelled", updated_at=naive(now))
            .execution_options(synchronize_session=False)
        )
        _downgrade(db, email, now, cfg, clear_dates=True)
        db.commit()
    return account_state(_reload(db, Account, email))


def lapsed_pro_emails_sync(db: Session, now: datetime) -> list[str]:
    """Pro accounts whose subscription end has passed, special ones included."""
    return list(
        db.execute(
            select(Account.email).where(
                Account.plan == PRO,
                Account.subscription_end.is_not(None),
                Account.subscription_end <= naive(now),
            )
        ).scalars()
    )


def downgrade_expired_sync(
    db: Session, now: datetime, cfg: Settings, operation_type: str
) -> DowngradeResult:
    """Move every lapsed non-special pro account back to free."""
    cutoff = naive(now)
    candidates = lapsed_pro_emails_sync(db, now)
    downgraded: list[str] = []
    for email in candidates:
        if cfg.is_special(email):
            continue
        result = db.execute(
            update(Account)
            .where(
                Account.email == email,
                Account.plan == PRO,
                Account.subscription_end <= cutoff,
            )
            .values(
                plan=FREE,
                monthly_credits=monthly_seed(FREE, cfg),
                last_monthly_reset=now.date(),
                is_manual_assignment=False,
                updated_at=cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue
        db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.user_email == email,
                PaymentRecord.plan_type == PLAN_PRO,
                PaymentRecord.status == "active",
            )
            .values(status="expired", updated_at=cutoff)
            .execution_options(synchronize_session=False)
        )
        db.add(
            UsageLog(
                user_email=email,
                model=SWEEP_MODEL,
                operation_type=operation_type,
                credits_consumed=0,
                credits_remaining=monthly_seed(FREE, cfg),
                created_at=cutoff,
            )
        )
        db.commit()
        downgraded.append(email)
    return DowngradeResult(checked=len(candidates), downgraded=downgraded)


async def assign_plan(
    store: BalanceStore,
    cfg: Settings,
    email: str,
    duration_days: int,
    now: datetime | None = None,
) -> AccountState:
    if duration_days <= 0:
        raise LedgerError("Duration must be a positive number of days", duration=duration_days)
    now = now or utcnow()
    email = normalize_email(email)
    account = await store.run(assign_plan_sync, email, duration_days, now, cfg)
    logger.info("audit: pro plan assigned for %d days", duration_days, extra={"email": email})
    return account


async def cancel_plan(
    store: BalanceStore, cfg: Settings, email: str, now: datetime | None = None
) -> AccountState:
    now = now or utcnow()
    email = normalize_email(email)
    account = await store.run(cancel_plan_sync, email, now, cfg)
    logger.info("audit: plan cancelled by operator", extra={"email": email})
    return account


async def expired_accounts(
    store: BalanceStore, cfg: Settings, now: datetime | None = None
) -> list[str]:
    """Accounts the next sweep would downgrade."""
    emails = await store.run(lapsed_pro_emails_sync, now or utcnow())
    return [email for email in emails if not cfg.is_special(email)]


async def downgrade_expired(
    store: BalanceStore,
    cfg: Settings,
    now: datetime | None = None,
    operation_type: str = "auto_downgrade",
) -> DowngradeResult:
    now = now or utcnow()
    result = await store.run(downgrade_expired_sync, now, cfg, operation_type)
    if result.downgraded:
        downgrade_total.inc(len(result.downgraded))
    logger.info(
        "Expired subscription sweep: %d checked, %d downgraded",
        result.checked,
        len(result.downgraded),
    )
    return result


__all__ = [
    "PurchaseResult",
    "OrderResult",
    "DowngradeResult",
    "add_months",
    "credit_order_sync",
    "verify_and_credit",
    "list_packages_sync",
    "create_topup_order",
    "create_subscription_order",
    "mark_failed_sync",
    "renew_subscription_sync",
    "cancel_subscription_sync",
    "handle_webhook_event",
    "assign_plan_sync",
    "cancel_plan_sync",
    "lapsed_pro_emails_sync",
    "downgrade_expired_sync",
    "expired_accounts",
    "assign_plan",
    "cancel_plan",
    "downgrade_expired",
]
