from fastapi import APIRouter, Depends

from app.config import Settings
from app.controllers.schemas import (
    AccountSnapshot,
    CamelModel,
    SubscriptionOut,
    account_snapshot,
    subscription_out,
)
from app.dependencies import (
    ErrorResponse,
    ensure_same_user,
    get_settings,
    get_store,
    ledger_http_error,
    rate_limit,
)
from app.services.entitlement import status_message, subscription_details
from app.services.errors import LedgerError
from app.services.ledger import resolve_account, utcnow
from app.services.limits import plan_limits
from app.services.reset_policy import as_utc
from app.services.store import BalanceStore

router = APIRouter(prefix="/user")


class ResearchOut(CamelModel):
    can_research: bool
    monthly_count: int
    monthly_limit: int
    remaining: int
    message: str


class PlanResponse(CamelModel):
    success: bool = True
    email: str
    plan: str
    is_pro: bool
    can_generate: bool
    daily_count: int
    daily_limit: int
    message: str
    research: ResearchOut
    subscription: SubscriptionOut


class AccountResponse(CamelModel):
    success: bool = True
    account: AccountSnapshot


class SubscriptionStatusResponse(CamelModel):
    success: bool = True
    plan: str
    is_pro: bool
    is_expired: bool
    is_special: bool
    expires_at: str | None = None
    subscription: SubscriptionOut
    message: str


@router.get(
    "/plan",
    response_model=PlanResponse,
    responses={503: {"model": ErrorResponse}},
)
async def get_plan(
    email: str | None = None,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(email, caller)
    now = utcnow()
    try:
        account, resolved = await resolve_account(store, cfg, email, now)
        limits = await plan_limits(store, cfg, email, resolved, now)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return PlanResponse(
        email=account.email,
        plan=limits.plan,
        is_pro=limits.is_pro,
        can_generate=limits.images.can_generate,
        daily_count=limits.images.daily_count,
        daily_limit=limits.images.daily_limit,
        message=limits.images.message,
        research=ResearchOut(**limits.research._asdict()),
        subscription=subscription_out(subscription_details(account, now)),
    )


@router.get(
    "/account",
    response_model=AccountResponse,
    responses={503: {"model": ErrorResponse}},
)
async def get_account(
    email: str | None = None,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(email, caller)
    try:
        account, resolved = await resolve_account(store, cfg, email)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return AccountResponse(account=account_snapshot(account, resolved))


@router.get(
    "/subscription-status",
    response_model=SubscriptionStatusResponse,
    responses={503: {"model": ErrorResponse}},
)
async def get_subscription_status(
    email: str | None = None,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(email, caller)
    now = utcnow()
    try:
        account, resolved = await resolve_account(store, cfg, email, now)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    details = subscription_details(account, now)
    expires_at = as_utc(resolved.expires_at)
    return SubscriptionStatusResponse(
        plan=resolved.plan,
        is_pro=resolved.is_pro,
        is_expired=resolved.is_expired,
        is_special=resolved.is_special,
        expires_at=expires_at.isoformat() if expires_at else None,
        subscription=subscription_out(details),
        message=status_message(resolved, details),
    )
