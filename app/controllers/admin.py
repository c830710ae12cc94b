import logging

from fastapi import APIRouter, Depends
from pydantic import Field

from app.config import Settings
from app.controllers.schemas import AccountSnapshot, CamelModel, account_snapshot
from app.dependencies import (
    ErrorResponse,
    get_settings,
    get_store,
    ledger_http_error,
    require_admin,
)
from app.services.entitlement import effective_plan
from app.services.errors import LedgerError
from app.services.ledger import adjust_credits, utcnow
from app.services.reconciliation import assign_plan, cancel_plan, downgrade_expired
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


class AssignPlanRequest(CamelModel):
    email: str
    duration_days: int = Field(gt=0)


class EmailRequest(CamelModel):
    email: str


class AdjustCreditsRequest(CamelModel):
    email: str
    monthly_delta: int = 0
    purchased_delta: int = 0


class AccountResponse(CamelModel):
    success: bool = True
    message: str
    account: AccountSnapshot


class AdjustCreditsResponse(AccountResponse):
    purchased_credits: int
    weekly_credits: int


class SweepResponse(CamelModel):
    success: bool = True
    checked: int
    downgraded_count: int
    downgraded: list[str]


@router.post(
    "/plans/assign",
    response_model=AccountResponse,
    responses={404: {"model": ErrorResponse}},
)
async def admin_assign_plan(
    body: AssignPlanRequest,
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    try:
        account = await assign_plan(store, cfg, body.email, body.duration_days, now)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    resolved = effective_plan(account, now, cfg.special_account_emails)
    return AccountResponse(
        message="Pro plan assigned successfully",
        account=account_snapshot(account, resolved),
    )


@router.post(
    "/plans/cancel",
    response_model=AccountResponse,
    responses={404: {"model": ErrorResponse}},
)
async def admin_cancel_plan(
    body: EmailRequest,
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    try:
        account = await cancel_plan(store, cfg, body.email, now)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    resolved = effective_plan(account, now, cfg.special_account_emails)
    message = (
        "Special account keeps its Pro plan"
        if resolved.is_special
        else "Plan cancelled successfully"
    )
    return AccountResponse(message=message, account=account_snapshot(account, resolved))


@router.post(
    "/credits/adjust",
    response_model=AdjustCreditsResponse,
    responses={402: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def admin_adjust_credits(
    body: AdjustCreditsRequest,
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    try:
        account, wallet = await adjust_credits(
            store, cfg, body.email, body.monthly_delta, body.purchased_delta, now
        )
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    logger.info(
        "audit: credits adjusted monthly=%+d purchased=%+d",
        body.monthly_delta,
        body.purchased_delta,
        extra={"email": account.email},
    )
    resolved = effective_plan(account, now, cfg.special_account_emails)
    return AdjustCreditsResponse(
        message="Credits adjusted",
        account=account_snapshot(account, resolved),
        purchased_credits=wallet.purchased_credits,
        weekly_credits=wallet.weekly_credits,
    )


@router.post("/subscriptions/check", response_model=SweepResponse)
async def admin_check_subscriptions(
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    try:
        result = await downgrade_expired(store, cfg, operation_type="manual_downgrade")
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return SweepResponse(
        checked=result.checked,
        downgraded_count=len(result.downgraded),
        downgraded=result.downgraded,
    )
