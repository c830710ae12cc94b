import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, Field

from app.config import Settings
from app.controllers.schemas import (
    CamelModel,
    CreditsSnapshot,
    OrderOut,
    credits_snapshot,
)
from app.dependencies import (
    ErrorResponse,
    ensure_same_user,
    get_gateway,
    get_settings,
    get_store,
    ledger_http_error,
    rate_limit,
)
from app.models import ErrorCode
from app.services.entitlement import effective_plan
from app.services.errors import LedgerError
from app.services.ledger import deduct_wallet, get_wallet, resolve_account, utcnow
from app.services.razorpay import RazorpayClient
from app.services.reconciliation import (
    create_topup_order,
    list_packages_sync,
    verify_and_credit,
)
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits")


class CreditsResponse(CamelModel):
    success: bool = True
    credits: CreditsSnapshot


class DeductRequest(CamelModel):
    email: str | None = None
    amount: int = Field(gt=0)
    description: str = "website builder"


class PackageOut(CamelModel):
    id: int
    credits: int
    price_inr: int
    display_name: str
    sort_order: int


class PackagesResponse(CamelModel):
    success: bool = True
    packages: list[PackageOut]


class PurchaseRequest(CamelModel):
    package_id: int
    email: str | None = None


class PurchaseResponse(CamelModel):
    success: bool = True
    order: OrderOut
    package: PackageOut
    razorpay_key_id: str


class VerifyPurchaseRequest(CamelModel):
    order_id: str = Field(validation_alias=AliasChoices("orderId", "razorpay_order_id", "order_id"))
    payment_id: str = Field(
        validation_alias=AliasChoices("paymentId", "razorpay_payment_id", "payment_id")
    )
    signature: str = Field(
        validation_alias=AliasChoices("signature", "razorpay_signature")
    )
    package_id: int = Field(validation_alias=AliasChoices("packageId", "package_id"))
    email: str | None = None


class PurchaseOut(CamelModel):
    order_id: str
    payment_id: str
    kind: str
    credits_added: int


class VerifyPurchaseResponse(CamelModel):
    success: bool = True
    duplicate: bool
    credits: CreditsSnapshot | None = None
    purchase: PurchaseOut


def _package_out(package) -> PackageOut:
    return PackageOut(
        id=package.id,
        credits=package.credits,
        price_inr=package.price_inr,
        display_name=package.display_name,
        sort_order=package.sort_order,
    )


@router.get(
    "",
    response_model=CreditsResponse,
    responses={503: {"model": ErrorResponse}},
)
async def get_credits(
    email: str | None = None,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(email, caller)
    now = utcnow()
    try:
        _, resolved = await resolve_account(store, cfg, email, now)
        wallet = await get_wallet(store, cfg, email, resolved.plan, now)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return CreditsResponse(
        credits=credits_snapshot(wallet, resolved, now, cfg.weekly_reset_days)
    )


@router.post(
    "/deduct",
    response_model=CreditsResponse,
    responses={402: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def deduct_credits(
    body: DeductRequest,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(body.email, caller)
    now = utcnow()
    try:
        _, resolved = await resolve_account(store, cfg, email, now)
        result = await deduct_wallet(
            store, cfg, email, body.amount, body.description, resolved.plan, now
        )
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc

    snapshot = credits_snapshot(result, resolved, now, cfg.weekly_reset_days)
    if not result.success:
        err = ErrorResponse(
            code=ErrorCode.INSUFFICIENT_CREDITS.value,
            message=f"Insufficient credits. You need {body.amount} credits but have {result.total}.",
        )
        raise HTTPException(
            status_code=402,
            detail={
                **err.model_dump(),
                "required": body.amount,
                "available": result.total,
                "credits": snapshot.model_dump(by_alias=True, mode="json"),
            },
        )
    logger.info(
        "Wallet deducted %d for %s", body.amount, body.description, extra={"email": email}
    )
    return CreditsResponse(credits=snapshot)


@router.get("/packages", response_model=PackagesResponse)
async def get_packages(
    _caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
):
    try:
        packages = await store.run(list_packages_sync)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return PackagesResponse(packages=[_package_out(p) for p in packages])


@router.post(
    "/purchase",
    response_model=PurchaseResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def purchase_credits(
    body: PurchaseRequest,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    gateway: RazorpayClient = Depends(get_gateway),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(body.email, caller)
    try:
        result = await create_topup_order(store, gateway, cfg, email, body.package_id)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return PurchaseResponse(
        order=OrderOut(**result.order._asdict()),
        package=_package_out(result.package),
        razorpay_key_id=gateway.key_id,
    )


@router.post(
    "/verify-purchase",
    response_model=VerifyPurchaseResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def verify_purchase(
    body: VerifyPurchaseRequest,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(body.email, caller)
    now = utcnow()
    try:
        result = await verify_and_credit(
            store,
            cfg,
            body.order_id,
            body.payment_id,
            body.signature,
            email,
            body.package_id,
            now,
        )
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc

    resolved = effective_plan(result.account, now, cfg.special_account_emails)
    snapshot = None
    if result.wallet is not None:
        snapshot = credits_snapshot(result.wallet, resolved, now, cfg.weekly_reset_days)
    return VerifyPurchaseResponse(
        duplicate=result.duplicate,
        credits=snapshot,
        purchase=PurchaseOut(
            order_id=result.order_id,
            payment_id=result.payment_id,
            kind=result.kind,
            credits_added=result.credits_added,
        ),
    )
