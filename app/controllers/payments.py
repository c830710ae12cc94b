import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import AliasChoices, Field, ValidationError

from app.config import Settings
from app.controllers.schemas import (
    AccountSnapshot,
    CamelModel,
    OrderOut,
    account_snapshot,
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
from app.metrics import signature_invalid_total
from app.models import ErrorCode
from app.services.entitlement import effective_plan
from app.services.errors import LedgerError
from app.services.hmac import verify_hmac
from app.services.ledger import utcnow
from app.services.razorpay import RazorpayClient
from app.services.reconciliation import (
    create_subscription_order,
    PLAN_CREDITS,
    handle_webhook_event,
    verify_and_credit,
)
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments")


class SubscriptionOrderRequest(CamelModel):
    email: str | None = None


class SubscriptionOrderResponse(CamelModel):
    success: bool = True
    order: OrderOut
    razorpay_key_id: str


class PaymentConfirmation(CamelModel):
    order_id: str = Field(validation_alias=AliasChoices("orderId", "razorpay_order_id"))
    payment_id: str = Field(
        validation_alias=AliasChoices("paymentId", "razorpay_payment_id")
    )
    signature: str = Field(validation_alias=AliasChoices("signature", "razorpay_signature"))
    email: str = Field(validation_alias=AliasChoices("email", "user_email", "userEmail"))


class ConfirmationResponse(CamelModel):
    success: bool = True
    duplicate: bool
    message: str
    account: AccountSnapshot | None = None


@router.post(
    "/subscription/order",
    response_model=SubscriptionOrderResponse,
    responses={503: {"model": ErrorResponse}},
)
async def create_order(
    body: SubscriptionOrderRequest,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    gateway: RazorpayClient = Depends(get_gateway),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(body.email, caller)
    try:
        result = await create_subscription_order(store, gateway, cfg, email)
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return SubscriptionOrderResponse(
        order=OrderOut(**result.order._asdict()),
        razorpay_key_id=gateway.key_id,
    )


@router.post(
    "/razorpay/webhook",
    status_code=200,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def razorpay_webhook(
    request: Request,
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
    x_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
):
    raw_body = await request.body()
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.exception("failed to parse webhook body as JSON")
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Malformed JSON body")
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc
    if not isinstance(data, dict):
        logger.warning("audit: non-object webhook payload")
        err = ErrorResponse(
            code=ErrorCode.BAD_REQUEST, message="Payload must be a JSON object"
        )
        raise HTTPException(status_code=400, detail=err.model_dump())

    # provider envelopes carry X-Razorpay-Signature; client confirmations never do
    if x_signature is not None:
        if not verify_hmac(x_signature, raw_body, cfg.razorpay_webhook_secret):
            signature_invalid_total.labels("webhook").inc()
            logger.warning("audit: invalid webhook signature")
            err = ErrorResponse(
                code=ErrorCode.SIGNATURE_INVALID, message="Invalid webhook signature"
            )
            raise HTTPException(status_code=401, detail=err.model_dump())
        try:
            outcome = await handle_webhook_event(store, cfg, data)
        except LedgerError as exc:
            raise ledger_http_error(exc) from exc
        return {"status": "ok", "event": data.get("event"), "result": outcome}

    try:
        body = PaymentConfirmation.model_validate(data)
    except ValidationError as exc:
        err = ErrorResponse(
            code=ErrorCode.BAD_REQUEST,
            message="Invalid request - missing payment data or signature",
        )
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc
    now = utcnow()
    try:
        result = await verify_and_credit(
            store, cfg, body.order_id, body.payment_id, body.signature, body.email, now=now
        )
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    account = None
    if result.account is not None:
        resolved = effective_plan(result.account, now, cfg.special_account_emails)
        account = account_snapshot(result.account, resolved)
    if result.duplicate:
        message = "Payment already processed"
    elif result.kind == PLAN_CREDITS:
        message = "Payment verified and credits added"
    else:
        message = "Payment verified and Pro plan activated"
    return ConfirmationResponse(
        duplicate=result.duplicate, message=message, account=account
    ).model_dump(by_alias=True, mode="json")
