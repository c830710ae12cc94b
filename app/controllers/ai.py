import logging

from fastapi import APIRouter, Depends
from pydantic import Field

from app.config import Settings
from app.controllers.schemas import CamelModel
from app.dependencies import (
    ErrorResponse,
    ensure_same_user,
    get_settings,
    get_store,
    ledger_http_error,
    rate_limit,
)
from app.metrics import model_forbidden_total
from app.services.errors import LedgerError, ModelForbidden
from app.services.ledger import consume, resolve_account, utcnow
from app.services.model_access import (
    DEFAULT_MODEL,
    available_models,
    can_access_model,
    operation_cost,
    resolve_model,
)
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai")


class ModelOut(CamelModel):
    id: str
    cost: int


class ModelsResponse(CamelModel):
    success: bool = True
    plan: str
    is_pro: bool
    default_model: str
    credits_remaining: int
    models: list[ModelOut]


class ConsumeRequest(CamelModel):
    user_email: str | None = None
    model: str | None = None
    operation_type: str = "ai"
    # honoured for pro only; free usage is always the flat cost
    cost: int | None = Field(default=None, ge=0)


class ConsumeResponse(CamelModel):
    success: bool = True
    credits_consumed: int
    credits_remaining: int
    model: str


@router.get(
    "/models",
    response_model=ModelsResponse,
    responses={503: {"model": ErrorResponse}},
)
async def list_models(
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
    models = [
        ModelOut(id=model_id, cost=operation_cost(resolved.plan, model_id))
        for model_id in available_models(resolved.plan)
    ]
    return ModelsResponse(
        plan=resolved.plan,
        is_pro=resolved.is_pro,
        default_model=DEFAULT_MODEL,
        credits_remaining=account.monthly_credits,
        models=models,
    )


@router.post(
    "/consume",
    response_model=ConsumeResponse,
    responses={
        402: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def consume_credits(
    body: ConsumeRequest,
    caller: str = Depends(rate_limit),
    store: BalanceStore = Depends(get_store),
    cfg: Settings = Depends(get_settings),
):
    email = ensure_same_user(body.user_email, caller)
    now = utcnow()
    model = resolve_model(body.model)
    try:
        _, resolved = await resolve_account(store, cfg, email, now)
        if not can_access_model(resolved.plan, model):
            model_forbidden_total.inc()
            logger.info("Model %s denied on %s plan", model, resolved.plan, extra={"email": email})
            raise ModelForbidden(model, resolved.plan, available_models(resolved.plan))
        cost = operation_cost(resolved.plan, model)
        if resolved.is_pro and body.cost is not None:
            cost = body.cost
        result = await consume(
            store,
            email,
            cost,
            model=model,
            operation_type=body.operation_type,
            now=now,
        )
    except LedgerError as exc:
        raise ledger_http_error(exc) from exc
    return ConsumeResponse(
        credits_consumed=result.credits_consumed,
        credits_remaining=result.credits_remaining,
        model=model,
    )
