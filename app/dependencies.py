from __future__ import annotations

import logging

import jwt
import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel

from app.config import Settings
from app.models import ErrorCode
from app.services.errors import LedgerError
from app.services.ledger import normalize_email
from app.services.razorpay import RazorpayClient
from app.services.store import BalanceStore

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.INSUFFICIENT_CREDITS: 402,
    ErrorCode.MODEL_FORBIDDEN: 403,
    ErrorCode.SIGNATURE_INVALID: 400,
    ErrorCode.ACCOUNT_NOT_FOUND: 404,
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.ORDER_MISMATCH: 400,
    ErrorCode.PACKAGE_NOT_FOUND: 400,
    ErrorCode.STORE_UNAVAILABLE: 503,
    ErrorCode.PAYMENT_UNAVAILABLE: 503,
}


class ErrorResponse(BaseModel):
    code: str
    message: str


def error(status_code: int, code: ErrorCode | str, message: str, **extra) -> HTTPException:
    err = ErrorResponse(code=str(getattr(code, "value", code)), message=message)
    return HTTPException(status_code=status_code, detail={**err.model_dump(), **extra})


def ledger_http_error(exc: LedgerError, status_code: int | None = None) -> HTTPException:
    """Render a ledger failure as an ``ErrorResponse`` detail."""
    status = status_code or STATUS_BY_CODE.get(exc.code, 400)
    extra = {k: v for k, v in exc.context.items() if k in ("required", "available", "models")}
    return error(status, exc.code, exc.message, **extra)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> BalanceStore:
    return request.app.state.store


def get_gateway(request: Request) -> RazorpayClient:
    return request.app.state.gateway


def get_redis(request: Request) -> redis.Redis:
    return request.app.state.redis


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_email: str | None = Header(None, alias="X-User-Email"),
    cfg: Settings = Depends(get_settings),
) -> str:
    if x_api_ver is None:
        raise error(426, ErrorCode.UPGRADE_REQUIRED, "Missing API version")

    if x_api_ver != "v1":
        raise error(426, ErrorCode.UPGRADE_REQUIRED, "Invalid API version")

    if x_api_key != cfg.api_key:
        raise error(401, ErrorCode.UNAUTHORIZED, "Invalid API key")

    if not x_user_email or "@" not in x_user_email:
        raise error(401, ErrorCode.UNAUTHORIZED, "Missing user email")

    return normalize_email(x_user_email)


def client_ip(request: Request, cfg: Settings) -> str:
    client_host = request.client.host if request.client else ""
    ip = client_host
    xff = request.headers.get("X-Forwarded-For")
    if xff and client_host in cfg.trusted_proxies:
        forwarded = [h.strip() for h in xff.split(",") if h.strip()]
        if not forwarded:
            return ip
        proxies = forwarded[1:] + [client_host]
        if all(p in cfg.trusted_proxies for p in proxies):
            ip = forwarded[0]
    return ip


async def rate_limit(
    request: Request,
    email: str = Depends(require_api_headers),
    cfg: Settings = Depends(get_settings),
    redis_client: redis.Redis = Depends(get_redis),
) -> str:
    """Throttle requests by IP and user via Redis."""
    ip_key = f"rate:ip:{client_ip(request, cfg)}"
    user_key = f"rate:user:{email}"

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        pipe.incr(user_key)
        pipe.expire(user_key, 60)
        ip_count, _, user_count, _ = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        raise error(
            503, ErrorCode.SERVICE_UNAVAILABLE, "Rate limiter unavailable"
        ) from exc
    if ip_count > cfg.rate_limit_ip_per_min or user_count > cfg.rate_limit_user_per_min:
        raise error(429, ErrorCode.TOO_MANY_REQUESTS, "Rate limit exceeded")

    return email


def ensure_same_user(requested: str | None, caller: str) -> str:
    """The email named in a request must be the authenticated caller."""
    if not requested:
        return caller
    if normalize_email(requested) != caller:
        logger.warning("audit: email mismatch", extra={"email": caller})
        raise error(403, ErrorCode.FORBIDDEN, "Email does not match the authenticated user")
    return caller


async def require_admin(
    authorization: str | None = Header(None, alias="Authorization"),
    cfg: Settings = Depends(get_settings),
) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise error(401, ErrorCode.UNAUTHORIZED, "Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        claims = jwt.decode(token, cfg.jwt_secret, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        logger.warning("audit: invalid admin token")
        raise error(401, ErrorCode.UNAUTHORIZED, "Invalid token") from exc
    if claims.get("role") != "admin":
        logger.warning("audit: non-admin token on admin route")
        raise error(403, ErrorCode.FORBIDDEN, "Admin role required")
    return claims


__all__ = [
    "ErrorResponse",
    "error",
    "ledger_http_error",
    "get_settings",
    "get_store",
    "get_gateway",
    "get_redis",
    "require_api_headers",
    "rate_limit",
    "ensure_same_user",
    "require_admin",
]
