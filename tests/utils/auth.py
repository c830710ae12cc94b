from __future__ import annotations

import time
import uuid

import jwt

from app.config import Settings


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def build_auth_headers(
    email: str,
    *,
    api_key: str | None = None,
    api_ver: str | None = "v1",
    forwarded_for: str | None = None,
) -> dict[str, str]:
    settings = Settings()
    headers = {
        "X-API-Key": api_key or settings.api_key,
        "X-User-Email": email,
    }
    if api_ver is not None:
        headers["X-API-Ver"] = api_ver
    if forwarded_for is not None:
        headers["X-Forwarded-For"] = forwarded_for
    return headers


def build_admin_headers(role: str = "admin", secret: str | None = None) -> dict[str, str]:
    settings = Settings()
    token = jwt.encode(
        {"sub": "ops@example.com", "role": role, "exp": int(time.time()) + 600},
        secret or settings.jwt_secret,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}
