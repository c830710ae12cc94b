"""Razorpay Orders API client.

In development (or without credentials) returns sandbox orders so the
purchase flow can be exercised end to end; in production posts to the
Orders API with basic auth. Gateway failures raise ``PaymentUnavailable``.
"""
from __future__ import annotations

import logging
import time
from typing import Any, NamedTuple
from uuid import uuid4

import httpx

from app.config import Settings
from app.services.errors import PaymentUnavailable

logger = logging.getLogger(__name__)

RECEIPT_MAX_LEN = 40


class GatewayOrder(NamedTuple):
    id: str
    amount: int
    currency: str
    receipt: str


def make_receipt(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"[:RECEIPT_MAX_LEN]


class RazorpayClient:
    def __init__(self, cfg: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._cfg = cfg
        self._http = http or httpx.AsyncClient(timeout=cfg.payment_timeout_s)

    @property
    def key_id(self) -> str:
        return self._cfg.razorpay_key_id

    @property
    def sandbox(self) -> bool:
        return (
            self._cfg.app_env.lower() != "production"
            or not self._cfg.razorpay_key_id
            or not self._cfg.razorpay_key_secret
        )

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any] | None = None,
    ) -> GatewayOrder:
        """Create an order for ``amount`` in minor units (paise)."""
        if self.sandbox:
            return GatewayOrder(
                id=f"order_sandbox_{uuid4().hex[:14]}",
                amount=amount,
                currency=currency,
                receipt=receipt,
            )

        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt[:RECEIPT_MAX_LEN],
            "payment_capture": 1,
            "notes": notes or {},
        }
        try:
            resp = await self._http.post(
                f"{self._cfg.razorpay_api_url}/orders",
                json=payload,
                auth=(self._cfg.razorpay_key_id, self._cfg.razorpay_key_secret),
                timeout=self._cfg.payment_timeout_s,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            logger.error("Razorpay order request failed: %s", exc)
            raise PaymentUnavailable() from exc
        except ValueError as exc:
            logger.error("Razorpay order response parsing failed: %s", exc)
            raise PaymentUnavailable() from exc

        order_id = data.get("id")
        if not order_id:
            logger.error("Razorpay order response missing id")
            raise PaymentUnavailable()
        return GatewayOrder(
            id=order_id,
            amount=int(data.get("amount", amount)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
        )

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = ["GatewayOrder", "RazorpayClient", "make_receipt"]
