"""Typed ledger failures.

Each error carries an ``ErrorCode`` plus the structured context the caller
needs to render an actionable message. Controllers turn them into
``ErrorResponse`` payloads; nothing here knows about HTTP.
"""
from __future__ import annotations

from typing import Any

from app.models import ErrorCode


class LedgerError(Exception):
    code: ErrorCode = ErrorCode.BAD_REQUEST

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class InsufficientCredits(LedgerError):
    code = ErrorCode.INSUFFICIENT_CREDITS

    def __init__(self, required: int, available: int, **context: Any) -> None:
        super().__init__(
            f"Insufficient credits: {required} required, {available} available",
            required=required,
            available=available,
            **context,
        )
        self.required = required
        self.available = available


class ModelForbidden(LedgerError):
    code = ErrorCode.MODEL_FORBIDDEN

    def __init__(self, model: str, plan: str, models: list[str]) -> None:
        super().__init__(
            f"Model {model} is not available on the {plan} plan",
            model=model,
            plan=plan,
            models=models,
        )


class SignatureInvalid(LedgerError):
    code = ErrorCode.SIGNATURE_INVALID

    def __init__(self, message: str = "Payment signature verification failed") -> None:
        super().__init__(message)


class AccountNotFound(LedgerError):
    code = ErrorCode.ACCOUNT_NOT_FOUND

    def __init__(self, email: str) -> None:
        super().__init__("Account not found", email=email)


class OrderNotFound(LedgerError):
    code = ErrorCode.ORDER_NOT_FOUND

    def __init__(self, order_id: str) -> None:
        super().__init__("Order not found", order_id=order_id)


class OrderMismatch(LedgerError):
    code = ErrorCode.ORDER_MISMATCH

    def __init__(self, order_id: str) -> None:
        super().__init__(
            "Order does not belong to this account or package", order_id=order_id
        )


class PackageNotFound(LedgerError):
    code = ErrorCode.PACKAGE_NOT_FOUND

    def __init__(self, package_id: int) -> None:
        super().__init__("Invalid package selected", package_id=package_id)


class StoreUnavailable(LedgerError):
    code = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, message: str = "Balance store unavailable") -> None:
        super().__init__(message)


class PaymentUnavailable(LedgerError):
    code = ErrorCode.PAYMENT_UNAVAILABLE

    def __init__(self, message: str = "Payment gateway unavailable") -> None:
        super().__init__(message)


__all__ = [
    "LedgerError",
    "InsufficientCredits",
    "ModelForbidden",
    "SignatureInvalid",
    "AccountNotFound",
    "OrderNotFound",
    "OrderMismatch",
    "PackageNotFound",
    "StoreUnavailable",
    "PaymentUnavailable",
]
