from enum import Enum


class ErrorCode(str, Enum):
    """Error codes returned in ``ErrorResponse.code``."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    MODEL_FORBIDDEN = "MODEL_FORBIDDEN"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_MISMATCH = "ORDER_MISMATCH"
    PACKAGE_NOT_FOUND = "PACKAGE_NOT_FOUND"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    PAYMENT_UNAVAILABLE = "PAYMENT_UNAVAILABLE"


__all__ = ["ErrorCode"]
