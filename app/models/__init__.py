from .base import Base
from .account import Account
from .wallet import CreditWallet
from .payment import PaymentRecord
from .credit_package import CreditPackage
from .usage_log import UsageLog
from .error_code import ErrorCode

__all__ = [
    "Base",
    "Account",
    "CreditWallet",
    "PaymentRecord",
    "CreditPackage",
    "UsageLog",
    "ErrorCode",
]
