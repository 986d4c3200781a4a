"""Core module - configuration, redis and exceptions."""

from smsgate.core.config import Settings, get_settings
from smsgate.core.exceptions import (
    CancelTooEarlyError,
    ConcurrentModificationError,
    InsufficientBalanceError,
    LedgerError,
    PriceExceededError,
    ProviderError,
    ProviderErrorKind,
    ReconciliationRequiredError,
    ServiceUnavailableError,
    SettlementError,
    SmsGateError,
    ValidationError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "SmsGateError",
    "ValidationError",
    "ProviderError",
    "ProviderErrorKind",
    "LedgerError",
    "InsufficientBalanceError",
    "ConcurrentModificationError",
    "ReconciliationRequiredError",
    "ServiceUnavailableError",
    "PriceExceededError",
    "CancelTooEarlyError",
    "SettlementError",
]
