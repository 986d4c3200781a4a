"""SMS Gate - Custom exceptions.

Every error carries a machine-readable ``code`` and the HTTP status the route
layer answers with. Business outcomes (insufficient balance, no inventory)
are 4xx; provider and transport faults are retryable 5xx.
"""

from decimal import Decimal
from enum import Enum
from typing import Any


class SmsGateError(Exception):
    """Base exception for all SMS Gate errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(SmsGateError):
    """Input validation failed."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(SmsGateError):
    """Requested record does not exist or belongs to another user."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self, message: str = "Not found", code: str | None = None, details: dict | None = None
    ) -> None:
        super().__init__(message, details)
        if code:
            self.code = code


class InvalidStatusError(SmsGateError):
    """Operation not allowed in the record's current status."""

    code = "INVALID_STATUS"
    status_code = 400

    def __init__(self, message: str, code: str | None = None, current_status: str | None = None):
        super().__init__(message, {"current_status": current_status} if current_status else None)
        if code:
            self.code = code


# =============================================================================
# Provider errors
# =============================================================================


class ProviderErrorKind(str, Enum):
    """Stable error kinds decoded from provider responses."""

    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    NO_INVENTORY = "no_inventory"
    INSUFFICIENT_PROVIDER_FUNDS = "insufficient_provider_funds"
    UPSTREAM = "upstream"
    TIMEOUT = "timeout"


_PROVIDER_ERROR_CODES: dict[ProviderErrorKind, tuple[str, int]] = {
    ProviderErrorKind.RATE_LIMITED: ("PROVIDER_BUSY", 503),
    ProviderErrorKind.INVALID_REQUEST: ("PROVIDER_INVALID_REQUEST", 400),
    ProviderErrorKind.NO_INVENTORY: ("NO_NUMBERS_AVAILABLE", 400),
    ProviderErrorKind.INSUFFICIENT_PROVIDER_FUNDS: ("PROVIDER_NO_BALANCE", 503),
    ProviderErrorKind.UPSTREAM: ("PROVIDER_ERROR", 502),
    ProviderErrorKind.TIMEOUT: ("PROVIDER_TIMEOUT", 504),
}


class ProviderError(SmsGateError):
    """Number provider call failed.

    Attributes:
        kind: Decoded error kind
        token: Raw provider token (e.g. 'NO_NUMBERS'), if any
        retry_after: Seconds the provider asked us to wait (throttling only)
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        token: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        details: dict[str, Any] = {"kind": kind.value}
        if token:
            details["token"] = token
        super().__init__(message, details)
        self.kind = kind
        self.token = token
        self.retry_after = retry_after
        self.code, self.status_code = _PROVIDER_ERROR_CODES[kind]

    @property
    def retryable(self) -> bool:
        return self.kind == ProviderErrorKind.RATE_LIMITED


# =============================================================================
# Ledger errors
# =============================================================================


class LedgerError(SmsGateError):
    """Balance ledger operation failed."""

    code = "LEDGER_ERROR"
    status_code = 409


class InsufficientBalanceError(LedgerError):
    """User has insufficient balance for the operation."""

    code = "INSUFFICIENT_BALANCE"
    status_code = 400

    def __init__(
        self,
        required: Decimal | None = None,
        available: Decimal | None = None,
        message: str = "Insufficient balance",
    ) -> None:
        details = {}
        if required is not None:
            details["required"] = str(required)
        if available is not None:
            details["available"] = str(available)
        super().__init__(message, details)


class ConcurrentModificationError(LedgerError):
    """A concurrent request changed the record first."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409


class ReconciliationRequiredError(SmsGateError):
    """Provider-side state changed but the paired ledger mutation did not commit."""

    code = "RECONCILIATION_REQUIRED"
    status_code = 500


# =============================================================================
# Purchase orchestration outcomes
# =============================================================================


class ServiceUnavailableError(SmsGateError):
    """Service is not offered in the selected country."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 400


class PriceExceededError(SmsGateError):
    """Total price is above the caller's ceiling."""

    code = "PRICE_EXCEEDED"
    status_code = 400


class CancelTooEarlyError(SmsGateError):
    """Cancellation requested before the minimum dwell time."""

    code = "CANCEL_TOO_EARLY"
    status_code = 400


# =============================================================================
# Settlement errors
# =============================================================================


class SettlementError(SmsGateError):
    """Payment settlement failed."""

    code = "SETTLEMENT_ERROR"
    status_code = 400


class InvalidSignatureError(SettlementError):
    code = "INVALID_SIGNATURE"
    status_code = 401


class DepositNotFoundError(SettlementError):
    code = "DEPOSIT_NOT_FOUND"
    status_code = 404


class PaymentNotActivatedError(SettlementError):
    """Checkout session was never activated at the payment provider."""

    code = "PAYMENT_NOT_ACTIVATED"


class PaymentExpiredError(SettlementError):
    code = "PAYMENT_EXPIRED"


class PaymentFailedError(SettlementError):
    code = "PAYMENT_FAILED"


class PaymentProviderError(SettlementError):
    """Payment provider API call failed."""

    code = "PAYMENT_PROVIDER_ERROR"
    status_code = 502


class ExchangeRateUnavailableError(SettlementError):
    code = "EXCHANGE_RATE_UNAVAILABLE"
    status_code = 503
