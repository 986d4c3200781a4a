"""Schemas module - Pydantic DTOs for request/response."""

from smsgate.schemas.ledger import BalanceResponse, TransactionListResponse, TransactionResponse
from smsgate.schemas.number import (
    CancelNumberResponse,
    FullSmsResponse,
    NumberListResponse,
    NumberResponse,
    PurchaseNumberRequest,
    PurchaseNumberResponse,
)
from smsgate.schemas.payment import (
    CreateDepositRequest,
    DepositListResponse,
    DepositResponse,
    VerifyDepositResponse,
    WebhookAck,
)

__all__: list[str] = [
    # Ledger
    "BalanceResponse",
    "TransactionResponse",
    "TransactionListResponse",
    # Numbers
    "PurchaseNumberRequest",
    "PurchaseNumberResponse",
    "NumberResponse",
    "NumberListResponse",
    "CancelNumberResponse",
    "FullSmsResponse",
    # Payments
    "CreateDepositRequest",
    "DepositResponse",
    "DepositListResponse",
    "VerifyDepositResponse",
    "WebhookAck",
]
