"""Ledger schemas - Request/Response DTOs for balances and transaction records."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from smsgate.models.ledger import TransactionStatus, TransactionType


class BalanceResponse(BaseModel):
    """User balance summary."""

    user_id: int
    balance: Decimal
    total_deposited: Decimal
    total_spent: Decimal
    deposit_count: int
    currency: str
    last_transaction_at: datetime | None = None


class TransactionResponse(BaseModel):
    """Ledger record response."""

    id: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_id: str | None = None
    description: str | None = None
    status: TransactionStatus
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    """Paginated ledger record list response."""

    items: list[TransactionResponse]
    total: int
    page: int
    page_size: int
