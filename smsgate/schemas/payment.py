"""SMS Gate - Payment schemas.

Schemas for deposit creation, verification and the webhook acknowledgement.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from smsgate.models.deposit import DepositStatus

# ============ Deposit Schemas ============


class CreateDepositRequest(BaseModel):
    """Request to open a checkout session."""

    amount: Decimal = Field(..., gt=0, description="Amount in the payment currency")
    currency: str = Field(default="NGN", min_length=3, max_length=8, description="ISO currency")
    email: str = Field(..., min_length=3, max_length=255, description="Payer email")
    name: str | None = Field(default=None, max_length=128, description="Payer name")


class DepositResponse(BaseModel):
    """Deposit response."""

    tx_ref: str
    amount: Decimal
    currency: str
    settlement_amount: Decimal | None = None
    settlement_currency: str
    fx_rate: Decimal | None = None
    status: DepositStatus
    payment_link: str | None = None
    expires_at: datetime
    paid_at: datetime | None = None
    failure_reason: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class DepositListResponse(BaseModel):
    """Paginated deposit list response."""

    items: list[DepositResponse]
    total: int
    page: int
    page_size: int


class VerifyDepositResponse(BaseModel):
    """Result of a manual verification."""

    success: bool = True
    already_processed: bool = False
    settled: bool = False
    deposit: DepositResponse
    credited_amount: Decimal | None = None
    balance: Decimal | None = None


# ============ Webhook Schemas ============


class WebhookAck(BaseModel):
    """Acknowledgement returned for every logged webhook delivery."""

    received: bool = True
    log_id: int
    processed: bool
    already_processed: bool = False
    error: str | None = None
