"""Number schemas - Request/Response DTOs for leased numbers."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from smsgate.models.number import NumberStatus


class PurchaseNumberRequest(BaseModel):
    """Request to lease a number."""

    service: str = Field(..., min_length=1, max_length=32, description="Provider service code")
    country: str = Field(..., min_length=1, max_length=16, description="Provider country code")
    operator: str | None = Field(default=None, max_length=32, description="Operator")
    max_price: Decimal | None = Field(
        default=None, gt=0, description="Reject the purchase if the total price is higher"
    )


class NumberResponse(BaseModel):
    """Leased number response."""

    id: int
    activation_id: str
    phone_number: str
    country_code: str
    service_code: str
    operator: str | None = None
    price: Decimal
    status: NumberStatus
    sms_code: str | None = None
    sms_text: str | None = None
    purchase_date: datetime
    expiry_date: datetime
    received_at: datetime | None = None
    time_remaining: int = Field(default=0, description="Seconds left on the lease")

    class Config:
        from_attributes = True


class NumberListResponse(BaseModel):
    """Paginated number list response."""

    items: list[NumberResponse]
    total: int
    page: int
    page_size: int


class PurchaseNumberResponse(BaseModel):
    success: bool = True
    number: NumberResponse
    balance: Decimal


class CancelNumberResponse(BaseModel):
    success: bool = True
    number: NumberResponse
    refund_amount: Decimal
    balance: Decimal


class FullSmsResponse(BaseModel):
    success: bool = True
    activation_id: str
    text: str
