"""SMS Gate - Number purchase model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class NumberStatus(str, Enum):
    """Leased number status.

    State transitions:
    - waiting -> received (provider reported a code)
    - waiting -> expired (lifetime elapsed without a code)
    - waiting / received -> cancelled (user action, refunded)
    - received -> used (user completed the activation)
    """

    WAITING = "waiting"
    RECEIVED = "received"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    USED = "used"


ACTIVE_NUMBER_STATUSES = (NumberStatus.WAITING, NumberStatus.RECEIVED)
TERMINAL_NUMBER_STATUSES = (NumberStatus.CANCELLED, NumberStatus.EXPIRED, NumberStatus.USED)


class NumberPurchase(SQLModel, table=True):
    """One leased virtual number.

    Created only together with the purchase debit, in one transaction.

    Attributes:
        id: Auto-increment primary key
        user_id: Buyer
        activation_id: Provider-assigned activation id
        phone_number: Leased phone number
        country_code: Provider country code
        service_code: Provider service code (e.g. 'wa', 'tg')
        operator: Requested operator, if any
        provider_cost: Unit cost charged by the provider
        price: Total price paid by the user (cost with markup)
        status: Lifecycle status
        purchase_date: Lease start
        expiry_date: Lease end
        sms_code: Received verification code
        sms_text: Received full SMS text
        received_at: Time the code arrived
    """

    __tablename__ = "number_purchases"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    activation_id: str = Field(max_length=64, unique=True, index=True)
    phone_number: str = Field(max_length=32)
    country_code: str = Field(max_length=16, index=True)
    service_code: str = Field(max_length=32, index=True)
    operator: str | None = Field(default=None, max_length=32)

    provider_cost: Decimal = Field(
        default=Decimal("0"),
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False, default=Decimal("0")),
    )
    price: Decimal = Field(
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False),
        description="Total price paid including markup",
    )

    status: NumberStatus = Field(default=NumberStatus.WAITING, index=True)
    purchase_date: datetime = Field(default_factory=datetime.utcnow, index=True)
    expiry_date: datetime = Field(index=True)

    sms_code: str | None = Field(default=None, max_length=64)
    sms_text: str | None = Field(default=None, sa_column=sa.Column(sa.Text, nullable=True))
    received_at: datetime | None = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the lease has run out while still waiting for a code."""
        now = now or datetime.utcnow()
        return self.status == NumberStatus.WAITING and now > self.expiry_date

    def seconds_remaining(self, now: datetime | None = None) -> int:
        """Seconds left on the lease (0 when elapsed)."""
        now = now or datetime.utcnow()
        return max(0, int((self.expiry_date - now).total_seconds()))
