"""SMS Gate - Payment deposit model."""

import secrets
import time
from datetime import datetime
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class DepositStatus(str, Enum):
    """Payment deposit status.

    State transitions:
    - PENDING_UNSETTLED -> PAID_SETTLED / FAILED / CANCELLED
    - CANCELLED -> PAID_SETTLED (reconciliation found the checkout paid after all)

    PAID_SETTLED and FAILED are terminal.
    """

    PENDING_UNSETTLED = "PENDING_UNSETTLED"
    PAID_SETTLED = "PAID_SETTLED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Statuses a successful payment notification may settle from
SETTLEABLE_DEPOSIT_STATUSES = (DepositStatus.PENDING_UNSETTLED, DepositStatus.CANCELLED)


def generate_tx_ref(user_id: int) -> str:
    """Generate a globally unique transaction reference.

    Format: SMS_{user_id}_{timestamp_ms}_{RANDOM6}
    Example: SMS_42_1702345678000_A1B2C3
    """
    timestamp = int(time.time() * 1000)
    random_suffix = secrets.token_hex(3).upper()
    return f"SMS_{user_id}_{timestamp}_{random_suffix}"


class PaymentDeposit(SQLModel, table=True):
    """One payment-provider checkout session.

    Attributes:
        id: Auto-increment primary key
        user_id: Depositing user
        tx_ref: Locally generated unique reference
        provider_tx_id: Payment provider transaction id (known after payment)
        provider_ref: Payment provider reference string
        amount: Requested amount in ``currency``
        currency: Requested currency
        settlement_amount: Credited amount in ``settlement_currency``
        settlement_currency: Balance currency
        fx_rate: Rate used (currency units per settlement unit)
        status: Deposit status
        payment_link: Hosted checkout link
        expires_at: Checkout expiry
        paid_at: Settlement time
        failure_reason: Provider reason for FAILED / CANCELLED
    """

    __tablename__ = "payment_deposits"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    tx_ref: str = Field(max_length=64, unique=True, index=True)
    provider_tx_id: str | None = Field(default=None, max_length=64, index=True)
    provider_ref: str | None = Field(default=None, max_length=128)

    amount: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False))
    currency: str = Field(max_length=8)
    settlement_amount: Decimal | None = Field(
        default=None, sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=True)
    )
    settlement_currency: str = Field(default="USD", max_length=8)
    fx_rate: Decimal | None = Field(
        default=None, sa_column=sa.Column(sa.DECIMAL(20, 8), nullable=True)
    )

    status: DepositStatus = Field(default=DepositStatus.PENDING_UNSETTLED, index=True)
    payment_link: str | None = Field(default=None, max_length=512)
    expires_at: datetime = Field(index=True)
    paid_at: datetime | None = Field(default=None)
    failure_reason: str | None = Field(default=None, max_length=255)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
