"""SMS Gate - Ledger models.

Transaction records are the append-only history of balance changes:
1. deposit  - settled payment credited to the balance
2. purchase - number purchase debited from the balance
3. refund   - cancelled number credited back
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class TransactionType(str, Enum):
    """Balance change type."""

    DEPOSIT = "deposit"
    PURCHASE = "purchase"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    """Transaction record status."""

    COMPLETED = "completed"


class TransactionRecord(SQLModel, table=True):
    """Immutable ledger entry.

    ``amount`` is always positive; the direction follows from the type.
    ``balance_before``/``balance_after`` are the account values around the
    mutation that produced the record.

    Attributes:
        id: Auto-increment primary key
        user_id: User whose balance changed
        transaction_type: deposit / purchase / refund
        amount: Change amount (positive)
        balance_before: Balance before change
        balance_after: Balance after change
        reference_id: Provider activation id or payment tx_ref
        description: Human readable notes
        status: Record status
        created_at: Record creation time
    """

    __tablename__ = "transactions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)

    transaction_type: TransactionType = Field(index=True, description="Type of balance change")
    amount: Decimal = Field(
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False),
        description="Change amount (positive)",
    )
    balance_before: Decimal = Field(
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False),
        description="Balance before change",
    )
    balance_after: Decimal = Field(
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False),
        description="Balance after change",
    )

    reference_id: str | None = Field(
        default=None, max_length=128, index=True, description="Activation id or tx_ref"
    )
    description: str | None = Field(default=None, max_length=500)
    status: TransactionStatus = Field(default=TransactionStatus.COMPLETED)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
