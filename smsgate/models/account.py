"""SMS Gate - Balance account model."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class BalanceAccount(SQLModel, table=True):
    """Balance account - one per user, created lazily on first access.

    The balance is never negative. Every change to ``balance`` is paired with a
    TransactionRecord written in the same database transaction.

    Attributes:
        id: Auto-increment primary key
        user_id: Owner (issued by the upstream auth service)
        balance: Available balance in the settlement currency
        total_deposited: Cumulative settled deposits
        total_spent: Cumulative purchase debits (refunds are not subtracted)
        deposit_count: Number of settled deposits
        last_transaction_at: Time of the latest balance change
    """

    __tablename__ = "balance_accounts"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(unique=True, index=True)

    balance: Decimal = Field(
        default=Decimal("0"),
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False, default=Decimal("0")),
    )
    total_deposited: Decimal = Field(
        default=Decimal("0"),
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False, default=Decimal("0")),
    )
    total_spent: Decimal = Field(
        default=Decimal("0"),
        sa_column=sa.Column(sa.DECIMAL(32, 8), nullable=False, default=Decimal("0")),
    )
    deposit_count: int = Field(default=0)

    last_transaction_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
