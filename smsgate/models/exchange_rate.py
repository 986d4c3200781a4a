"""SMS Gate - Exchange rate model."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class ExchangeRate(SQLModel, table=True):
    """Stored exchange rate for a currency pair.

    ``rate`` is the number of quote units per one base unit, e.g.
    base=USD, quote=NGN, rate=1520 means 1 USD = 1520 NGN.

    Attributes:
        base_currency: Settlement currency, e.g. 'USD'
        quote_currency: Payment currency, e.g. 'NGN'
        rate: Quote units per base unit
        source: Where the rate came from ('manual', 'exchangerate-api', ...)
        expires_at: Rate is ignored after this time (null = never expires)
    """

    __tablename__ = "exchange_rates"
    __table_args__ = (
        sa.UniqueConstraint("base_currency", "quote_currency", name="uq_exchange_rate_pair"),
    )

    id: int | None = Field(default=None, primary_key=True)
    base_currency: str = Field(max_length=8, index=True)
    quote_currency: str = Field(max_length=8, index=True)
    rate: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(20, 8), nullable=False))
    source: str = Field(default="manual", max_length=50)
    expires_at: datetime | None = Field(default=None)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
