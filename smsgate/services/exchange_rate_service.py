"""SMS Gate - Exchange Rate Service.

Converts paid amounts into the settlement currency. Rates come from the
``exchange_rates`` table, falling back to ``settings.fallback_fx_rates``.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from smsgate.core.config import get_settings
from smsgate.core.exceptions import ExchangeRateUnavailableError, ValidationError
from smsgate.models.exchange_rate import ExchangeRate

logger = logging.getLogger(__name__)


class ExchangeRateService:
    """Service for exchange rate operations."""

    def __init__(self, db: AsyncSession, fallback_rates: dict[str, Decimal] | None = None):
        self.db = db
        self.fallback_rates = (
            fallback_rates if fallback_rates is not None else get_settings().fallback_fx_rates
        )

    async def get_stored_rate(self, base_currency: str, quote_currency: str) -> ExchangeRate | None:
        """Get a non-expired stored rate for the pair."""
        result = await self.db.execute(
            select(ExchangeRate).where(
                ExchangeRate.base_currency == base_currency.upper(),
                ExchangeRate.quote_currency == quote_currency.upper(),
                or_(
                    ExchangeRate.expires_at.is_(None),
                    ExchangeRate.expires_at > datetime.utcnow(),
                ),
            )
        )
        return result.scalar_one_or_none()

    async def get_rate(self, base_currency: str, quote_currency: str) -> Decimal:
        """Quote units per one base unit.

        Args:
            base_currency: Settlement currency (e.g. 'USD')
            quote_currency: Paid currency (e.g. 'NGN')

        Returns:
            Positive rate

        Raises:
            ExchangeRateUnavailableError: No stored or fallback rate exists
        """
        base = base_currency.upper()
        quote = quote_currency.upper()
        if base == quote:
            return Decimal("1")

        stored = await self.get_stored_rate(base, quote)
        if stored is not None and stored.rate > 0:
            return Decimal(stored.rate)

        fallback = self.fallback_rates.get(quote)
        if fallback is not None and base == get_settings().settlement_currency.upper():
            logger.warning(f"Using fallback rate {base}/{quote} = {fallback}")
            return Decimal(fallback)

        raise ExchangeRateUnavailableError(
            f"No exchange rate for {base}/{quote}", {"base": base, "quote": quote}
        )

    async def set_rate(
        self,
        base_currency: str,
        quote_currency: str,
        rate: Decimal,
        source: str = "manual",
        ttl_seconds: int | None = None,
    ) -> ExchangeRate:
        """Create or replace the stored rate for a pair."""
        if rate <= 0:
            raise ValidationError("Exchange rate must be positive", {"rate": str(rate)})

        base = base_currency.upper()
        quote = quote_currency.upper()
        result = await self.db.execute(
            select(ExchangeRate).where(
                ExchangeRate.base_currency == base,
                ExchangeRate.quote_currency == quote,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = ExchangeRate(base_currency=base, quote_currency=quote, rate=rate)
            self.db.add(record)

        now = datetime.utcnow()
        record.rate = rate
        record.source = source
        record.expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        record.updated_at = now

        await self.db.commit()
        await self.db.refresh(record)
        logger.info(f"Exchange rate {base}/{quote} set to {rate} ({source})")
        return record

    @staticmethod
    def convert(amount: Decimal, rate: Decimal) -> Decimal:
        """Convert a quote-currency amount into base units, 4 dp."""
        return (Decimal(amount) / Decimal(rate)).quantize(Decimal("0.0001"))
