"""Provider Gateway - typed operations over the rate-limited dispatcher.

Every operation names its lane: price and status queries are reads,
leasing a number and changing its status are writes.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any

import redis.asyncio as redis

from smsgate.core.config import get_settings
from smsgate.core.exceptions import ProviderError, ProviderErrorKind
from smsgate.providers.dispatcher import RateLimitedDispatcher, RequestKind
from smsgate.providers.sms_activate import ProviderReply

logger = logging.getLogger(__name__)


class ActivationAction(IntEnum):
    """``setStatus`` codes understood by the provider."""

    CONFIRM_SMS = 1
    REQUEST_RETRY = 3
    FINISH = 6
    CANCEL = 8


# STATUS_* token -> local activation state
ACTIVATION_STATES = {
    "STATUS_WAIT_CODE": "waiting",
    "STATUS_WAIT_RETRY": "waiting",
    "STATUS_WAIT_RESEND": "waiting",
    "STATUS_OK": "received",
    "STATUS_CANCEL": "cancelled",
}


@dataclass(frozen=True)
class LeasedNumber:
    """Result of a successful ``getNumber``."""

    activation_id: str
    phone_number: str


@dataclass(frozen=True)
class ActivationStatus:
    """Decoded ``getStatus`` reply.

    Attributes:
        state: waiting / received / cancelled
        token: Raw provider token
        code: Verification code when received
    """

    state: str
    token: str
    code: str | None = None


def _unexpected(action: str, reply: Any) -> ProviderError:
    return ProviderError(
        ProviderErrorKind.UPSTREAM, f"Unexpected {action} reply: {str(reply)[:100]}"
    )


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


class PriceCache:
    """Redis cache of provider unit costs."""

    KEY_PREFIX = "sms:price"

    def __init__(self, client: redis.Redis, ttl: int | None = None):
        self.client = client
        self.ttl = ttl or get_settings().price_cache_ttl

    def _key(self, service: str, country: str, operator: str | None) -> str:
        return f"{self.KEY_PREFIX}:{country}:{service}:{operator or 'any'}"

    async def get(self, service: str, country: str, operator: str | None = None) -> Decimal | None:
        try:
            value = await self.client.get(self._key(service, country, operator))
        except redis.RedisError as e:
            logger.warning(f"Price cache read failed for {service}/{country}: {e}")
            return None
        return Decimal(value) if value is not None else None

    async def set(
        self, service: str, country: str, cost: Decimal, operator: str | None = None
    ) -> None:
        try:
            await self.client.set(self._key(service, country, operator), str(cost), ex=self.ttl)
        except redis.RedisError as e:
            logger.warning(f"Price cache write failed for {service}/{country}: {e}")


class ProviderGateway:
    """Typed facade over the number provider."""

    def __init__(self, dispatcher: RateLimitedDispatcher, price_cache: PriceCache | None = None):
        self.dispatcher = dispatcher
        self.price_cache = price_cache

    async def _read(self, action: str, **params: Any) -> Any:
        return await self.dispatcher.submit(action, params, RequestKind.READ)

    async def _write(self, action: str, **params: Any) -> Any:
        return await self.dispatcher.submit(action, params, RequestKind.WRITE)

    # ============ Prices ============

    async def get_prices(
        self, country: str | None = None, service: str | None = None
    ) -> dict[str, Any]:
        """Raw price table ``{country: {service: {"cost", "count"}}}``."""
        data = await self._read("getPrices", country=country, service=service)
        if not isinstance(data, dict):
            raise _unexpected("getPrices", data)
        return data

    async def get_unit_cost(
        self, service: str, country: str, operator: str | None = None
    ) -> Decimal:
        """Provider unit cost for one service in one country.

        Checks the price cache first. Returns 0 when the service is not
        offered in the country.
        """
        if self.price_cache is not None:
            cached = await self.price_cache.get(service, country, operator)
            if cached is not None:
                return cached

        prices = await self.get_prices(country=country, service=service)
        entry = prices.get(str(country), {}).get(service)
        cost = _to_decimal(entry.get("cost", 0)) if isinstance(entry, dict) else Decimal("0")

        if self.price_cache is not None and cost > 0:
            await self.price_cache.set(service, country, cost, operator)
        return cost

    # ============ Activations ============

    async def get_number(
        self,
        service: str,
        country: str,
        operator: str | None = None,
        max_price: Decimal | None = None,
    ) -> LeasedNumber:
        """Lease a number (write lane)."""
        reply = await self._write(
            "getNumber",
            service=service,
            country=country,
            operator=operator,
            maxPrice=str(max_price) if max_price is not None else None,
        )
        if (
            not isinstance(reply, ProviderReply)
            or reply.token != "ACCESS_NUMBER"
            or len(reply.fields) < 2
        ):
            raise _unexpected("getNumber", reply)
        return LeasedNumber(activation_id=reply.fields[0], phone_number=reply.fields[1])

    async def set_status(self, activation_id: str, action: ActivationAction) -> str:
        """Change activation status (write lane). Returns the reply token."""
        reply = await self._write("setStatus", id=activation_id, status=int(action))
        if not isinstance(reply, ProviderReply):
            raise _unexpected("setStatus", reply)
        return reply.token

    async def get_status(self, activation_id: str) -> ActivationStatus:
        reply = await self._read("getStatus", id=activation_id)
        if not isinstance(reply, ProviderReply) or reply.token not in ACTIVATION_STATES:
            raise _unexpected("getStatus", reply)
        return ActivationStatus(
            state=ACTIVATION_STATES[reply.token],
            token=reply.token,
            code=reply.field(0) if reply.token == "STATUS_OK" else None,
        )

    async def get_full_sms(self, activation_id: str) -> str:
        reply = await self._read("getFullSms", id=activation_id)
        if not isinstance(reply, ProviderReply) or reply.token != "FULL_SMS":
            raise _unexpected("getFullSms", reply)
        return reply.field(0, "")
