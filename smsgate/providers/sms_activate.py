"""SMS-Activate compatible provider client.

The provider speaks a plain-text protocol over ``GET`` requests:
1. Success replies are colon-separated tokens (``ACCESS_NUMBER:123:7900...``)
2. Price and listing endpoints answer with JSON
3. Failures are bare tokens (``NO_NUMBERS``, ``BAD_KEY``, ``ERROR_SQL``)

Every reply is decoded exactly once here, so callers only ever see
``ProviderReply``, parsed JSON, or a ``ProviderError`` with a stable kind.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from smsgate.core.config import get_settings
from smsgate.core.exceptions import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)


class ProviderErrorToken(str, Enum):
    """Closed set of error tokens the provider is known to send."""

    BAD_KEY = "BAD_KEY"
    BAD_ACTION = "BAD_ACTION"
    BAD_SERVICE = "BAD_SERVICE"
    BAD_STATUS = "BAD_STATUS"
    NO_ACTIVATION = "NO_ACTIVATION"
    WRONG_ACTIVATION_ID = "WRONG_ACTIVATION_ID"
    ACTIVATION_USED = "ACTIVATION_USED"
    WRONG_EXCEPTION_PHONE = "WRONG_EXCEPTION_PHONE"
    WRONG_ADDITIONAL_SERVICE = "WRONG_ADDITIONAL_SERVICE"
    NO_OPERATIONS = "NO_OPERATIONS"
    NO_NUMBERS = "NO_NUMBERS"
    NO_BALANCE = "NO_BALANCE"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    RATE_LIMIT = "RATE_LIMIT"
    ERROR_SQL = "ERROR_SQL"


TOKEN_KINDS: dict[ProviderErrorToken, ProviderErrorKind] = {
    ProviderErrorToken.BAD_KEY: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.BAD_ACTION: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.BAD_SERVICE: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.BAD_STATUS: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.NO_ACTIVATION: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.WRONG_ACTIVATION_ID: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.ACTIVATION_USED: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.WRONG_EXCEPTION_PHONE: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.WRONG_ADDITIONAL_SERVICE: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.NO_OPERATIONS: ProviderErrorKind.INVALID_REQUEST,
    ProviderErrorToken.NO_NUMBERS: ProviderErrorKind.NO_INVENTORY,
    ProviderErrorToken.NO_BALANCE: ProviderErrorKind.INSUFFICIENT_PROVIDER_FUNDS,
    ProviderErrorToken.TOO_MANY_REQUESTS: ProviderErrorKind.RATE_LIMITED,
    ProviderErrorToken.RATE_LIMIT: ProviderErrorKind.RATE_LIMITED,
    ProviderErrorToken.ERROR_SQL: ProviderErrorKind.UPSTREAM,
}

TOKEN_MESSAGES: dict[ProviderErrorToken, str] = {
    ProviderErrorToken.BAD_KEY: "Invalid provider API key",
    ProviderErrorToken.BAD_ACTION: "Invalid provider action",
    ProviderErrorToken.BAD_SERVICE: "Invalid service code",
    ProviderErrorToken.BAD_STATUS: "Invalid activation status",
    ProviderErrorToken.NO_ACTIVATION: "Activation not found",
    ProviderErrorToken.WRONG_ACTIVATION_ID: "Invalid activation ID",
    ProviderErrorToken.ACTIVATION_USED: "Activation already used",
    ProviderErrorToken.WRONG_EXCEPTION_PHONE: "Invalid exception phone",
    ProviderErrorToken.WRONG_ADDITIONAL_SERVICE: "Invalid additional service",
    ProviderErrorToken.NO_OPERATIONS: "No operations for this activation",
    ProviderErrorToken.NO_NUMBERS: "No numbers available for this service",
    ProviderErrorToken.NO_BALANCE: "Provider account has insufficient funds",
    ProviderErrorToken.TOO_MANY_REQUESTS: "Provider rate limit reached",
    ProviderErrorToken.RATE_LIMIT: "Provider rate limit reached",
    ProviderErrorToken.ERROR_SQL: "Provider database error",
}

# Success token prefixes; everything else that is not JSON is an error
SUCCESS_PREFIXES = ("ACCESS_", "STATUS_", "FULL_SMS")


@dataclass(frozen=True)
class ProviderReply:
    """Decoded text reply, e.g. ``ACCESS_NUMBER:123:79001234567``.

    Attributes:
        token: Leading token (``ACCESS_NUMBER``)
        fields: Remaining colon-separated values (``("123", "79001234567")``)
    """

    token: str
    fields: tuple[str, ...] = ()

    def field(self, index: int, default: str | None = None) -> str | None:
        return self.fields[index] if index < len(self.fields) else default


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def decode_text(text: str) -> Any:
    """Decode a provider body into JSON, a ProviderReply, or raise ProviderError.

    Args:
        text: Raw response body

    Returns:
        Parsed JSON (dict / list) or ProviderReply

    Raises:
        ProviderError: For error tokens and unrecognized bodies
    """
    body = text.strip()
    if not body:
        raise ProviderError(ProviderErrorKind.UPSTREAM, "Empty provider response")

    if body[0] in "{[":
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            raise ProviderError(
                ProviderErrorKind.UPSTREAM, f"Malformed provider JSON: {body[:100]}"
            ) from None

    head, _, rest = body.partition(":")

    if head == "FULL_SMS":
        # SMS text may itself contain colons
        return ProviderReply(token=head, fields=(rest,))
    if head.startswith(SUCCESS_PREFIXES):
        return ProviderReply(token=head, fields=tuple(rest.split(":")) if rest else ())

    try:
        token = ProviderErrorToken(head)
    except ValueError:
        token = None

    if token is not None:
        kind = TOKEN_KINDS[token]
        retry_after = _parse_retry_after(rest) if kind == ProviderErrorKind.RATE_LIMITED else None
        raise ProviderError(kind, TOKEN_MESSAGES[token], token=token.value, retry_after=retry_after)

    if head.startswith("ERROR"):
        raise ProviderError(ProviderErrorKind.UPSTREAM, f"Provider error: {body[:100]}", token=head)

    raise ProviderError(
        ProviderErrorKind.UPSTREAM, f"Unrecognized provider response: {body[:100]}", token=head
    )


def decode_response(response: httpx.Response) -> Any:
    """Decode an HTTP response, mapping status codes before the body."""
    if response.status_code == 429:
        raise ProviderError(
            ProviderErrorKind.RATE_LIMITED,
            "Provider rate limit reached",
            token="HTTP_429",
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    if response.status_code >= 500:
        raise ProviderError(
            ProviderErrorKind.UPSTREAM,
            f"Provider returned HTTP {response.status_code}",
            token=f"HTTP_{response.status_code}",
        )
    return decode_text(response.text)


class SmsActivateClient:
    """Async HTTP client for the provider handler endpoint.

    A single ``call`` entry point is exposed so the dispatcher can schedule
    every request uniformly.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_url = api_url or settings.sms_activate_api_url
        self.api_key = api_key if api_key is not None else settings.sms_activate_api_key
        self.timeout = timeout or settings.provider_call_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def call(self, action: str, params: dict[str, Any] | None = None) -> Any:
        """Issue one provider request and decode the reply.

        Args:
            action: Provider action name (``getNumber``, ``getStatus``, ...)
            params: Extra query parameters; ``None`` values are dropped

        Returns:
            Parsed JSON or ProviderReply

        Raises:
            ProviderError: Decoded provider or transport failure
        """
        query = {"api_key": self.api_key, "action": action}
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        client = await self._get_client()
        try:
            response = await client.get(self.api_url, params=query)
        except httpx.TimeoutException:
            raise ProviderError(
                ProviderErrorKind.TIMEOUT, f"Provider call {action} timed out"
            ) from None
        except httpx.HTTPError as e:
            raise ProviderError(
                ProviderErrorKind.UPSTREAM, f"Provider call {action} failed: {e}"
            ) from e

        try:
            return decode_response(response)
        except ProviderError as e:
            logger.warning(f"Provider {action} returned {e.token or e.kind.value}: {e.message}")
            raise
