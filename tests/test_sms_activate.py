"""Tests for provider reply decoding and the HTTP client."""

import httpx
import pytest

from smsgate.core.exceptions import ProviderError, ProviderErrorKind
from smsgate.providers.sms_activate import (
    ProviderReply,
    SmsActivateClient,
    decode_response,
    decode_text,
)


class TestDecodeText:
    """Text protocol decoding."""

    def test_access_number(self):
        reply = decode_text("ACCESS_NUMBER:1001:79001234567")

        assert reply == ProviderReply("ACCESS_NUMBER", ("1001", "79001234567"))
        assert reply.field(0) == "1001"
        assert reply.field(5, "missing") == "missing"

    def test_status_without_fields(self):
        reply = decode_text("STATUS_WAIT_CODE\n")

        assert reply.token == "STATUS_WAIT_CODE"
        assert reply.fields == ()

    def test_full_sms_keeps_colons(self):
        reply = decode_text("FULL_SMS:Code: 12345. Valid for 10:00 minutes")

        assert reply.token == "FULL_SMS"
        assert reply.fields == ("Code: 12345. Valid for 10:00 minutes",)

    def test_json_body(self):
        data = decode_text('{"0": {"tg": {"cost": 0.5, "count": 10}}}')

        assert data["0"]["tg"]["cost"] == 0.5

    def test_no_numbers_is_no_inventory(self):
        with pytest.raises(ProviderError) as exc_info:
            decode_text("NO_NUMBERS")

        assert exc_info.value.kind == ProviderErrorKind.NO_INVENTORY
        assert exc_info.value.code == "NO_NUMBERS_AVAILABLE"
        assert exc_info.value.token == "NO_NUMBERS"

    def test_no_balance_is_provider_funds(self):
        with pytest.raises(ProviderError) as exc_info:
            decode_text("NO_BALANCE")

        assert exc_info.value.kind == ProviderErrorKind.INSUFFICIENT_PROVIDER_FUNDS
        assert exc_info.value.status_code == 503

    @pytest.mark.parametrize("body", ["BAD_KEY", "BAD_SERVICE", "WRONG_ACTIVATION_ID"])
    def test_invalid_request_tokens(self, body):
        with pytest.raises(ProviderError) as exc_info:
            decode_text(body)

        assert exc_info.value.kind == ProviderErrorKind.INVALID_REQUEST
        assert not exc_info.value.retryable

    def test_throttle_carries_retry_after(self):
        with pytest.raises(ProviderError) as exc_info:
            decode_text("TOO_MANY_REQUESTS:12")

        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.retryable

    def test_throttle_without_retry_after(self):
        with pytest.raises(ProviderError) as exc_info:
            decode_text("RATE_LIMIT")

        assert exc_info.value.retry_after is None

    @pytest.mark.parametrize("body", ["ERROR_SQL", "ERROR_UNKNOWN", "<html>oops</html>", "   "])
    def test_unknown_bodies_are_upstream(self, body):
        with pytest.raises(ProviderError) as exc_info:
            decode_text(body)

        assert exc_info.value.kind == ProviderErrorKind.UPSTREAM

    def test_malformed_json(self):
        with pytest.raises(ProviderError) as exc_info:
            decode_text('{"broken": ')

        assert exc_info.value.kind == ProviderErrorKind.UPSTREAM


class TestDecodeResponse:
    """HTTP status mapping ahead of the body."""

    def test_http_429_uses_retry_after_header(self):
        response = httpx.Response(429, headers={"Retry-After": "7"}, text="")

        with pytest.raises(ProviderError) as exc_info:
            decode_response(response)

        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == 7.0

    def test_http_5xx_is_upstream(self):
        with pytest.raises(ProviderError) as exc_info:
            decode_response(httpx.Response(503, text="STATUS_OK:1"))

        assert exc_info.value.kind == ProviderErrorKind.UPSTREAM
        assert exc_info.value.token == "HTTP_503"

    def test_http_200_decodes_body(self):
        reply = decode_response(httpx.Response(200, text="ACCESS_BALANCE:12.50"))

        assert reply.field(0) == "12.50"


class TestSmsActivateClient:
    """Client request building and transport failures."""

    @pytest.mark.asyncio
    async def test_call_sends_key_and_drops_none_params(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ACCESS_NUMBER:55:79990001122")

        client = SmsActivateClient(
            api_url="https://provider.test/handler_api.php",
            api_key="k-123",
            transport=httpx.MockTransport(handler),
        )
        try:
            reply = await client.call("getNumber", {"service": "tg", "operator": None})
        finally:
            await client.close()

        assert reply.fields == ("55", "79990001122")
        params = seen[0].url.params
        assert params["api_key"] == "k-123"
        assert params["action"] == "getNumber"
        assert params["service"] == "tg"
        assert "operator" not in params

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_kind(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = SmsActivateClient(
            api_url="https://provider.test/handler_api.php",
            api_key="k",
            transport=httpx.MockTransport(handler),
        )
        try:
            with pytest.raises(ProviderError) as exc_info:
                await client.call("getStatus", {"id": "1"})
        finally:
            await client.close()

        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_upstream(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = SmsActivateClient(
            api_url="https://provider.test/handler_api.php",
            api_key="k",
            transport=httpx.MockTransport(handler),
        )
        try:
            with pytest.raises(ProviderError) as exc_info:
                await client.call("getBalance")
        finally:
            await client.close()

        assert exc_info.value.kind == ProviderErrorKind.UPSTREAM
