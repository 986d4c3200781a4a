"""Flutterwave compatible payment provider client.

Covers the three calls deposit settlement needs:
1. Hosted checkout creation (``POST /payments``)
2. Verification by provider transaction id
3. Lookup by our own tx_ref (used when the provider id is not yet known)

Webhook signatures are HMAC-SHA256 of the raw request body.
"""

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any

import httpx

from smsgate.core.config import get_settings
from smsgate.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA256 of the raw body, lowercase hex."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time comparison of a webhook signature.

    Args:
        raw_body: Request body exactly as received
        signature: Signature header value
        secret: Shared webhook secret

    Returns:
        True if the signature matches
    """
    if not signature or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


class FlutterwaveClient:
    """Async client for the payment provider REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.flutterwave_api_url
        self.secret_key = secret_key if secret_key is not None else settings.flutterwave_secret_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise PaymentProviderError(f"Payment provider timed out on {path}") from None
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"Payment provider request failed: {e}") from e

    async def create_payment(
        self,
        tx_ref: str,
        amount: Decimal,
        currency: str,
        customer: dict[str, Any],
        redirect_url: str,
        title: str = "Account Deposit",
    ) -> str:
        """Create a hosted checkout session.

        Args:
            tx_ref: Our unique reference
            amount: Amount in ``currency``
            currency: ISO currency code
            customer: ``{"email", "name"}`` of the payer
            redirect_url: Where the checkout returns to

        Returns:
            Checkout link

        Raises:
            PaymentProviderError: If the provider rejects the request
        """
        payload = {
            "tx_ref": tx_ref,
            "amount": str(amount),
            "currency": currency,
            "redirect_url": redirect_url,
            "customer": customer,
            "customizations": {"title": title},
            "meta": {"tx_ref": tx_ref},
        }
        response = await self._request("POST", "/payments", json=payload)
        body = response.json() if response.content else {}

        link = (body.get("data") or {}).get("link")
        if response.status_code >= 400 or body.get("status") != "success" or not link:
            logger.error(f"Checkout creation failed for {tx_ref}: {body.get('message')}")
            raise PaymentProviderError(
                body.get("message") or "Failed to create payment link",
                {"http_status": response.status_code},
            )
        return link

    async def verify_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        """Fetch a transaction by provider id.

        Returns:
            Transaction data, or None when the provider does not know the id
        """
        response = await self._request("GET", f"/transactions/{transaction_id}/verify")
        return self._transaction_data(response, transaction_id)

    async def find_by_tx_ref(self, tx_ref: str) -> dict[str, Any] | None:
        """Fetch a transaction by our tx_ref.

        Returns:
            Transaction data, or None if no payment was ever made against it
        """
        response = await self._request(
            "GET", "/transactions/verify_by_reference", params={"tx_ref": tx_ref}
        )
        return self._transaction_data(response, tx_ref)

    def _transaction_data(self, response: httpx.Response, ref: str) -> dict[str, Any] | None:
        if response.status_code == 404:
            return None
        try:
            body = response.json()
        except ValueError:
            raise PaymentProviderError(
                f"Payment provider returned a non-JSON body for {ref}"
            ) from None

        if response.status_code >= 500:
            raise PaymentProviderError(body.get("message") or "Payment provider error")
        if body.get("status") != "success" or not body.get("data"):
            message = (body.get("message") or "").lower()
            if "no transaction" in message or "not found" in message:
                return None
            raise PaymentProviderError(body.get("message") or f"Verification failed for {ref}")
        return body["data"]
