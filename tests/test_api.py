"""HTTP tests for the FastAPI application."""

from collections.abc import AsyncGenerator
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from conftest import fund_user, sign, webhook_body
from smsgate.api.deps import get_gateway, get_notifier, get_payment_client
from smsgate.db.engine import get_db
from smsgate.main import create_app
from smsgate.providers.flutterwave import compute_signature
from smsgate.services.settlement_service import SettlementService

USER = {"X-User-Id": "1"}


@pytest_asyncio.fixture
async def client(
    session_factory, gateway, notifier, payment_client
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """API client wired to the test database and provider fakes."""
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_client] = lambda: payment_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# =============================================================================
# Basics
# =============================================================================


class TestBasics:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_user_header_required(self, client):
        assert (await client.get("/api/balance")).status_code == 401
        assert (await client.get("/api/balance", headers={"X-User-Id": "0"})).status_code == 401

    @pytest.mark.asyncio
    async def test_balance_for_new_user(self, client):
        response = await client.get("/api/balance", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["balance"]) == 0
        assert data["deposit_count"] == 0
        assert data["currency"] == "USD"


# =============================================================================
# Numbers
# =============================================================================


class TestNumbersApi:
    @pytest.mark.asyncio
    async def test_purchase_flow(self, client, db_session):
        await fund_user(db_session, 1, "1.00")

        response = await client.post(
            "/api/numbers/purchase", json={"service": "tg", "country": "0"}, headers=USER
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["number"]["activation_id"] == "1001"
        assert data["number"]["status"] == "waiting"
        assert data["number"]["time_remaining"] > 0
        assert Decimal(data["number"]["price"]) == Decimal("1.00")
        assert Decimal(data["balance"]) == 0

        number_id = data["number"]["id"]
        status = await client.get(f"/api/numbers/{number_id}/status", headers=USER)
        assert status.json()["status"] == "waiting"

        history = await client.get("/api/numbers/history", params={"service": "tg"}, headers=USER)
        assert history.json()["total"] == 1

        records = await client.get("/api/transactions", params={"type": "purchase"}, headers=USER)
        assert records.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_insufficient_balance_error_shape(self, client):
        response = await client.post(
            "/api/numbers/purchase", json={"service": "tg", "country": "0"}, headers=USER
        )

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Insufficient balance",
            "code": "INSUFFICIENT_BALANCE",
            "details": {"required": "1.0000", "available": "0"},
        }

    @pytest.mark.asyncio
    async def test_cancel_too_early(self, client, db_session):
        await fund_user(db_session, 1, "1.00")
        purchase = await client.post(
            "/api/numbers/purchase", json={"service": "tg", "country": "0"}, headers=USER
        )
        number_id = purchase.json()["number"]["id"]

        response = await client.post(f"/api/numbers/{number_id}/cancel", headers=USER)

        assert response.status_code == 400
        assert response.json()["code"] == "CANCEL_TOO_EARLY"
        assert response.json()["details"]["wait_seconds"] > 0

    @pytest.mark.asyncio
    async def test_other_users_number(self, client, db_session):
        await fund_user(db_session, 1, "1.00")
        purchase = await client.post(
            "/api/numbers/purchase", json={"service": "tg", "country": "0"}, headers=USER
        )
        number_id = purchase.json()["number"]["id"]

        response = await client.get(
            f"/api/numbers/{number_id}/status", headers={"X-User-Id": "2"}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NUMBER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_request_body(self, client):
        response = await client.post(
            "/api/numbers/purchase", json={"service": "", "country": "0"}, headers=USER
        )

        assert response.status_code == 422


# =============================================================================
# Payments and webhooks
# =============================================================================


class TestPaymentsApi:
    async def _create_deposit(self, client) -> str:
        response = await client.post(
            "/api/payments/deposits",
            json={"amount": "15000", "currency": "NGN", "email": "user@example.com"},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "PENDING_UNSETTLED"
        return response.json()["tx_ref"]

    @pytest.mark.asyncio
    async def test_webhook_settles_deposit(self, client):
        tx_ref = await self._create_deposit(client)
        body = webhook_body(tx_ref)

        first = await client.post(
            "/webhooks/payments", content=body, headers={"verif-hash": sign(body)}
        )
        second = await client.post(
            "/webhooks/payments", content=body, headers={"X-Signature": sign(body)}
        )

        assert first.status_code == 200
        assert first.json()["processed"] is True
        assert first.json()["already_processed"] is False
        assert second.json()["already_processed"] is True

        balance = await client.get("/api/balance", headers=USER)
        assert Decimal(balance.json()["balance"]) == Decimal("10")
        assert balance.json()["deposit_count"] == 1

        status = await client.get(f"/api/payments/status/{tx_ref}", headers=USER)
        assert status.json()["status"] == "PAID_SETTLED"

    @pytest.mark.asyncio
    async def test_bad_signature_is_acknowledged(self, client, db_session):
        tx_ref = await self._create_deposit(client)
        body = webhook_body(tx_ref)

        response = await client.post(
            "/webhooks/payments",
            content=body,
            headers={"verif-hash": compute_signature(body, "wrong-secret")},
        )

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert response.json()["error"] == "Invalid signature"

        stats = await SettlementService(db_session).webhook_stats(hours=1)
        assert stats["invalid_signatures"] == 1

    @pytest.mark.asyncio
    async def test_webhook_stats_are_not_served_over_http(self, client):
        response = await client.get("/webhooks/payments/stats", params={"hours": 1})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_verify_endpoint(self, client, payment_api):
        tx_ref = await self._create_deposit(client)
        payment_api.add_transaction(tx_ref, "successful", "15000")

        response = await client.post(f"/api/payments/verify/{tx_ref}", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["settled"] is True
        assert Decimal(data["credited_amount"]) == Decimal("10")
        assert data["deposit"]["status"] == "PAID_SETTLED"

    @pytest.mark.asyncio
    async def test_verify_unpaid_deposit(self, client):
        tx_ref = await self._create_deposit(client)

        response = await client.post(f"/api/payments/verify/{tx_ref}", headers=USER)

        assert response.status_code == 400
        assert response.json()["code"] == "PAYMENT_NOT_ACTIVATED"

    @pytest.mark.asyncio
    async def test_deposits_are_private(self, client):
        tx_ref = await self._create_deposit(client)

        response = await client.get(f"/api/payments/status/{tx_ref}", headers={"X-User-Id": "2"})

        assert response.status_code == 404
        assert response.json()["code"] == "DEPOSIT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_cancel_deposit(self, client):
        tx_ref = await self._create_deposit(client)

        response = await client.delete(f"/api/payments/cancel/{tx_ref}", headers=USER)
        listing = await client.get("/api/payments/deposits", headers=USER)

        assert response.json()["status"] == "CANCELLED"
        assert listing.json()["total"] == 1
