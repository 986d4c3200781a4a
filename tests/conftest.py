"""Shared pytest fixtures for testing."""

import json
import os
from collections import defaultdict
from collections.abc import AsyncGenerator
from decimal import Decimal
from typing import Any

# Set test environment before smsgate reads its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./smsgate-test.db"
os.environ["SMS_ACTIVATE_API_KEY"] = "test-api-key"
os.environ["FLUTTERWAVE_SECRET_KEY"] = "FLWSECK_TEST-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["SETTLEMENT_CURRENCY"] = "USD"
os.environ["FALLBACK_FX_RATES"] = '{"NGN": "1500"}'
os.environ["MARKUP_MULTIPLIER"] = "2"
os.environ["CANCEL_DWELL_MINUTES"] = "4"
os.environ["NUMBER_LIFETIME_MINUTES"] = "20"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import smsgate.models  # noqa: E402, F401
from smsgate.providers.dispatcher import RateLimitedDispatcher  # noqa: E402
from smsgate.providers.flutterwave import FlutterwaveClient, compute_signature  # noqa: E402
from smsgate.providers.gateway import ProviderGateway  # noqa: E402
from smsgate.providers.sms_activate import decode_text  # noqa: E402
from smsgate.services.ledger_service import LedgerService  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so several sessions can run concurrently."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'smsgate.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def fund_user(session: AsyncSession, user_id: int, amount: str) -> None:
    """Credit a user directly through the ledger."""
    await LedgerService(session).credit(user_id, Decimal(amount), deposit=True)
    await session.commit()


# =============================================================================
# Provider Fakes
# =============================================================================


class FakeNotifier:
    """Collects notifications instead of publishing them."""

    def __init__(self):
        self.events: list[tuple[int, dict[str, Any]]] = []

    async def notify(self, user_id: int, event: dict[str, Any]) -> None:
        self.events.append((user_id, event))

    def types(self) -> list[str]:
        return [event["type"] for _, event in self.events]


class FakeProvider:
    """Scripted number provider.

    ``replies`` maps an action to a raw body, or to a list of bodies consumed
    one per call (the last one repeats). Bodies go through the real decoder.
    """

    def __init__(self, replies: dict[str, str | list[str]] | None = None):
        self.replies: dict[str, str | list[str]] = dict(replies or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._served: dict[str, int] = defaultdict(int)

    async def call(self, action: str, params: dict[str, Any]) -> Any:
        self.calls.append((action, dict(params)))
        reply = self.replies.get(action, "ERROR_SQL")
        if isinstance(reply, list):
            index = min(self._served[action], len(reply) - 1)
            self._served[action] += 1
            reply = reply[index]
        return decode_text(reply)

    def actions(self) -> list[str]:
        return [action for action, _ in self.calls]


def price_table(country: str, service: str, cost: str) -> str:
    return f'{{"{country}": {{"{service}": {{"cost": {cost}, "count": 120}}}}}}'


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(
        {
            "getPrices": price_table("0", "tg", "0.50"),
            "getNumber": "ACCESS_NUMBER:1001:79001234567",
            "setStatus": "ACCESS_CANCEL",
            "getStatus": "STATUS_WAIT_CODE",
            "getFullSms": "FULL_SMS:Your code: 12345",
        }
    )


@pytest_asyncio.fixture
async def gateway(provider: FakeProvider) -> AsyncGenerator[ProviderGateway, None]:
    dispatcher = RateLimitedDispatcher(
        provider.call, read_interval=0, write_interval=0, jitter_ratio=0
    )
    yield ProviderGateway(dispatcher)
    await dispatcher.close()


# =============================================================================
# Payment Provider Fakes
# =============================================================================


class FakePaymentApi:
    """httpx.MockTransport handler emulating the payment provider REST API."""

    def __init__(self):
        self.transactions: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add_transaction(self, tx_ref: str, status: str, amount: str, currency: str = "NGN"):
        self.transactions[tx_ref] = {
            "id": 900000 + len(self.transactions),
            "tx_ref": tx_ref,
            "flw_ref": f"FLW-{tx_ref}",
            "status": status,
            "amount": amount,
            "currency": currency,
        }
        return self.transactions[tx_ref]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/payments"):
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "message": "Hosted Link",
                    "data": {"link": "https://checkout.test/pay/abc123"},
                },
            )

        if path.endswith("/transactions/verify_by_reference"):
            tx = self.transactions.get(request.url.params.get("tx_ref"))
            return self._verify_response(tx)

        if path.endswith("/verify"):
            transaction_id = path.rstrip("/").split("/")[-2]
            tx = next(
                (t for t in self.transactions.values() if str(t["id"]) == transaction_id), None
            )
            return self._verify_response(tx)

        return httpx.Response(404, json={"status": "error", "message": "Not found"})

    @staticmethod
    def _verify_response(tx: dict[str, Any] | None) -> httpx.Response:
        if tx is None:
            return httpx.Response(
                400, json={"status": "error", "message": "No transaction was found for this id"}
            )
        return httpx.Response(200, json={"status": "success", "data": tx})


@pytest.fixture
def payment_api() -> FakePaymentApi:
    return FakePaymentApi()


@pytest_asyncio.fixture
async def payment_client(payment_api: FakePaymentApi) -> AsyncGenerator[FlutterwaveClient, None]:
    client = FlutterwaveClient(
        base_url="https://payments.test/v3",
        secret_key="FLWSECK_TEST-secret",
        transport=httpx.MockTransport(payment_api),
    )
    yield client
    await client.close()


def webhook_body(
    tx_ref: str,
    status: str = "successful",
    amount: str = "15000",
    currency: str = "NGN",
    event: str = "charge.completed",
) -> bytes:
    """Raw body of a payment provider notification."""
    payload = {
        "event": event,
        "data": {
            "id": 900000,
            "tx_ref": tx_ref,
            "flw_ref": f"FLW-{tx_ref}",
            "amount": amount,
            "currency": currency,
            "status": status,
        },
    }
    return json.dumps(payload).encode()


def sign(body: bytes) -> str:
    return compute_signature(body, WEBHOOK_SECRET)
