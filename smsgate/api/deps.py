"""Common FastAPI dependencies for API endpoints."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from smsgate.db.engine import get_db
from smsgate.providers.flutterwave import FlutterwaveClient
from smsgate.providers.gateway import ProviderGateway
from smsgate.services.ledger_service import LedgerService
from smsgate.services.notifier import Notifier
from smsgate.services.number_service import NumberService
from smsgate.services.settlement_service import SettlementService


async def get_current_user_id(
    x_user_id: Annotated[int | None, Header(description="Authenticated user id")] = None,
) -> int:
    """User id set by the upstream authentication layer."""
    if x_user_id is None or x_user_id <= 0:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


CurrentUserId = Annotated[int, Depends(get_current_user_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_gateway(request: Request) -> ProviderGateway:
    """Provider gateway built in the application lifespan."""
    return request.app.state.gateway


def get_notifier(request: Request) -> Notifier | None:
    return getattr(request.app.state, "notifier", None)


def get_payment_client(request: Request) -> FlutterwaveClient:
    return request.app.state.payment_client


def get_ledger_service(db: DbSession) -> LedgerService:
    """Get ledger service instance."""
    return LedgerService(db)


def get_number_service(
    db: DbSession,
    gateway: Annotated[ProviderGateway, Depends(get_gateway)],
    notifier: Annotated[Notifier | None, Depends(get_notifier)],
) -> NumberService:
    """Get number service instance."""
    return NumberService(db, gateway, notifier)


def get_settlement_service(
    db: DbSession,
    payment_client: Annotated[FlutterwaveClient, Depends(get_payment_client)],
    notifier: Annotated[Notifier | None, Depends(get_notifier)],
) -> SettlementService:
    """Get settlement service instance."""
    return SettlementService(db, payment_client, notifier)
