"""Balance API - Account balance and ledger records."""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from smsgate.api.deps import CurrentUserId, get_ledger_service
from smsgate.core.config import get_settings
from smsgate.models.ledger import TransactionType
from smsgate.schemas.ledger import BalanceResponse, TransactionListResponse, TransactionResponse
from smsgate.services.ledger_service import LedgerService

router = APIRouter(tags=["Balance"])

LedgerServiceDep = Annotated[LedgerService, Depends(get_ledger_service)]


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(user_id: CurrentUserId, service: LedgerServiceDep) -> BalanceResponse:
    """Current balance. Users without an account see zeros."""
    account = await service.get_account(user_id)
    currency = get_settings().settlement_currency
    if account is None:
        return BalanceResponse(
            user_id=user_id,
            balance=Decimal("0"),
            total_deposited=Decimal("0"),
            total_spent=Decimal("0"),
            deposit_count=0,
            currency=currency,
        )
    return BalanceResponse(
        user_id=user_id,
        balance=account.balance,
        total_deposited=account.total_deposited,
        total_spent=account.total_spent,
        deposit_count=account.deposit_count,
        currency=currency,
        last_transaction_at=account.last_transaction_at,
    )


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    user_id: CurrentUserId,
    service: LedgerServiceDep,
    transaction_type: TransactionType | None = Query(None, alias="type", description="Filter"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Page size"),
) -> TransactionListResponse:
    """List ledger records, newest first."""
    items, total = await service.list_transactions(user_id, page, page_size, transaction_type)
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )
