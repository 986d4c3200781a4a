"""Payments API - Deposits into the user balance."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from smsgate.api.deps import CurrentUserId, get_settlement_service
from smsgate.models.deposit import DepositStatus
from smsgate.schemas.payment import (
    CreateDepositRequest,
    DepositListResponse,
    DepositResponse,
    VerifyDepositResponse,
)
from smsgate.services.settlement_service import SettlementService

router = APIRouter(prefix="/payments", tags=["Payments"])

SettlementServiceDep = Annotated[SettlementService, Depends(get_settlement_service)]


@router.post("/deposits", response_model=DepositResponse)
async def create_deposit(
    user_id: CurrentUserId,
    data: CreateDepositRequest,
    service: SettlementServiceDep,
) -> DepositResponse:
    """Open a checkout session. Pay through ``payment_link`` before ``expires_at``."""
    deposit = await service.create_deposit(
        user_id=user_id,
        amount=data.amount,
        currency=data.currency,
        email=data.email,
        name=data.name,
    )
    return DepositResponse.model_validate(deposit)


@router.get("/deposits", response_model=DepositListResponse)
async def list_deposits(
    user_id: CurrentUserId,
    service: SettlementServiceDep,
    status: DepositStatus | None = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Page size"),
) -> DepositListResponse:
    items, total = await service.list_deposits(user_id, page, page_size, status)
    return DepositListResponse(
        items=[DepositResponse.model_validate(d) for d in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/verify/{tx_ref}", response_model=VerifyDepositResponse)
async def verify_deposit(
    tx_ref: str,
    user_id: CurrentUserId,
    service: SettlementServiceDep,
) -> VerifyDepositResponse:
    """Re-check a deposit with the payment provider and credit it if paid."""
    result = await service.verify(user_id, tx_ref)
    return VerifyDepositResponse(
        already_processed=result.already_processed,
        settled=result.settled,
        deposit=DepositResponse.model_validate(result.deposit),
        credited_amount=result.credited_amount,
        balance=result.balance_after,
    )


@router.delete("/cancel/{tx_ref}", response_model=DepositResponse)
async def cancel_deposit(
    tx_ref: str,
    user_id: CurrentUserId,
    service: SettlementServiceDep,
) -> DepositResponse:
    return DepositResponse.model_validate(await service.cancel_deposit(user_id, tx_ref))


@router.get("/status/{tx_ref}", response_model=DepositResponse)
async def deposit_status(
    tx_ref: str,
    user_id: CurrentUserId,
    service: SettlementServiceDep,
) -> DepositResponse:
    return DepositResponse.model_validate(await service.get_deposit(tx_ref, user_id))
