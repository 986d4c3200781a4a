"""Numbers API - Lease, cancel and track virtual numbers."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from smsgate.api.deps import CurrentUserId, get_number_service
from smsgate.models.number import NumberPurchase, NumberStatus
from smsgate.schemas.number import (
    CancelNumberResponse,
    FullSmsResponse,
    NumberListResponse,
    NumberResponse,
    PurchaseNumberRequest,
    PurchaseNumberResponse,
)
from smsgate.services.number_service import NumberService

router = APIRouter(prefix="/numbers", tags=["Numbers"])

NumberServiceDep = Annotated[NumberService, Depends(get_number_service)]


def to_number_response(purchase: NumberPurchase) -> NumberResponse:
    response = NumberResponse.model_validate(purchase)
    response.time_remaining = purchase.seconds_remaining()
    return response


@router.post("/purchase", response_model=PurchaseNumberResponse)
async def purchase_number(
    user_id: CurrentUserId,
    data: PurchaseNumberRequest,
    service: NumberServiceDep,
) -> PurchaseNumberResponse:
    """Lease a number for a service in a country.

    The price is the provider cost with markup; the balance is charged only
    after the provider leased the number.
    """
    purchase = await service.purchase(
        user_id=user_id,
        service=data.service,
        country=data.country,
        operator=data.operator,
        max_price=data.max_price,
    )
    balance = await service.ledger.get_balance(user_id)
    return PurchaseNumberResponse(number=to_number_response(purchase), balance=balance)


@router.get("/active", response_model=NumberListResponse)
async def list_active_numbers(
    user_id: CurrentUserId,
    service: NumberServiceDep,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Page size"),
) -> NumberListResponse:
    """List waiting/received numbers, refreshing waiting ones from the provider."""
    items, total = await service.list_active(user_id, page, page_size)
    return NumberListResponse(
        items=[to_number_response(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/history", response_model=NumberListResponse)
async def number_history(
    user_id: CurrentUserId,
    service: NumberServiceDep,
    status: NumberStatus | None = Query(None, description="Filter by status"),
    service_code: str | None = Query(None, alias="service", description="Filter by service"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Page size"),
) -> NumberListResponse:
    items, total = await service.history(user_id, page, page_size, status, service_code)
    return NumberListResponse(
        items=[to_number_response(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{purchase_id}/status", response_model=NumberResponse)
async def number_status(
    purchase_id: int,
    user_id: CurrentUserId,
    service: NumberServiceDep,
) -> NumberResponse:
    """Current status of a number; waiting numbers are polled at the provider."""
    return to_number_response(await service.get_status(user_id, purchase_id))


@router.post("/{purchase_id}/cancel", response_model=CancelNumberResponse)
async def cancel_number(
    purchase_id: int,
    user_id: CurrentUserId,
    service: NumberServiceDep,
) -> CancelNumberResponse:
    """Cancel a number and receive a refund.

    Cancellation is only possible a few minutes after purchase.
    """
    result = await service.cancel(user_id, purchase_id)
    balance = (
        result.balance
        if result.balance is not None
        else await service.ledger.get_balance(user_id)
    )
    return CancelNumberResponse(
        number=to_number_response(result.purchase),
        refund_amount=result.refund_amount,
        balance=balance,
    )


@router.post("/{purchase_id}/complete", response_model=NumberResponse)
async def complete_number(
    purchase_id: int,
    user_id: CurrentUserId,
    service: NumberServiceDep,
) -> NumberResponse:
    return to_number_response(await service.complete(user_id, purchase_id))


@router.post("/{purchase_id}/retry", response_model=NumberResponse)
async def retry_number(
    purchase_id: int,
    user_id: CurrentUserId,
    service: NumberServiceDep,
) -> NumberResponse:
    """Request another SMS; extends the lease."""
    return to_number_response(await service.request_retry(user_id, purchase_id))


@router.get("/{purchase_id}/full-sms", response_model=FullSmsResponse)
async def full_sms(
    purchase_id: int,
    user_id: CurrentUserId,
    service: NumberServiceDep,
) -> FullSmsResponse:
    text = await service.get_full_sms(user_id, purchase_id)
    purchase = await service.get_purchase(user_id, purchase_id)
    return FullSmsResponse(activation_id=purchase.activation_id, text=text)
