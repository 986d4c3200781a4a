"""Webhook endpoints for payment provider notifications.

Every delivery is logged before it is processed and acknowledged with 200,
including deliveries with a bad signature or an unparseable body, so the
provider does not keep retrying them.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from smsgate.api.deps import get_settlement_service
from smsgate.schemas.payment import WebhookAck
from smsgate.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

SettlementServiceDep = Annotated[SettlementService, Depends(get_settlement_service)]


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    service: SettlementServiceDep,
    verif_hash: Annotated[str | None, Header(alias="verif-hash")] = None,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
) -> WebhookAck:
    """Receive a payment notification.

    The signature is HMAC-SHA256 of the raw body with the shared webhook
    secret, sent in ``verif-hash`` or ``X-Signature``.
    """
    raw_body = await request.body()
    outcome = await service.receive(raw_body, verif_hash or x_signature)
    logger.info(
        f"Payment webhook {outcome.log_id}: processed={outcome.processed} "
        f"signature_valid={outcome.signature_valid}"
    )
    return WebhookAck(
        log_id=outcome.log_id,
        processed=outcome.processed,
        already_processed=bool(outcome.result and outcome.result.already_processed),
        error=outcome.error,
    )
