"""Deposit settlement tasks.

- Expiration of checkout sessions nobody paid
- Periodic reconciliation against the payment provider
"""

import asyncio
import logging

from celery import shared_task

from smsgate.core.redis import close_redis, init_redis
from smsgate.providers import FlutterwaveClient
from smsgate.services.notifier import RedisNotifier
from smsgate.services.settlement_service import SettlementService
from smsgate.tasks.base import create_task_session

logger = logging.getLogger(__name__)


@shared_task(name="deposits.expire_stale")
def expire_stale_deposits() -> dict:
    """Cancel pending deposits whose checkout session has expired."""
    return asyncio.run(_expire_stale_async())


async def _expire_stale_async() -> dict:
    engine, session_factory = create_task_session()
    try:
        async with session_factory() as db:
            expired = await SettlementService(db).expire_stale_deposits()
        return {"success": True, "expired": expired}
    finally:
        await engine.dispose()


@shared_task(name="deposits.reconcile")
def reconcile_deposits(lookback_hours: int = 24) -> dict:
    """Re-verify unsettled deposits with the payment provider.

    Catches payments whose webhook never arrived or arrived after the
    session was cancelled.

    Args:
        lookback_hours: Only deposits created within this window are checked

    Returns:
        Reconciliation counters
    """
    return asyncio.run(_reconcile_async(lookback_hours))


async def _reconcile_async(lookback_hours: int) -> dict:
    """Async implementation of reconcile_deposits."""
    engine, session_factory = create_task_session()
    redis_client = await init_redis()
    payment_client = FlutterwaveClient()
    try:
        async with session_factory() as db:
            service = SettlementService(db, payment_client, RedisNotifier(redis_client))
            summary = await service.reconcile_deposits(lookback_hours)
        logger.info(f"[reconcile] lookback={lookback_hours}h {summary}")
        return summary
    finally:
        await payment_client.close()
        await close_redis()
        await engine.dispose()
