"""Number lifecycle tasks.

- Expiration of numbers that never received an SMS
"""

import asyncio
import logging
import time

from celery import shared_task

from smsgate.core.redis import close_redis, init_redis
from smsgate.providers import PriceCache, ProviderGateway, RateLimitedDispatcher, SmsActivateClient
from smsgate.services.notifier import RedisNotifier
from smsgate.services.number_service import NumberService
from smsgate.tasks.base import create_task_session

logger = logging.getLogger(__name__)


@shared_task(name="numbers.expire_overdue")
def expire_overdue_numbers(limit: int = 500) -> dict:
    """Expire waiting numbers past their lease.

    Expired numbers are not refunded; the provider cancels them on its side.

    Args:
        limit: Maximum purchases handled per run

    Returns:
        Dict with the expired count
    """
    return asyncio.run(_expire_overdue_async(limit))


async def _expire_overdue_async(limit: int) -> dict:
    """Async implementation of expire_overdue_numbers."""
    start_time = time.time()
    engine, session_factory = create_task_session()
    redis_client = await init_redis()
    sms_client = SmsActivateClient()
    dispatcher = RateLimitedDispatcher(sms_client.call)
    gateway = ProviderGateway(dispatcher, PriceCache(redis_client))
    try:
        async with session_factory() as db:
            service = NumberService(db, gateway, RedisNotifier(redis_client))
            expired = await service.expire_overdue(limit)
        elapsed = time.time() - start_time
        logger.info(f"[expire_overdue] expired={expired} elapsed={elapsed:.3f}s")
        return {"success": True, "expired": expired}
    finally:
        await dispatcher.close()
        await sms_client.close()
        await close_redis()
        await engine.dispose()
