"""User notifications over Redis pub/sub.

Delivery is best-effort: a notification failure never fails the operation
that produced it.
"""

import json
import logging
from typing import Any, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, user_id: int, event: dict[str, Any]) -> None: ...


class RedisNotifier:
    """Publishes JSON events to ``notifications:user:{user_id}``."""

    CHANNEL = "notifications:user:{user_id}"

    def __init__(self, client: redis.Redis):
        self.client = client

    async def notify(self, user_id: int, event: dict[str, Any]) -> None:
        channel = self.CHANNEL.format(user_id=user_id)
        await self.client.publish(channel, json.dumps(event, default=str))


async def notify_safely(notifier: Notifier | None, user_id: int, event: dict[str, Any]) -> None:
    """Send a notification, logging instead of raising on failure."""
    if notifier is None:
        return
    try:
        await notifier.notify(user_id, event)
    except Exception as e:
        logger.warning(f"Notification {event.get('type')} for user {user_id} failed: {e}")
