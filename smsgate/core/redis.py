"""Redis connection management for SMS Gate.

Redis backs the provider price cache and the user notification channel.
"""

import redis.asyncio as redis

from smsgate.core.config import get_settings

# Shared client (initialized in lifespan or per Celery task run)
_redis_client: redis.Redis | None = None


async def init_redis(url: str | None = None) -> redis.Redis:
    """Initialize the shared Redis client.

    Args:
        url: Connection URL, defaults to ``settings.redis_url``

    Returns:
        The shared client
    """
    global _redis_client
    _redis_client = redis.from_url(
        url or get_settings().redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    return _redis_client


def set_redis(client: redis.Redis | None) -> None:
    """Install an already-built client (used by workers and test fixtures)."""
    global _redis_client
    _redis_client = client


async def close_redis() -> None:
    """Close the shared client, if any."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def get_redis() -> redis.Redis:
    """Get the shared Redis client.

    Raises:
        RuntimeError: If Redis is not initialized
    """
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() during application startup.")
    return _redis_client
