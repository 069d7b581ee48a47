"""Redis client holding the reminder side-index and the once-per-window reminder markers.

Nothing in Redis is authoritative: the index is rebuilt from the database
every night, so a flushed or unreachable Redis only delays reminders.
"""

import redis.asyncio as redis

from rendezvous.core.config import get_settings

_redis: redis.Redis | None = None


def create_redis(url: str, socket_timeout: float | None = None) -> redis.Redis:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        health_check_interval=30,
    )


async def init_redis(url: str | None = None) -> None:
    """Connect the shared client and fail startup if Redis does not answer."""
    global _redis

    if _redis is not None:
        return

    settings = get_settings()
    client = create_redis(url or settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    await client.ping()
    _redis = client


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """Return the shared Redis client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
