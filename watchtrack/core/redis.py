# ruff: noqa: PLW0603
"""Redis connection management.

Redis is optional: it backs the real-time telemetry counters, and the service
runs without it.
"""

import redis.asyncio as redis

from watchtrack.config import get_settings
from watchtrack.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Initialize the Redis connection pool and verify it with a ping."""
    global _redis_client

    settings = get_settings()

    client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        decode_responses=True,
    )

    try:
        await client.ping()
    except redis.ConnectionError as e:
        logger.warning("redis_connection_failed", error=str(e))
        await client.aclose()
        raise

    _redis_client = client
    logger.info("redis_connected", url=settings.redis_url)
    return _redis_client


async def shutdown_redis() -> None:
    """Close the Redis connection."""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


def get_redis() -> redis.Redis | None:
    """Get the Redis client, if one was initialized."""
    return _redis_client


def telemetry_counter_key(hour_bucket: str, event_name: str) -> str:
    """Key of the hourly counter for a telemetry event name."""
    return f"telemetry:{hour_bucket}:{event_name}"
