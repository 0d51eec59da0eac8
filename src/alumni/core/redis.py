"""
Redis Client

Holds the process-wide async client used by the rate limiter. The client is
optional: when it was never connected, or is unreachable, rate limits fall
back to process memory and readiness reports Redis as degraded.
"""

import logging

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from alumni.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """Connect on startup. Raises if Redis does not answer a PING."""
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.redis_timeout_seconds,
        socket_timeout=settings.redis_timeout_seconds,
    )
    try:
        await client.ping()
    except RedisError:
        await client.aclose()
        raise
    redis_client = client
    return client


async def redis_status() -> str:
    """Redis health for the readiness probe: ok, error or not initialized."""
    if redis_client is None:
        return "not initialized"
    try:
        await redis_client.ping()
    except RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return "error"
    return "ok"


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
