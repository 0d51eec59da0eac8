"""
Rate Limiting Module

Sliding-window rate limiting backed by Redis sorted sets. Falls back to an
in-process window when Redis is unavailable (single instance only).

Applied to:
- Registration submission (prevents form flooding)
- Token verification (prevents token guessing)
- Admin decisions, keyed per admin (prevents runaway scripted approvals)
"""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, status

from alumni.core import redis as redis_module

logger = logging.getLogger(__name__)

# In-memory fallback storage: {key: [timestamp, ...]}
_memory_store: dict[str, list[float]] = {}


class RateLimitExceeded(HTTPException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after_seconds": window_seconds,
            },
            headers={"Retry-After": str(window_seconds)},
        )


async def _check_rate_limit_redis(client, key: str, limit: int, window_seconds: int) -> bool:
    """Sliding window check using a Redis sorted set scored by request time."""
    now = time.time()
    window_start = now - window_seconds

    pipe = client.pipeline()
    pipe.zremrangebyscore(key, 0, window_start)
    pipe.zcard(key)
    pipe.zadd(key, {str(now): now})
    pipe.expire(key, window_seconds)
    results = await pipe.execute()

    current_count = results[1]
    return current_count < limit


def _check_rate_limit_memory(key: str, limit: int, window_seconds: int) -> bool:
    """Sliding window check using process memory."""
    now = time.time()
    window_start = now - window_seconds

    timestamps = [ts for ts in _memory_store.get(key, []) if ts > window_start]
    if len(timestamps) >= limit:
        _memory_store[key] = timestamps
        return False

    timestamps.append(now)
    _memory_store[key] = timestamps
    return True


async def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Check if a request is within rate limits.

    Tries Redis first, falls back to in-memory storage.

    Args:
        key: Unique key for this rate limit (e.g., "verify:203.0.113.7")
        limit: Maximum requests allowed in the window
        window_seconds: Time window in seconds

    Returns:
        True if request is allowed, False if rate limit exceeded
    """
    client = redis_module.redis_client
    if client is not None:
        try:
            return await _check_rate_limit_redis(client, key, limit, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed, using memory: {e}")

    return _check_rate_limit_memory(key, limit, window_seconds)


def _client_key(request: Request, scope: str) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"rate_limit:{scope}:{client_ip}"


def rate_limit(
    scope: str,
    limit: int = 10,
    window_seconds: int = 60,
) -> Callable[[Request], Awaitable[None]]:
    """
    Build a FastAPI dependency enforcing a rate limit for one endpoint scope.

    Usage:
        @router.post("", dependencies=[Depends(rate_limit("submit", 5, 60))])

    Requests are counted per client IP.
    """

    async def dependency(request: Request) -> None:
        key = _client_key(request, scope)
        if not await check_rate_limit(key, limit, window_seconds):
            logger.warning(f"Rate limit exceeded for {key}: {limit}/{window_seconds}s")
            raise RateLimitExceeded(limit, window_seconds)

    return dependency


__all__ = [
    "RateLimitExceeded",
    "check_rate_limit",
    "rate_limit",
]
