"""
Tests for the sliding-window rate limiter.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from alumni.core import rate_limit
from alumni.core.rate_limit import check_rate_limit


@pytest.fixture(autouse=True)
def clear_memory_store():
    rate_limit._memory_store.clear()
    yield
    rate_limit._memory_store.clear()


class TestMemoryFallback:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        with patch("alumni.core.redis.redis_client", None):
            allowed = [await check_rate_limit("k", 3, 60) for _ in range(4)]

        assert allowed == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        with patch("alumni.core.redis.redis_client", None):
            assert await check_rate_limit("a", 1, 60) is True
            assert await check_rate_limit("b", 1, 60) is True
            assert await check_rate_limit("a", 1, 60) is False

    @pytest.mark.asyncio
    async def test_window_expiry(self):
        with patch("alumni.core.redis.redis_client", None):
            with patch("alumni.core.rate_limit.time.time", return_value=1000.0):
                assert await check_rate_limit("k", 1, 60) is True
                assert await check_rate_limit("k", 1, 60) is False
            with patch("alumni.core.rate_limit.time.time", return_value=1061.0):
                assert await check_rate_limit("k", 1, 60) is True


class TestRedis:
    def _client(self, count: int):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, count, 1, True])
        client = MagicMock()
        client.pipeline.return_value = pipe
        return client, pipe

    @pytest.mark.asyncio
    async def test_under_limit(self):
        client, pipe = self._client(count=2)

        with patch("alumni.core.redis.redis_client", client):
            assert await check_rate_limit("k", 3, 60) is True

        pipe.zadd.assert_called_once()
        pipe.expire.assert_called_once_with("k", 60)

    @pytest.mark.asyncio
    async def test_at_limit(self):
        client, _ = self._client(count=3)

        with patch("alumni.core.redis.redis_client", client):
            assert await check_rate_limit("k", 3, 60) is False

    @pytest.mark.asyncio
    async def test_redis_error_falls_back_to_memory(self):
        client, pipe = self._client(count=0)
        pipe.execute = AsyncMock(side_effect=ConnectionError("redis down"))

        with patch("alumni.core.redis.redis_client", client):
            assert await check_rate_limit("k", 1, 60) is True
            assert await check_rate_limit("k", 1, 60) is False

        assert "k" in rate_limit._memory_store
