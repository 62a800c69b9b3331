"""Tests for the Redis fixed-window rate limiter."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from khidma.infrastructure.rate_limiter import RateLimiter, RateLimitResult
from tests.conftest import FakeRedis


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_blocks_after_limit(self, clock):
        limiter = RateLimiter(FakeRedis(), clock=clock)
        results = [await limiter.check("42:quote", 5, 60) for _ in range(6)]

        assert [r.blocked for r in results] == [False] * 5 + [True]
        assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]
        assert results[-1].count == 6

        last = results[-1]
        assert clock.now < last.reset_at <= clock.now + timedelta(seconds=60)
        assert RateLimiter.retry_after_seconds(last, clock.now) <= 60

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, clock):
        limiter = RateLimiter(FakeRedis(), clock=clock)
        for _ in range(3):
            await limiter.check("1:order", 3, 60)
        assert (await limiter.check("1:order", 3, 60)).blocked
        assert not (await limiter.check("2:order", 3, 60)).blocked
        assert not (await limiter.check("1:quote", 3, 60)).blocked

    @pytest.mark.asyncio
    async def test_window_ttl_set_once(self, clock):
        redis = FakeRedis()
        limiter = RateLimiter(redis, prefix="rl", clock=clock)
        await limiter.check("k", 10, 60)
        first_deadline = redis.expiry["rl:k"]
        await limiter.check("k", 10, 60)
        assert redis.expiry["rl:k"] == first_deadline

    @pytest.mark.asyncio
    async def test_fails_open_on_redis_error(self, clock):
        redis = FakeRedis()
        redis.fail = RedisConnectionError("connection refused")
        limiter = RateLimiter(redis, clock=clock)

        result = await limiter.check("42:order", 1, 60)
        assert not result.blocked
        assert result.degraded
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_fails_open_on_timeout(self, clock):
        async def hang():
            await asyncio.sleep(5)

        pipe = MagicMock()
        pipe.execute = hang
        redis = MagicMock()
        redis.pipeline.return_value = pipe

        limiter = RateLimiter(redis, timeout_seconds=0.05, clock=clock)
        result = await limiter.check("42:order", 1, 60)
        assert result.degraded and not result.blocked

    def test_retry_after_is_at_least_one_second(self, clock):
        result = RateLimitResult(count=9, remaining=0, reset_at=clock.now, blocked=True)
        assert RateLimiter.retry_after_seconds(result, clock.now) == 1
