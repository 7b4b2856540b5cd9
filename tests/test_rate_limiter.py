from __future__ import annotations

import unittest

from ragchat.core.redis_client import RedisClient
from ragchat.services.rate_limiter import RateLimiter
from tests.fake_redis import BrokenRedis, FakeRedis, fake_redis_client


class RateLimiterTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.redis = FakeRedis()
        await self.redis.flushdb()

    async def test_limit_within_window(self) -> None:
        limiter = RateLimiter(fake_redis_client(self.redis), limit=2, window_seconds=60)

        first = await limiter.hit("1.2.3.4", now=120.0)
        second = await limiter.hit("1.2.3.4", now=121.0)
        third = await limiter.hit("1.2.3.4", now=122.0)

        self.assertTrue(first.allowed)
        self.assertTrue(second.allowed)
        self.assertFalse(third.allowed)
        self.assertEqual(third.count, 3)
        self.assertEqual(third.retry_after, 58)

    async def test_clients_and_windows_are_independent(self) -> None:
        limiter = RateLimiter(fake_redis_client(self.redis), limit=1, window_seconds=60)

        self.assertTrue((await limiter.hit("a", now=0.0)).allowed)
        self.assertTrue((await limiter.hit("b", now=1.0)).allowed)
        self.assertFalse((await limiter.hit("a", now=2.0)).allowed)
        self.assertTrue((await limiter.hit("a", now=61.0)).allowed)

    async def test_counter_expires(self) -> None:
        client = fake_redis_client(self.redis)
        await client.incr_window_counter("k", 60)
        self.assertGreater(await self.redis.ttl("k"), 0)

    async def test_redis_unavailable_is_not_limited(self) -> None:
        limiter = RateLimiter(RedisClient(), limit=1)
        for _ in range(5):
            self.assertTrue((await limiter.hit("a")).allowed)

    async def test_redis_error_is_not_limited(self) -> None:
        limiter = RateLimiter(fake_redis_client(BrokenRedis()), limit=1)
        for _ in range(3):
            self.assertTrue((await limiter.hit("a")).allowed)

    async def test_disabled(self) -> None:
        limiter = RateLimiter(fake_redis_client(self.redis), limit=1, enabled=False)
        for _ in range(3):
            self.assertTrue((await limiter.hit("a")).allowed)


if __name__ == "__main__":
    unittest.main()
