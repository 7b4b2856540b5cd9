"""
请求限流

Redis 固定窗口计数：key = ratelimit:{scope}:{client}:{window}
Redis 不可用时放行，只记日志。
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from redis.exceptions import RedisError


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int = 0
    limit: int = 0
    retry_after: int = 0


class RateLimiter:
    def __init__(
        self,
        redis_client,
        limit: int = 30,
        window_seconds: int = 60,
        enabled: bool = True,
        prefix: str = "ratelimit",
    ) -> None:
        self.redis_client = redis_client
        self.limit = limit
        self.window_seconds = max(1, window_seconds)
        self.enabled = enabled
        self.prefix = prefix

    def _key(self, scope: str, client_id: str, now: float) -> str:
        window = int(now // self.window_seconds)
        return f"{self.prefix}:{scope}:{client_id}:{window}"

    async def hit(self, client_id: str, scope: str = "chat", now: Optional[float] = None) -> RateLimitDecision:
        if not self.enabled or self.limit <= 0:
            return RateLimitDecision(allowed=True)
        if not getattr(self.redis_client, "is_connected", True):
            return RateLimitDecision(allowed=True)

        now = time.time() if now is None else now
        try:
            count = await self.redis_client.incr_window_counter(self._key(scope, client_id, now), self.window_seconds)
        except (RedisError, OSError, RuntimeError) as e:
            logger.warning(f"限流计数失败，放行请求: {e}")
            return RateLimitDecision(allowed=True)

        if count > self.limit:
            retry_after = self.window_seconds - int(now % self.window_seconds)
            logger.info(f"请求被限流: client={client_id}, scope={scope}, count={count}")
            return RateLimitDecision(allowed=False, count=count, limit=self.limit, retry_after=retry_after)
        return RateLimitDecision(allowed=True, count=count, limit=self.limit)
