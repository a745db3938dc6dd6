import logging
from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

class RedisRateLimiter:
    def __init__(self, url: str, limit: int, window: int, enabled: bool = True):
        self.url = url
        self.limit = limit
        self.window = window
        self.enabled = enabled
        self.redis = None

    async def connect(self):
        if not self.redis:
            self.redis = aioredis.from_url(self.url, encoding="utf-8", decode_responses=True)
            logger.info("Connected to Redis.")

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def check_rate_limit(self, client_key: str) -> bool:
        """
        Returns True if request is allowed, False if rate limited.
        """
        if not self.enabled:
            return True

        if not self.redis:
            await self.connect()

        key = f"rate_limit:orders:{client_key}"
        try:
            # Fixed window counter per client
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, self.window)

            return current <= self.limit
        except Exception as e:
            logger.error(f"Redis rate limit error: {e}")
            return True # Fail open, a Redis outage must not block order creation
