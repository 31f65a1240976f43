"""
Redis client used for broker health checks.
"""
import redis.asyncio as redis

from speakcoach.config import settings


class RedisClient:
    """Lazily connected async Redis client."""

    def __init__(self):
        self._client: redis.Redis | None = None

    async def get_client(self) -> redis.Redis:
        """Get or create Redis connection with connection pooling."""
        if self._client is None:
            self._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=5,
                socket_connect_timeout=5,
            )
        return self._client

    async def ping(self) -> bool:
        client = await self.get_client()
        return bool(await client.ping())

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Singleton instance
redis_client = RedisClient()
