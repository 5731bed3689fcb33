from typing import Optional

import redis.asyncio as redis
import structlog

from monitoring.cache_metrics import track_store_operation
from .errors import StoreUnavailable

logger = structlog.get_logger()


class RedisDurableStore:
    """Durable tier backed by Redis.

    Entries are written without expiry and only if the key is absent, so a
    key's content never changes once written.
    """

    def __init__(self, redis_url: str):
        """Initialize the store with a Redis connection URL."""
        self.redis_url = redis_url
        self.redis: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis = redis.from_url(self.redis_url, decode_responses=False)
            await self.redis.ping()
            logger.info("redis_connection_established")
        except redis.RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            self.redis = None
            raise StoreUnavailable(f"Redis unavailable: {e}") from e

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.close()
            self.redis = None
            logger.info("redis_connection_closed")

    @track_store_operation('get')
    async def get(self, key: str) -> Optional[bytes]:
        """Get the raw payload stored under ``key``."""
        if not self.redis:
            await self.connect()
        try:
            return await self.redis.get(key)
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis get failed for {key}: {e}") from e

    @track_store_operation('put')
    async def put(self, key: str, payload: bytes) -> bool:
        """Write ``payload`` under ``key`` unless the key already exists.

        Returns:
            True if this call wrote the key, False if it was already present
        """
        if not self.redis:
            await self.connect()
        try:
            written = await self.redis.set(key, payload, nx=True)
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis set failed for {key}: {e}") from e
        return bool(written)
