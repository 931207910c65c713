import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from brief_scheduler.config import settings
from brief_scheduler.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Delete the key only if it still holds our token
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class FastRedisClient:
    """Pooled async Redis client used for the cross-replica sweep lease."""

    def __init__(self, url: str | None = None):
        self.url = url
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            redis_url = self.url or settings.REDIS_URL

            logger.info("Attempting Redis connection", url_preview=redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=10,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def acquire_lock(self, key: str, token: str, ttl_s: int) -> bool:
        """
        Take a lease with SET NX EX.

        Raises on connection problems so the caller decides whether a
        missing lock service should block work.
        """
        await self._ensure_initialized()
        result = await self.client.set(key, token, nx=True, ex=ttl_s)
        return bool(result)

    async def release_lock(self, key: str, token: str) -> bool:
        """Release a lease only if we still own it."""
        try:
            await self._ensure_initialized()
            result = await self.client.eval(_RELEASE_LOCK_SCRIPT, 1, key, token)
            return bool(result)
        except Exception as e:
            logger.error("Redis lock release failed", key=key[:30], error=str(e))
            return False


fast_redis = FastRedisClient()
