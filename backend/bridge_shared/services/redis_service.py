"""
Shared Redis connection for the enqueue duplicate-detection window and the
outcome cache
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from bridge_shared.config.settings import RedisSettings
from bridge_shared.utils.retry import retry_async

logger = logging.getLogger(__name__)


class RedisService:
    """One pooled ``redis.asyncio`` client per process"""

    def __init__(self, settings: RedisSettings, socket_timeout: float = 5.0):
        self.settings = settings
        self.pool = redis.ConnectionPool(
            host=settings.host,
            port=settings.port,
            password=settings.password,
            db=settings.db,
            decode_responses=True,
            max_connections=settings.max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._client: Optional[redis.Redis] = None

    @retry_async(max_attempts=3, delay=1.0, exceptions=(RedisError,))
    async def connect(self) -> None:
        """Open the client and ping it; retried while Redis is still starting"""
        client = redis.Redis(connection_pool=self.pool)
        await client.ping()
        self._client = client
        logger.info(f"Connected to Redis at {self.settings.host}:{self.settings.port}/{self.settings.db}")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await self.pool.disconnect()
        logger.info("Disconnected from Redis")

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis is not connected; call connect() first")
        return self._client

    async def ping(self) -> bool:
        """Readiness check for /health"""
        try:
            return bool(await self.client.ping())
        except (RedisError, RuntimeError):
            return False


def create_redis_service(settings: RedisSettings) -> RedisService:
    return RedisService(settings)
