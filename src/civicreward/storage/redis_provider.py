"""
Redis storage provider.

Shares observer and router state between processes. Every key is
namespaced with ``StorageConfig.key_prefix`` so one Redis database can
host several deployments.
"""

import logging
from typing import Optional

from civicreward.exceptions import StorageError

from .provider import AbstractStorageProvider, StorageConfig

logger = logging.getLogger(__name__)


class RedisStorageProvider(AbstractStorageProvider):
    """
    Redis-backed store for state documents.

    Needs the ``redis`` extra: ``pip install civic-reward[redis]``.
    """

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self._client = None
        self._pool = None

    async def connect(self) -> None:
        """Build the connection pool and ping the server."""
        try:
            import redis.asyncio as aioredis
        except ImportError:
            raise ImportError(
                "redis package is required for RedisStorageProvider. "
                "Install with: pip install civic-reward[redis]"
            )

        self._pool = aioredis.ConnectionPool(
            host=self.config.redis_host,
            port=self.config.redis_port,
            db=self.config.redis_db,
            password=self.config.redis_password,
            ssl=self.config.redis_ssl,
            max_connections=self.config.pool_size,
            socket_timeout=self.config.timeout_seconds,
            socket_connect_timeout=self.config.timeout_seconds,
            decode_responses=True,
        )
        self._client = aioredis.Redis(connection_pool=self._pool)
        await self._client.ping()

    async def disconnect(self) -> None:
        """Close the client and its pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    async def health_check(self) -> bool:
        try:
            if self._client is not None:
                await self._client.ping()
                return True
        except Exception:
            logger.debug("Redis health check failed", exc_info=True)
        return False

    def _require_client(self):
        if self._client is None:
            raise StorageError("RedisStorageProvider is not connected")
        return self._client

    async def get(self, key: str) -> Optional[str]:
        return await self._require_client().get(self._key(key))

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        result = await self._require_client().set(self._key(key), value, ex=ttl_seconds)
        return bool(result)

    async def delete(self, key: str) -> bool:
        return await self._require_client().delete(self._key(key)) > 0

    async def exists(self, key: str) -> bool:
        return await self._require_client().exists(self._key(key)) > 0

    async def keys(self, pattern: str = "*") -> list[str]:
        prefix = self.config.key_prefix
        found = await self._require_client().keys(f"{prefix}{pattern}")
        return [key[len(prefix):] for key in found]
