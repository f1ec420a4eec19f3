"""Redis cache lifecycle adapter."""
import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from ....core.config import mask_url
from ....core.exceptions import ConfigurationError
from ..base import BaseDependencyAdapter, DependencyState


class CacheAdapter(BaseDependencyAdapter):
    """
    Manages the Redis client lifecycle and exposes a small JSON cache API.

    Cache operations never raise: while disconnected they return a miss,
    and a lost connection is reported to the coordinator as a drop.
    """

    name = "cache"

    def __init__(
        self,
        url: str,
        password: str = "",
        allow_flush: bool = False,
        **kwargs,
    ):
        if not url:
            raise ConfigurationError("REDIS_URL", "a Redis connection URL is required")
        super().__init__(**kwargs)
        self.url = url
        self.password = password
        self.allow_flush = allow_flush
        self.client: Optional[aioredis.Redis] = None

    async def _open(self) -> None:
        await self._close()
        self._logger.info("connecting_to_cache", url=mask_url(self.url))
        self.client = aioredis.from_url(
            self.url,
            password=self.password or None,
            socket_connect_timeout=self.connect_timeout,
            decode_responses=True,
        )
        await self.client.ping()

    async def _close(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await client.aclose()

    def is_connected(self) -> bool:
        return self.state == DependencyState.CONNECTED and self.client is not None

    def metadata(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected(),
            "client": "initialized" if self.client is not None else "not initialized",
            "url": mask_url(self.url),
        }

    # ========================================================================
    # Cache operations
    # ========================================================================

    def _handle_error(self, operation: str, key: Optional[str], error: RedisError) -> None:
        self._logger.error(
            "cache_operation_failed",
            operation=operation,
            key=key,
            error=str(error),
            error_type=type(error).__name__,
        )
        if isinstance(error, RedisConnectionError):
            self.mark_dropped(str(error))

    async def get(self, key: str) -> Any:
        if not self.is_connected():
            return None
        try:
            value = await self.client.get(key)
        except RedisError as e:
            self._handle_error("get", key, e)
            return None
        return json.loads(value) if value is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int = 3600) -> bool:
        if not self.is_connected():
            return False
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        except RedisError as e:
            self._handle_error("set", key, e)
            return False
        return True

    async def delete(self, key: str) -> bool:
        if not self.is_connected():
            return False
        try:
            await self.client.delete(key)
        except RedisError as e:
            self._handle_error("delete", key, e)
            return False
        return True

    async def exists(self, key: str) -> bool:
        if not self.is_connected():
            return False
        try:
            return await self.client.exists(key) == 1
        except RedisError as e:
            self._handle_error("exists", key, e)
            return False

    async def flush(self) -> bool:
        """Drop every key. Only allowed in the test environment."""
        if not self.allow_flush:
            raise ConfigurationError("ENVIRONMENT", "cache flush is only allowed in the test environment")
        if not self.is_connected():
            return False
        try:
            await self.client.flushall()
        except RedisError as e:
            self._handle_error("flush", None, e)
            return False
        self._logger.info("cache_flushed")
        return True
