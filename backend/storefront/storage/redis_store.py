"""
Redis backed key-value store with connection pooling and retry logic.

Documents are stored as JSON strings under a configurable namespace. Prefix
queries use SCAN so they never block the server the way KEYS would.
"""

import json
from typing import Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.storage.base import StorageError

logger = get_logger(__name__)


class RedisKeyValueStore:
    """
    Async Redis store with a pooled client.

    Provides the KeyValueStore contract on top of plain string keys with
    automatic connection management and driver error wrapping.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        namespace: Optional[str] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        health_check_interval: int = 30,
        client: Optional[Redis] = None,
    ):
        """
        Initialize the store.

        Args:
            url: Redis connection URL (defaults to settings.redis_url)
            max_connections: Maximum pool connections (defaults to settings)
            namespace: Key namespace (defaults to settings.redis_key_prefix)
            socket_timeout: Socket operation timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
            health_check_interval: Health check interval in seconds
            client: Pre-built client, used instead of creating a pool
        """
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._namespace = namespace if namespace is not None else settings.redis_key_prefix
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Remove the password from a Redis URL for logging."""
        if "@" in url:
            protocol, rest = url.split("://", 1)
            _, host_part = rest.split("@", 1)
            return f"{protocol}://***@{host_part}"
        return url

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def _strip(self, key: str) -> str:
        if self._namespace and key.startswith(f"{self._namespace}:"):
            return key[len(self._namespace) + 1:]
        return key

    async def connect(self) -> None:
        """
        Create the connection pool and verify connectivity.

        Raises:
            StorageError: If the server cannot be reached
        """
        if self._client is not None and self._pool is not None:
            logger.warning("Redis store already connected")
            return

        try:
            if self._client is None:
                retry = Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3)
                self._pool = ConnectionPool.from_url(
                    self._url,
                    max_connections=self._max_connections,
                    socket_timeout=self._socket_timeout,
                    socket_connect_timeout=self._socket_connect_timeout,
                    retry_on_timeout=True,
                    health_check_interval=self._health_check_interval,
                    retry=retry,
                    decode_responses=True,
                )
                self._client = Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info(
                "Redis store connected",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
                namespace=self._namespace,
            )

        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self.close()
            raise StorageError(f"Redis connection failed: {e}") from e

    async def close(self) -> None:
        """Close the client and release the pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
            logger.info("Redis store closed")

    def _require_client(self) -> Redis:
        if self._client is None:
            raise StorageError("Redis store is not connected")
        return self._client

    async def ping(self) -> bool:
        if self._client is None:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    async def get(self, key: str) -> Optional[Any]:
        client = self._require_client()
        try:
            raw = await client.get(self._key(key))
        except RedisError as e:
            logger.error("Redis GET failed", key=key, error=str(e))
            raise StorageError(f"Failed to read {key}: {e}", key=key) from e

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Stored document is not valid JSON", key=key, error=str(e))
            raise StorageError(f"Corrupt document at {key}", key=key) from e

    async def set(self, key: str, value: Any) -> None:
        client = self._require_client()
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key} is not JSON serializable", key=key) from e

        try:
            await client.set(self._key(key), encoded)
            logger.debug("Redis SET", key=key)
        except RedisError as e:
            logger.error("Redis SET failed", key=key, error=str(e))
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    async def delete(self, key: str) -> bool:
        client = self._require_client()
        try:
            return bool(await client.delete(self._key(key)))
        except RedisError as e:
            logger.error("Redis DELETE failed", key=key, error=str(e))
            raise StorageError(f"Failed to delete {key}: {e}", key=key) from e

    async def get_by_prefix(self, prefix: str) -> dict[str, Any]:
        client = self._require_client()
        try:
            keys = [key async for key in client.scan_iter(match=f"{self._key(prefix)}*")]
            if not keys:
                return {}
            keys.sort()
            values = await client.mget(keys)
        except RedisError as e:
            logger.error("Redis prefix scan failed", prefix=prefix, error=str(e))
            raise StorageError(f"Failed to scan {prefix}: {e}", prefix=prefix) from e

        return {
            self._strip(key): json.loads(raw)
            for key, raw in zip(keys, values)
            if raw is not None
        }
