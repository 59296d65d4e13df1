"""
Key-value storage backends.

The lifecycle engine only depends on :class:`KeyValueStore`; the concrete
backend is chosen by ``APP_STORAGE_BACKEND``.
"""

from typing import Optional

from storefront.core.config import Settings, get_settings
from storefront.storage.base import KeyValueStore, StorageError
from storefront.storage.memory import InMemoryKeyValueStore


def create_store(settings: Optional[Settings] = None) -> KeyValueStore:
    """
    Build the configured storage backend without connecting it.

    Args:
        settings: Settings to read the backend from (defaults to cached settings)

    Returns:
        Unconnected KeyValueStore
    """
    settings = settings or get_settings()

    if settings.storage_backend == "redis":
        from storefront.storage.redis_store import RedisKeyValueStore

        return RedisKeyValueStore(
            url=settings.redis_url,
            max_connections=settings.redis_max_connections,
            namespace=settings.redis_key_prefix,
        )

    if settings.storage_backend == "postgres":
        from storefront.storage.sql_store import SqlKeyValueStore

        return SqlKeyValueStore()

    return InMemoryKeyValueStore()


__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "StorageError",
    "create_store",
]
