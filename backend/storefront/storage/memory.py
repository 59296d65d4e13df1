"""
In-process key-value store for tests and local development.
"""

import asyncio
import json
from typing import Any, Optional

from storefront.core.logging import get_logger

logger = get_logger(__name__)


class InMemoryKeyValueStore:
    """
    Dictionary backed store.

    Documents are stored as JSON text so every read returns an independent
    copy and non-serializable values are rejected the same way the networked
    backends reject them.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        logger.info("In-memory store ready")

    async def close(self) -> None:
        self._data.clear()

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        async with self._lock:
            self._data[key] = encoded

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def get_by_prefix(self, prefix: str) -> dict[str, Any]:
        return {
            key: json.loads(raw)
            for key, raw in sorted(self._data.items())
            if key.startswith(prefix)
        }

    def __len__(self) -> int:
        return len(self._data)
