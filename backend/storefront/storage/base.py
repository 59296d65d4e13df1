"""
Key-value storage contract used by every repository.

Values are JSON-compatible documents (dicts, lists, strings, numbers). Each
backend is responsible for isolating callers from its internal state so that a
document returned by ``get`` can be mutated freely without affecting the store.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from storefront.core.errors import StorefrontError


class StorageError(StorefrontError):
    """Raised when the underlying storage driver fails."""

    status_code = 503
    default_user_message = "Layanan penyimpanan sedang tidak tersedia. Silakan coba lagi."


@runtime_checkable
class KeyValueStore(Protocol):
    """Storage-agnostic document store."""

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def ping(self) -> bool:
        ...

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def get_by_prefix(self, prefix: str) -> dict[str, Any]:
        ...
