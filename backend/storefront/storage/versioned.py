"""
Optimistic version check for aggregate documents.

The key-value backends offer no compare-and-set, so conflicting writers are
detected rather than prevented: the stored version is checked before the write
and the document is read back afterwards.
"""

from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

from storefront.core.errors import ConcurrentModificationError
from storefront.core.logging import get_logger
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)


class VersionedDocument(Protocol):
    id: str
    version: int
    updated_at: datetime

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        ...


DocumentT = TypeVar("DocumentT", bound=VersionedDocument)


def _status_of(document: Any) -> str:
    if isinstance(document, dict):
        return str(document.get("status", ""))
    status = getattr(document, "status", "")
    return getattr(status, "value", str(status))


async def save_versioned(store: KeyValueStore, key: str, document: DocumentT) -> DocumentT:
    """
    Write ``document`` if the stored copy still has the version it was read at.

    Version 0 means the document is new and must not exist yet. On success the
    document's ``version`` is incremented and ``updated_at`` refreshed in place.

    Args:
        store: Backing key-value store
        key: Document key
        document: Pydantic aggregate carrying ``version``

    Returns:
        The same document with its new version

    Raises:
        ConcurrentModificationError: If another writer got there first
    """
    expected_version = document.version
    current = await store.get(key)
    current_version = current.get("version", 0) if current else 0

    if current_version != expected_version:
        logger.warning(
            "Stale write rejected",
            key=key,
            expected_version=expected_version,
            current_version=current_version,
        )
        raise ConcurrentModificationError(
            f"{key} changed since it was read",
            current_status=_status_of(current) if current else "",
            requested_status=_status_of(document),
            key=key,
            expected_version=expected_version,
            current_version=current_version,
        )

    document.version = expected_version + 1
    document.updated_at = datetime.now(timezone.utc)
    payload = document.model_dump(mode="json")
    await store.set(key, payload)

    stored = await store.get(key)
    if stored != payload:
        logger.warning("Concurrent overwrite detected", key=key, version=document.version)
        raise ConcurrentModificationError(
            f"{key} was overwritten by a concurrent writer",
            current_status=_status_of(stored) if stored else "",
            requested_status=_status_of(document),
            key=key,
        )

    return document
