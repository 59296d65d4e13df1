"""
PostgreSQL backed key-value store.

Each document is a row in ``kv_store``; writes are upserts so ``set`` has the
same overwrite semantics as the other backends.
"""

from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.logging import get_logger
from storefront.database.connection import (
    check_database_health,
    close_database_connections,
    get_session,
    get_session_factory,
)
from storefront.database.models import KeyValueEntry
from storefront.storage.base import StorageError

logger = get_logger(__name__)


class SqlKeyValueStore:
    """KeyValueStore over the ``kv_store`` table."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._session_factory = session_factory

    async def connect(self) -> None:
        if self._session_factory is None:
            self._session_factory = get_session_factory()

        if not await check_database_health(self._session_factory.kw["bind"]):
            raise StorageError("PostgreSQL store is not reachable")

        logger.info("PostgreSQL store connected")

    async def close(self) -> None:
        await close_database_connections()
        self._session_factory = None

    async def ping(self) -> bool:
        if self._session_factory is None:
            return False
        return await check_database_health(self._session_factory.kw["bind"])

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with get_session(self._session_factory) as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database read failed", key=key, error=str(e))
            raise StorageError(f"Failed to read {key}: {e}", key=key) from e

    async def set(self, key: str, value: Any) -> None:
        statement = insert(KeyValueEntry).values(key=key, value=value)
        statement = statement.on_conflict_do_update(
            index_elements=[KeyValueEntry.key],
            set_={"value": statement.excluded.value, "updated_at": func.now()},
        )
        try:
            async with get_session(self._session_factory) as session:
                await session.execute(statement)
        except SQLAlchemyError as e:
            logger.error("Database write failed", key=key, error=str(e))
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    async def delete(self, key: str) -> bool:
        try:
            async with get_session(self._session_factory) as session:
                result = await session.execute(
                    delete(KeyValueEntry).where(KeyValueEntry.key == key)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error("Database delete failed", key=key, error=str(e))
            raise StorageError(f"Failed to delete {key}: {e}", key=key) from e

    async def get_by_prefix(self, prefix: str) -> dict[str, Any]:
        try:
            async with get_session(self._session_factory) as session:
                result = await session.execute(
                    select(KeyValueEntry.key, KeyValueEntry.value)
                    .where(KeyValueEntry.key.startswith(prefix, autoescape=True))
                    .order_by(KeyValueEntry.key)
                )
                return {row.key: row.value for row in result}
        except SQLAlchemyError as e:
            logger.error("Database prefix query failed", prefix=prefix, error=str(e))
            raise StorageError(f"Failed to scan {prefix}: {e}", prefix=prefix) from e
