"""
Tests for the PostgreSQL key-value store against a mocked session factory.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from storefront.database.connection import check_database_health
from storefront.storage.base import StorageError
from storefront.storage.sql_store import SqlKeyValueStore


@pytest.fixture
def session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def session_factory(session: AsyncMock) -> MagicMock:
    return MagicMock(return_value=session)


@pytest.fixture
def sql_store(session_factory: MagicMock) -> SqlKeyValueStore:
    return SqlKeyValueStore(session_factory=session_factory)


class TestSqlKeyValueStore:
    async def test_get_returns_stored_document(
        self, sql_store: SqlKeyValueStore, session: AsyncMock
    ) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = {"id": "ORD-1", "version": 3}
        session.execute.return_value = result

        assert await sql_store.get("order:ORD-1") == {"id": "ORD-1", "version": 3}
        session.commit.assert_awaited_once()
        session.close.assert_awaited_once()

    async def test_set_commits_upsert(self, sql_store: SqlKeyValueStore, session: AsyncMock) -> None:
        await sql_store.set("cart:user-1", {"items": []})

        statement = session.execute.await_args.args[0]
        assert statement.table.name == "kv_store"
        session.commit.assert_awaited_once()

    async def test_delete_reports_rowcount(
        self, sql_store: SqlKeyValueStore, session: AsyncMock
    ) -> None:
        session.execute.return_value = SimpleNamespace(rowcount=1)
        assert await sql_store.delete("cart:user-1") is True

        session.execute.return_value = SimpleNamespace(rowcount=0)
        assert await sql_store.delete("cart:user-1") is False

    async def test_get_by_prefix(self, sql_store: SqlKeyValueStore, session: AsyncMock) -> None:
        session.execute.return_value = [
            SimpleNamespace(key="order:ORD-1", value={"id": "ORD-1"}),
            SimpleNamespace(key="order:ORD-2", value={"id": "ORD-2"}),
        ]

        documents = await sql_store.get_by_prefix("order:")

        assert list(documents) == ["order:ORD-1", "order:ORD-2"]

    async def test_driver_error_rolls_back_and_wraps(
        self, sql_store: SqlKeyValueStore, session: AsyncMock
    ) -> None:
        session.execute.side_effect = SQLAlchemyError("connection reset")

        with pytest.raises(StorageError) as exc_info:
            await sql_store.set("order:ORD-1", {"id": "ORD-1"})

        assert exc_info.value.context["key"] == "order:ORD-1"
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    async def test_ping_without_connection(self) -> None:
        assert await SqlKeyValueStore().ping() is False

    async def test_connect_fails_when_database_unreachable(
        self, sql_store: SqlKeyValueStore
    ) -> None:
        with patch(
            "storefront.storage.sql_store.check_database_health",
            AsyncMock(return_value=False),
        ):
            with pytest.raises(StorageError):
                await sql_store.connect()

    async def test_connect_and_ping(self, sql_store: SqlKeyValueStore) -> None:
        health = AsyncMock(return_value=True)

        with patch("storefront.storage.sql_store.check_database_health", health):
            await sql_store.connect()
            assert await sql_store.ping() is True

        assert health.await_count == 2


class TestCheckDatabaseHealth:
    async def test_unreachable_engine(self) -> None:
        engine = MagicMock()
        engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

        assert await check_database_health(engine) is False
