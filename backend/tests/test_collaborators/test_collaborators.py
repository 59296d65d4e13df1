"""
Tests for the checkout collaborators: maintenance gate, catalog and carts.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.services.cart import Cart, CartItem, CartStore
from storefront.services.catalog import KeyValueCatalog, Product
from storefront.services.maintenance import MAINTENANCE_KEY, MaintenanceGate
from storefront.storage.memory import InMemoryKeyValueStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def gate(store: InMemoryKeyValueStore) -> MaintenanceGate:
    return MaintenanceGate(store, clock=lambda: NOW)


class TestMaintenanceGate:
    async def test_no_flag(self, gate: MaintenanceGate) -> None:
        assert await gate.is_under_maintenance() is False

    async def test_enabled_without_window(
        self, gate: MaintenanceGate, store: InMemoryKeyValueStore
    ) -> None:
        await store.set(MAINTENANCE_KEY, {"enabled": True, "message": "Upgrade server"})

        assert await gate.is_under_maintenance() is True
        assert (await gate.get_state()).message == "Upgrade server"

    @pytest.mark.parametrize(
        "start, end, expected",
        [
            (NOW - timedelta(hours=1), NOW + timedelta(hours=1), True),
            (NOW + timedelta(hours=1), NOW + timedelta(hours=2), False),
            (NOW - timedelta(hours=2), NOW - timedelta(hours=1), False),
            (NOW - timedelta(hours=1), NOW, False),
        ],
    )
    async def test_scheduled_window(
        self,
        gate: MaintenanceGate,
        store: InMemoryKeyValueStore,
        start: datetime,
        end: datetime,
        expected: bool,
    ) -> None:
        await store.set(
            MAINTENANCE_KEY,
            {"enabled": True, "start_time": start.isoformat(), "end_time": end.isoformat()},
        )

        assert await gate.is_under_maintenance() is expected

    async def test_disabled_flag_ignores_window(
        self, gate: MaintenanceGate, store: InMemoryKeyValueStore
    ) -> None:
        await store.set(
            MAINTENANCE_KEY,
            {"enabled": False, "start_time": (NOW - timedelta(hours=1)).isoformat()},
        )

        assert await gate.is_under_maintenance() is False


class TestCatalogAndCart:
    async def test_product_round_trip(self, store: InMemoryKeyValueStore) -> None:
        catalog = KeyValueCatalog(store)
        await catalog.put_product(Product(id="prod-hat", name="Topi", price=Decimal("25000"), stock=3))

        product = await catalog.get_product("prod-hat")

        assert product.price == Decimal("25000")
        assert await catalog.get_product("prod-missing") is None

    async def test_clear_cart(self, store: InMemoryKeyValueStore) -> None:
        carts = CartStore(store)
        await carts.save(Cart(user_id="user-1", items=[CartItem(product_id="prod-hat", quantity=2)]))

        assert (await carts.get("user-1")).items[0].quantity == 2

        await carts.clear("user-1")
        assert await carts.get("user-1") is None
