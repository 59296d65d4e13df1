"""
Pytest configuration and shared test fixtures.

Every fixture runs on the in-memory key-value store and in-memory evidence
storage; API tests talk to the application through httpx's ASGI transport with
a dictionary session resolver.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")

from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from storefront.api.deps import ServiceContainer, build_services
from storefront.core.config import Settings
from storefront.core.rate_limit import limiter
from storefront.core.security import (
    AccountStatus,
    Actor,
    ActorRole,
    Identity,
    InMemorySessionResolver,
    UserRole,
)
from storefront.main import create_app
from storefront.services.catalog import KeyValueCatalog, Product
from storefront.services.evidence import InMemoryEvidenceStorage
from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.models import CheckoutLine, Order, ShippingAddress
from storefront.storage.memory import InMemoryKeyValueStore

limiter.enabled = False


# ============================================================================
# Storage and Services
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Test settings with the default shipping rates and COD methods."""
    return Settings(environment="test", storage_backend="memory")


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    """Fresh in-memory key-value store per test."""
    return InMemoryKeyValueStore()


@pytest.fixture
def evidence_storage() -> InMemoryEvidenceStorage:
    return InMemoryEvidenceStorage()


@pytest.fixture
async def services(
    store: InMemoryKeyValueStore,
    settings: Settings,
    evidence_storage: InMemoryEvidenceStorage,
) -> ServiceContainer:
    """
    Wired services with a seeded catalog and the public vouchers.

    Products:
        prod-shirt   Rp 50.000, stock 10
        prod-shoes   Rp 100.000, stock 5
        prod-last    Rp 30.000, stock 1
    """
    container = build_services(store, settings, evidence_storage=evidence_storage)

    catalog = KeyValueCatalog(store)
    await catalog.put_product(Product(id="prod-shirt", name="Kaos Polos", price=Decimal("50000"), stock=10))
    await catalog.put_product(Product(id="prod-shoes", name="Sepatu Lari", price=Decimal("100000"), stock=5))
    await catalog.put_product(Product(id="prod-last", name="Topi Edisi Terbatas", price=Decimal("30000"), stock=1))

    await container.vouchers.seed_public_vouchers()
    return container


# ============================================================================
# Actors
# ============================================================================


@pytest.fixture
def customer() -> Actor:
    return Actor(id="user-1", role=ActorRole.CUSTOMER, name="Budi")


@pytest.fixture
def other_customer() -> Actor:
    return Actor(id="user-2", role=ActorRole.CUSTOMER, name="Sari")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=ActorRole.ADMIN, name="Admin Toko")


@pytest.fixture
def system_actor() -> Actor:
    return Actor.system("payment-webhook")


# ============================================================================
# Order Factories
# ============================================================================


@pytest.fixture
def shipping_address() -> ShippingAddress:
    return ShippingAddress(
        recipient_name="Budi Santoso",
        phone="081234567890",
        address="Jl. Merdeka No. 1",
        city="Bandung",
        province="Jawa Barat",
        postal_code="40111",
    )


PlaceOrder = Callable[..., Awaitable[Order]]


@pytest.fixture
def place_order(
    services: ServiceContainer,
    customer: Actor,
    shipping_address: ShippingAddress,
) -> PlaceOrder:
    """
    Factory placing an order through checkout.

    Defaults to two shirts (Rp 100.000) with store pickup and bank transfer.
    """

    async def _place(
        actor: Optional[Actor] = None,
        items: Optional[list[CheckoutLine]] = None,
        shipping_method: str = "pickup",
        payment_method: str = "bank_transfer",
        voucher_code: Optional[str] = None,
    ) -> Order:
        result = await services.orders.create_order(
            actor or customer,
            items=items if items is not None else [CheckoutLine(product_id="prod-shirt", quantity=2)],
            shipping_address=shipping_address,
            shipping_method=shipping_method,
            payment_method=payment_method,
            voucher_code=voucher_code,
        )
        return result.record

    return _place


@pytest.fixture
def paid_order(
    services: ServiceContainer,
    place_order: PlaceOrder,
    system_actor: Actor,
) -> PlaceOrder:
    """Factory for an order whose payment was captured."""

    async def _paid(**kwargs) -> Order:
        order = await place_order(**kwargs)
        result = await services.orders.set_payment_status(
            order.id, PaymentStatus.PAID, system_actor
        )
        return result.record

    return _paid


@pytest.fixture
def delivered_order(
    services: ServiceContainer,
    paid_order: PlaceOrder,
    admin: Actor,
) -> PlaceOrder:
    """Factory for a paid order that went all the way to delivered."""

    async def _delivered(**kwargs) -> Order:
        order = await paid_order(**kwargs)
        for target in (
            OrderStatus.PROCESSING,
            OrderStatus.PACKED,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        ):
            order = (await services.orders.advance_status(order.id, target, admin)).record
        return order

    return _delivered


@pytest.fixture
async def photo_evidence(services: ServiceContainer, customer: Actor) -> list[str]:
    """Ids of a 2 KiB photo uploaded by the customer."""
    evidence = await services.evidence.upload(
        customer, "photo.jpg", "image/jpeg", b"\xff\xd8" + b"\x00" * 2046
    )
    return [evidence.id]


# ============================================================================
# API Client
# ============================================================================


@pytest.fixture
def session_resolver() -> InMemorySessionResolver:
    """Tokens: customer-token, other-token, admin-token, banned-token."""
    return InMemorySessionResolver(
        {
            "customer-token": Identity(id="user-1", name="Budi", email="budi@example.com"),
            "other-token": Identity(id="user-2", name="Sari", email="sari@example.com"),
            "admin-token": Identity(id="admin-1", role=UserRole.ADMIN, name="Admin Toko"),
            "banned-token": Identity(id="user-9", status=AccountStatus.BANNED, name="Banned"),
        }
    )


@pytest.fixture
async def async_client(
    services: ServiceContainer,
    session_resolver: InMemorySessionResolver,
    evidence_storage: InMemoryEvidenceStorage,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Asynchronous client bound to a fresh application.

    The lifespan does not run; the wired services are placed on the app state
    directly.
    """
    app = create_app(
        store=services.store,
        session_resolver=session_resolver,
        evidence_storage=evidence_storage,
    )
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def customer_headers() -> dict[str, str]:
    return {"X-Session-Token": "customer-token"}


@pytest.fixture
def other_headers() -> dict[str, str]:
    return {"X-Session-Token": "other-token"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Session-Token": "admin-token"}
