"""
FastAPI dependencies for services, session identity and role checks.

Services are built once per application and kept on ``app.state``; tests
override :func:`get_services` and :func:`get_session_resolver`.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, set_actor_id
from storefront.core.security import (
    Actor,
    Identity,
    SessionResolver,
    TokenSessionResolver,
    require_active_identity,
    require_privileged,
)
from storefront.services.cart import CartStore
from storefront.services.evidence import EvidenceService, EvidenceStorage
from storefront.services.lifecycle.dispatcher import SideEffectDispatcher
from storefront.services.maintenance import MaintenanceGate
from storefront.services.notifications import NotificationService
from storefront.services.orders.service import OrderService
from storefront.services.refunds.service import RefundService
from storefront.services.vouchers.service import VoucherService
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class ServiceContainer:
    """Everything the routers need, wired around one key-value store."""

    store: KeyValueStore
    settings: Settings
    orders: OrderService
    refunds: RefundService
    vouchers: VoucherService
    notifications: NotificationService
    carts: CartStore
    dispatcher: SideEffectDispatcher
    evidence: EvidenceService


def build_services(
    store: KeyValueStore,
    settings: Optional[Settings] = None,
    evidence_storage: Optional[EvidenceStorage] = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    vouchers = VoucherService(store)
    evidence = EvidenceService(store, evidence_storage, settings)
    refunds = RefundService(store, settings, evidence=evidence)
    orders = OrderService(
        store,
        refunds=refunds,
        vouchers=vouchers,
        maintenance=MaintenanceGate(store),
        settings=settings,
    )
    notifications = NotificationService(store)
    carts = CartStore(store)
    return ServiceContainer(
        store=store,
        settings=settings,
        orders=orders,
        refunds=refunds,
        vouchers=vouchers,
        notifications=notifications,
        carts=carts,
        dispatcher=SideEffectDispatcher(notifications, carts, vouchers, orders),
        evidence=evidence,
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_session_resolver(request: Request) -> SessionResolver:
    resolver = getattr(request.app.state, "session_resolver", None)
    return resolver or TokenSessionResolver()


async def get_current_identity(
    resolver: Annotated[SessionResolver, Depends(get_session_resolver)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    x_session_token: Annotated[Optional[str], Header()] = None,
) -> Identity:
    """
    Resolve the caller from ``X-Session-Token`` or a Bearer token.

    Raises:
        UnauthorizedError: If no token resolves to an identity
        ForbiddenError: If the account is not active
    """
    token = x_session_token or (credentials.credentials if credentials else None)
    identity = await resolver.resolve(token) if token else None
    if identity is None:
        logger.warning("Authentication failed", token_present=bool(token))
    return require_active_identity(identity)


async def get_current_actor(
    identity: Annotated[Identity, Depends(get_current_identity)],
) -> Actor:
    set_actor_id(identity.id)
    return Actor.from_identity(identity)


async def get_admin_actor(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """
    Raises:
        ForbiddenError: If the caller is not an admin
    """
    require_privileged(actor, "use admin endpoints")
    return actor


Services = Annotated[ServiceContainer, Depends(get_services)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(get_admin_actor)]
