"""
Order API endpoints.

Checkout, payment status reports, fulfilment transitions, cancellation and a
long-poll watch endpoint. Side effects returned by the order service are
dispatched after the order write succeeded.
"""

from typing import Optional

from fastapi import APIRouter, Query, Request, status

from storefront.api.deps import AdminActor, CurrentActor, Services
from storefront.core.logging import get_logger
from storefront.core.rate_limit import checkout_limit, limiter
from storefront.schemas.orders import (
    CancelOrderRequest,
    CheckoutRequest,
    OrderStatusUpdate,
    OrderWatchResponse,
    PaymentStatusUpdate,
    ReconcileResponse,
)
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.models import Order
from storefront.sync.watcher import wait_for_change

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=Order,
    status_code=status.HTTP_201_CREATED,
    summary="Checkout",
)
@limiter.limit(checkout_limit)
async def create_order(
    request: Request,
    body: CheckoutRequest,
    actor: CurrentActor,
    services: Services,
) -> Order:
    """
    Place an order from the submitted items.

    Raises:
        MaintenanceModeError: 503 while the store is under maintenance
        ValidationError: 400 for empty carts, bad quantities, unknown shipping
            or a rejected voucher
        NotFoundError: 404 for unknown products
    """
    logger.info("Creating order", user_id=actor.id, item_count=len(body.items))

    result = await services.orders.create_order(
        actor,
        items=body.items,
        shipping_address=body.shipping_address,
        shipping_method=body.shipping_method,
        payment_method=body.payment_method,
        voucher_code=body.voucher_code,
    )
    await services.dispatcher.dispatch(result.events)
    return result.record


@router.get("", response_model=list[Order], summary="List own orders")
async def list_my_orders(actor: CurrentActor, services: Services) -> list[Order]:
    return await services.orders.list_user_orders(actor)


@router.get("/admin", response_model=list[Order], summary="List all orders")
async def list_all_orders(
    actor: AdminActor,
    services: Services,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
) -> list[Order]:
    return await services.orders.list_orders(actor, order_status)


@router.post("/reconcile", response_model=ReconcileResponse, summary="Repair missing refunds")
async def reconcile_orders(actor: AdminActor, services: Services) -> ReconcileResponse:
    """Create refunds missing from cancelled paid orders."""
    result = await services.orders.reconcile_cancelled_orders(actor)
    await services.dispatcher.dispatch(result.events)
    return ReconcileResponse(created=len(result.record), refunds=result.record)


@router.get("/{order_id}", response_model=Order, summary="Get order")
async def get_order(order_id: str, actor: CurrentActor, services: Services) -> Order:
    return await services.orders.get_order(order_id, actor)


@router.get("/{order_id}/watch", response_model=OrderWatchResponse, summary="Wait for changes")
async def watch_order(
    order_id: str,
    actor: CurrentActor,
    services: Services,
    since: int = Query(0, ge=0, description="Version the client already has"),
    timeout: Optional[float] = Query(None, gt=0, description="Seconds to wait at most"),
) -> OrderWatchResponse:
    """
    Long-poll an order.

    Answers as soon as the stored version is newer than ``since``, or with
    ``changed: false`` once the timeout elapses.
    """
    order = await services.orders.get_order(order_id, actor)
    if order.version > since:
        return OrderWatchResponse(changed=True, version=order.version, order=order)

    settings = services.settings
    change = await wait_for_change(
        lambda: services.orders.repository.get(order_id),
        since_version=since,
        interval=settings.poll_interval_seconds,
        timeout=min(timeout or settings.watch_timeout_seconds, settings.watch_timeout_seconds),
    )
    if change is None or change.snapshot is None:
        return OrderWatchResponse(changed=False, version=order.version, order=order)

    latest = Order.model_validate(change.snapshot)
    return OrderWatchResponse(changed=True, version=latest.version, order=latest)


@router.put("/{order_id}/status", response_model=Order, summary="Advance order status")
async def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    actor: AdminActor,
    services: Services,
) -> Order:
    result = await services.orders.advance_status(order_id, body.status, actor, body.note)
    await services.dispatcher.dispatch(result.events)
    return result.record


@router.put("/{order_id}/payment-status", response_model=Order, summary="Set payment status")
async def update_payment_status(
    order_id: str,
    body: PaymentStatusUpdate,
    actor: CurrentActor,
    services: Services,
) -> Order:
    """Customers may only mark their own order as waiting for payment."""
    result = await services.orders.set_payment_status(
        order_id,
        body.payment_status,
        actor,
        paid_at=body.paid_at,
        note=body.note,
    )
    await services.dispatcher.dispatch(result.events)
    return result.record


@router.post("/{order_id}/cancel", response_model=Order, summary="Cancel order")
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    actor: CurrentActor,
    services: Services,
) -> Order:
    result = await services.orders.cancel_order(order_id, actor, body.reason)
    await services.dispatcher.dispatch(result.events)
    return result.record
