"""
Order lifecycle: checkout, payment status and fulfilment.

``OrderService`` lives in :mod:`storefront.services.orders.service` and is not
re-exported here because the refund service depends on this package.
"""

from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.models import (
    CheckoutLine,
    Order,
    OrderItem,
    ShippingAddress,
    ShippingMethod,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine

__all__ = [
    "CheckoutLine",
    "Order",
    "OrderItem",
    "OrderRepository",
    "OrderStateMachine",
    "OrderStatus",
    "PaymentStatus",
    "ShippingAddress",
    "ShippingMethod",
]
