"""
Order Pydantic schemas for API request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.models import CheckoutLine, Order, ShippingAddress
from storefront.services.refunds.models import Refund


class CheckoutRequest(BaseModel):
    """Checkout submission. Prices are taken from the catalog, never the client."""

    model_config = ConfigDict(str_strip_whitespace=True)

    items: list[CheckoutLine] = Field(
        default_factory=list,
        description="Products and quantities to order",
    )
    shipping_address: ShippingAddress
    shipping_method: str = Field(
        ...,
        min_length=1,
        description="Shipping rate identifier, e.g. jne-reg or pickup",
    )
    payment_method: str = Field(
        ...,
        min_length=1,
        description="Payment method identifier, e.g. bank_transfer or cod",
    )
    voucher_code: Optional[str] = Field(
        None,
        max_length=50,
        description="Optional voucher code",
    )


class OrderStatusUpdate(BaseModel):
    """Request to move an order along its fulfilment chain."""

    status: OrderStatus
    note: str = Field("", max_length=500)


class PaymentStatusUpdate(BaseModel):
    """Payment status report from the payment rail or an admin."""

    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None
    note: str = Field("", max_length=500)


class CancelOrderRequest(BaseModel):
    reason: str = Field("", max_length=500)


class OrderWatchResponse(BaseModel):
    """Long-poll answer: ``changed`` is False when the wait timed out."""

    changed: bool
    version: int
    order: Order


class ReconcileResponse(BaseModel):
    created: int
    refunds: list[Refund]
