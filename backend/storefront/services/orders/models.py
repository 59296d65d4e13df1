"""
Order aggregate documents.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from storefront.services.lifecycle.history import StatusHistoryEntry
from storefront.services.orders.enums import OrderStatus, PaymentStatus


class CheckoutLine(BaseModel):
    """Product and quantity requested at checkout; prices come from the catalog."""

    product_id: str
    quantity: int


class OrderItem(BaseModel):
    """Line item snapshotted from the catalog at checkout."""

    product_id: str
    product_name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class ShippingAddress(BaseModel):
    recipient_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    address: str = Field(min_length=1)
    city: str = ""
    province: str = ""
    postal_code: str = ""


class ShippingMethod(BaseModel):
    id: str
    name: str
    price: Decimal = Field(ge=0)


class Order(BaseModel):
    """
    Order aggregate.

    ``status_history`` is append-only; state and history are always written
    together in one document.
    """

    id: str
    user_id: str
    items: list[OrderItem]
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")
    voucher_code: Optional[str] = None
    voucher_id: Optional[str] = None
    discount: Decimal = Decimal("0")
    total_amount: Decimal
    shipping_address: ShippingAddress
    shipping_method: ShippingMethod
    payment_method: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.WAITING_PAYMENT
    tracking_number: Optional[str] = None
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    has_refund: bool = False
    refund_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 0

    @model_validator(mode="after")
    def check_totals(self) -> "Order":
        expected = self.subtotal + self.shipping_cost - self.discount
        if self.total_amount != expected:
            raise ValueError(
                f"total_amount {self.total_amount} does not equal "
                f"subtotal + shipping_cost - discount ({expected})"
            )
        if self.discount < 0 or self.discount > self.subtotal:
            raise ValueError("discount must be between zero and the subtotal")
        return self
