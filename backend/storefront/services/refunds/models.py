"""
Refund aggregate documents.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from storefront.services.evidence import Evidence
from storefront.services.lifecycle.history import StatusHistoryEntry
from storefront.services.refunds.enums import RefundStatus, RefundType, ReturnShippingStatus


class ReturnShipping(BaseModel):
    """Return shipment of a refunded item, created when a refund is approved."""

    courier: str
    tracking_number: str
    status: ReturnShippingStatus = ReturnShippingStatus.PENDING
    shipped_at: Optional[datetime] = None
    received_at: Optional[datetime] = None


class Refund(BaseModel):
    """
    Refund aggregate, one per order.

    ``amount`` is fixed at creation. ``return_shipping`` only exists on
    returnable user requests that reached ``approved`` or later.
    """

    id: str
    order_id: str
    user_id: str
    type: RefundType
    requires_return: bool = False
    reason: str
    description: str = ""
    amount: Decimal = Field(gt=0)
    evidence: list[Evidence] = Field(default_factory=list)
    status: RefundStatus = RefundStatus.PENDING
    return_shipping: Optional[ReturnShipping] = None
    admin_note: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    refund_method: Optional[str] = None
    refunded_at: Optional[datetime] = None
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 0


class RefundTransitionExtra(BaseModel):
    """Fields merged into a refund together with a status change."""

    courier: Optional[str] = None
    tracking_number: Optional[str] = None
    admin_note: Optional[str] = None
    refund_method: Optional[str] = None
    return_shipping: Optional[ReturnShipping] = None


class RefundStats(BaseModel):
    """Refund counters for the admin console.

    ``approved`` covers refunds in the return flow (approved, shipping,
    received); ``completed`` covers refunds that were paid out.
    """

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    completed: int = 0
    total_amount: Decimal = Decimal("0")
