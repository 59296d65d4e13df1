"""
Refund lifecycle: one refund per order, with an optional return-shipping flow.
"""

from storefront.services.refunds.enums import RefundStatus, RefundType, ReturnShippingStatus
from storefront.services.refunds.models import (
    Refund,
    RefundStats,
    RefundTransitionExtra,
    ReturnShipping,
)
from storefront.services.refunds.repository import RefundRepository
from storefront.services.refunds.service import RefundService
from storefront.services.refunds.state_machine import RefundStateMachine

__all__ = [
    "Refund",
    "RefundRepository",
    "RefundService",
    "RefundStateMachine",
    "RefundStats",
    "RefundStatus",
    "RefundTransitionExtra",
    "RefundType",
    "ReturnShipping",
    "ReturnShippingStatus",
]
