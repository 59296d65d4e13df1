"""
Shared lifecycle plumbing: status history, side-effect events and dispatch.
"""

from storefront.services.lifecycle.events import (
    ClearCart,
    LifecycleEvent,
    LifecycleResult,
    MarkOrderRefunded,
    NotifyUser,
    RedeemVoucher,
    RevertVoucher,
)
from storefront.services.lifecycle.history import StatusHistoryEntry

__all__ = [
    "ClearCart",
    "LifecycleEvent",
    "LifecycleResult",
    "MarkOrderRefunded",
    "NotifyUser",
    "RedeemVoucher",
    "RevertVoucher",
    "StatusHistoryEntry",
]
