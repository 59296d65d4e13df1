"""
Fan-out of lifecycle side effects to collaborators.

Side effects run after the core write succeeded. A failing side effect is
logged and reported in the returned outcome but never re-raised, so it can
never roll back the state change that produced it.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

from storefront.core.logging import get_logger
from storefront.services.cart import CartStore
from storefront.services.lifecycle.events import (
    ClearCart,
    LifecycleEvent,
    MarkOrderRefunded,
    NotifyUser,
    RedeemVoucher,
    RevertVoucher,
)
from storefront.services.notifications import NotificationSink
from storefront.services.vouchers.service import VoucherService

logger = get_logger(__name__)


class OrderRefundMarker(Protocol):
    async def mark_refunded(self, order_id: str, refund_id: str) -> Any:
        ...


@dataclass
class DispatchOutcome:
    delivered: list[LifecycleEvent] = field(default_factory=list)
    failed: list[tuple[LifecycleEvent, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class SideEffectDispatcher:
    """Routes each event type to the collaborator that handles it."""

    def __init__(
        self,
        notifications: NotificationSink,
        carts: CartStore,
        vouchers: VoucherService,
        orders: Optional[OrderRefundMarker] = None,
    ):
        self.notifications = notifications
        self.carts = carts
        self.vouchers = vouchers
        self.orders = orders

    async def dispatch(self, events: Iterable[LifecycleEvent]) -> DispatchOutcome:
        outcome = DispatchOutcome()
        for event in events:
            try:
                follow_up = await self._handle(event)
            except Exception as e:
                logger.error(
                    "Side effect failed",
                    event_type=type(event).__name__,
                    event=repr(event),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome.failed.append((event, str(e)))
                continue

            outcome.delivered.append(event)
            if follow_up:
                nested = await self.dispatch(follow_up)
                outcome.delivered.extend(nested.delivered)
                outcome.failed.extend(nested.failed)

        return outcome

    async def _handle(self, event: LifecycleEvent) -> list[LifecycleEvent]:
        if isinstance(event, NotifyUser):
            await self.notifications.publish(event.to_message())
        elif isinstance(event, ClearCart):
            await self.carts.clear(event.user_id)
        elif isinstance(event, RedeemVoucher):
            await self.vouchers.redeem(event.voucher_id, event.user_id, event.order_id)
        elif isinstance(event, RevertVoucher):
            await self.vouchers.revert(event.voucher_id, event.order_id)
        elif isinstance(event, MarkOrderRefunded):
            if self.orders is None:
                raise RuntimeError("No order service configured for refund back-references")
            result = await self.orders.mark_refunded(event.order_id, event.refund_id)
            return list(getattr(result, "events", []))
        else:
            raise TypeError(f"Unknown lifecycle event {type(event).__name__}")
        return []
