"""
Side-effect events emitted by the lifecycle engines.

Engines never call collaborators directly. Each successful operation returns
``LifecycleResult(record, events)`` and the caller hands the events to the
dispatcher after the core write has been confirmed.
"""

from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar, Union

from storefront.services.notifications import NotificationMessage, NotificationType


@dataclass(frozen=True)
class NotifyUser:
    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.ORDER
    order_id: Optional[str] = None
    refund_id: Optional[str] = None

    def to_message(self) -> NotificationMessage:
        return NotificationMessage(
            user_id=self.user_id,
            title=self.title,
            message=self.message,
            type=self.type,
            order_id=self.order_id,
            refund_id=self.refund_id,
        )


@dataclass(frozen=True)
class ClearCart:
    user_id: str


@dataclass(frozen=True)
class RedeemVoucher:
    voucher_id: str
    user_id: str
    order_id: str


@dataclass(frozen=True)
class RevertVoucher:
    voucher_id: str
    order_id: str


@dataclass(frozen=True)
class MarkOrderRefunded:
    order_id: str
    refund_id: str


LifecycleEvent = Union[NotifyUser, ClearCart, RedeemVoucher, RevertVoucher, MarkOrderRefunded]

RecordT = TypeVar("RecordT")


@dataclass
class LifecycleResult(Generic[RecordT]):
    """Record written by an operation plus the side effects it calls for."""

    record: RecordT
    events: list[LifecycleEvent] = field(default_factory=list)

    def of_type(self, event_type: type) -> list[LifecycleEvent]:
        return [event for event in self.events if isinstance(event, event_type)]
