"""Order state machine implementation with transition validation.

Implements the role table, guards and in-document effects of order
transitions. The state machine only mutates the order it is handed; persisting
it (and emitting side-effect events) is the service's job.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Optional, Set

from storefront.core.config import Settings, get_settings
from storefront.core.errors import ForbiddenError, InvalidTransitionError
from storefront.core.logging import get_logger
from storefront.core.security import Actor, ActorRole
from storefront.services.lifecycle.history import StatusHistoryEntry
from storefront.services.lifecycle.identifiers import generate_tracking_number
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    get_allowed_payment_transitions,
    validate_order_status_transition,
    validate_payment_status_transition,
)
from storefront.services.orders.models import Order

logger = get_logger(__name__)

Edge = tuple[OrderStatus, OrderStatus]

_STAFF: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN, ActorRole.SYSTEM})
_ADMIN: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN})
_ANYONE: FrozenSet[ActorRole] = frozenset(ActorRole)


class OrderStateMachine:
    """State machine for order fulfilment and payment transitions.

    Validation order is fixed: table legality first (InvalidTransition), then
    the actor's role and ownership (Forbidden), then guards (InvalidTransition).
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._edge_roles: Dict[Edge, FrozenSet[ActorRole]] = self._initialize_roles()
        self._transition_guards: Dict[Edge, Callable[[Order], bool]] = (
            self._initialize_guards()
        )
        self._side_effects: Dict[OrderStatus, Callable[[Order, datetime], None]] = (
            self._initialize_side_effects()
        )

    def _initialize_roles(self) -> Dict[Edge, FrozenSet[ActorRole]]:
        return {
            (OrderStatus.PENDING, OrderStatus.WAITING_PAYMENT): _STAFF,
            (OrderStatus.WAITING_PAYMENT, OrderStatus.PROCESSING): _STAFF,
            (OrderStatus.PROCESSING, OrderStatus.PACKED): _ADMIN,
            (OrderStatus.PACKED, OrderStatus.SHIPPED): _ADMIN,
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED): _ADMIN,
            (OrderStatus.PENDING, OrderStatus.CANCELLED): _ANYONE,
            (OrderStatus.WAITING_PAYMENT, OrderStatus.CANCELLED): _ANYONE,
            (OrderStatus.PROCESSING, OrderStatus.CANCELLED): _ANYONE,
            (OrderStatus.PACKED, OrderStatus.CANCELLED): _STAFF,
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED): _STAFF,
        }

    def _initialize_guards(self) -> Dict[Edge, Callable[[Order], bool]]:
        return {
            (OrderStatus.WAITING_PAYMENT, OrderStatus.PROCESSING): (
                self._guard_payment_settled
            ),
        }

    def _initialize_side_effects(self) -> Dict[OrderStatus, Callable[[Order, datetime], None]]:
        return {
            OrderStatus.SHIPPED: self._effect_shipped,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
        }

    def is_cod(self, order: Order) -> bool:
        return self.settings.is_cod(order.payment_method)

    def validate_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        actor: Actor,
    ) -> None:
        """Validate if transition to target status is allowed for the actor.

        Args:
            order: Freshly read order
            target_status: Desired target status
            actor: Who is requesting the transition

        Raises:
            InvalidTransitionError: If the edge is not in the table or a guard fails
            ForbiddenError: If the actor lacks the role or does not own the order
        """
        current_status = order.status

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            user_message = (
                "Pesanan ini tidak dapat dibatalkan lagi."
                if target_status == OrderStatus.CANCELLED
                else f"Status pesanan tidak dapat diubah dari "
                f"{current_status.display_name} ke {target_status.display_name}."
            )
            raise InvalidTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_status=current_status.value,
                requested_status=target_status.value,
                user_message=user_message,
                order_id=order.id,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        roles = self._edge_roles[(current_status, target_status)]
        if actor.role not in roles:
            raise ForbiddenError(
                f"{actor.role.value} may not move order from "
                f"{current_status.value} to {target_status.value}",
                user_message=(
                    "Pesanan yang sudah dikemas atau dikirim hanya dapat dibatalkan oleh admin."
                    if target_status == OrderStatus.CANCELLED
                    else None
                ),
                order_id=order.id,
                actor_role=actor.role.value,
            )

        if actor.is_customer and actor.id != order.user_id:
            raise ForbiddenError(
                f"User {actor.id} does not own order {order.id}",
                order_id=order.id,
                actor_id=actor.id,
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None and not guard(order):
            raise InvalidTransitionError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                current_status=current_status.value,
                requested_status=target_status.value,
                user_message="Pesanan belum dibayar.",
                order_id=order.id,
                payment_status=order.payment_status.value,
                guard_failed=True,
            )

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        actor: Actor,
        note: str,
    ) -> Order:
        """Validate, then move the order and append one history entry.

        Raises:
            InvalidTransitionError: If the transition is not allowed
            ForbiddenError: If the actor may not perform it
        """
        self.validate_transition(order, target_status, actor)

        now = datetime.now(timezone.utc)
        old_status = order.status
        order.status = target_status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, now)

        order.status_history.append(
            StatusHistoryEntry.record(
                target_status.value,
                note or f"Status diubah menjadi {target_status.display_name}",
                actor,
                payment_status=order.payment_status.value,
            )
        )

        logger.info(
            "Order transition applied",
            order_id=order.id,
            transition=f"{old_status.value}->{target_status.value}",
            actor_id=actor.id,
            actor_role=actor.role.value,
        )
        return order

    def validate_payment_transition(
        self,
        order: Order,
        target: PaymentStatus,
        actor: Actor,
    ) -> None:
        """Validate a payment status change.

        Raises:
            InvalidTransitionError: If the order is cancelled or the edge is illegal
            ForbiddenError: If a customer attempts anything but waiting_payment on
                their own order
        """
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransitionError(
                f"Order {order.id} is cancelled; payment status is frozen",
                current_status=order.payment_status.value,
                requested_status=target.value,
                user_message="Pesanan sudah dibatalkan.",
                order_id=order.id,
            )

        if not validate_payment_status_transition(order.payment_status, target):
            raise InvalidTransitionError(
                f"Invalid payment transition from {order.payment_status.value} "
                f"to {target.value}",
                current_status=order.payment_status.value,
                requested_status=target.value,
                user_message="Status pembayaran tidak dapat diubah.",
                order_id=order.id,
                allowed_transitions=sorted(
                    s.value for s in get_allowed_payment_transitions(order.payment_status)
                ),
            )

        if actor.is_customer:
            if actor.id != order.user_id:
                raise ForbiddenError(
                    f"User {actor.id} does not own order {order.id}",
                    order_id=order.id,
                )
            if target != PaymentStatus.WAITING_PAYMENT:
                raise ForbiddenError(
                    f"Customers may not set payment status {target.value}",
                    order_id=order.id,
                    requested_status=target.value,
                )

    def apply_payment_transition(
        self,
        order: Order,
        target: PaymentStatus,
        actor: Actor,
        note: str = "",
        paid_at: Optional[datetime] = None,
    ) -> Order:
        """Validate, then set the payment status and append one history entry."""
        self.validate_payment_transition(order, target, actor)

        old_status = order.payment_status
        order.payment_status = target
        if target == PaymentStatus.PAID:
            order.paid_at = paid_at or datetime.now(timezone.utc)

        order.status_history.append(
            StatusHistoryEntry.record(
                order.status.value,
                note or f"Status pembayaran: {target.display_name}",
                actor,
                payment_status=target.value,
            )
        )

        logger.info(
            "Payment transition applied",
            order_id=order.id,
            transition=f"{old_status.value}->{target.value}",
            actor_id=actor.id,
        )
        return order

    def get_allowed_transitions(self, order: Order, actor: Actor) -> Set[OrderStatus]:
        """Targets the actor could request from the order's current status."""
        return {
            target
            for target in get_allowed_order_transitions(order.status)
            if actor.role in self._edge_roles[(order.status, target)]
        }

    # Transition Guards

    def _guard_payment_settled(self, order: Order) -> bool:
        """Processing starts once payment is captured, or immediately for COD."""
        return order.payment_status == PaymentStatus.PAID or self.is_cod(order)

    # Side Effects

    def _effect_shipped(self, order: Order, now: datetime) -> None:
        if not order.tracking_number:
            order.tracking_number = generate_tracking_number()

    def _effect_delivered(self, order: Order, now: datetime) -> None:
        order.delivered_at = now
        if self.is_cod(order) and order.payment_status != PaymentStatus.PAID:
            order.payment_status = PaymentStatus.PAID
            order.paid_at = now

    def _effect_cancelled(self, order: Order, now: datetime) -> None:
        order.cancelled_at = now
