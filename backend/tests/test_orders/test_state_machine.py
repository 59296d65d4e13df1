"""
Test suite for OrderStateMachine.

Tests cover the transition table, role checks, the payment guard, side
effects and the payment status table.
"""

from decimal import Decimal

import pytest

from storefront.core.config import Settings
from storefront.core.errors import ForbiddenError, InvalidTransitionError
from storefront.core.security import Actor, ActorRole
from storefront.services.orders.enums import (
    ORDER_STATUS_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
    validate_payment_status_transition,
)
from storefront.services.orders.models import (
    Order,
    OrderItem,
    ShippingAddress,
    ShippingMethod,
)
from storefront.services.orders.state_machine import OrderStateMachine


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def state_machine() -> OrderStateMachine:
    return OrderStateMachine(Settings(environment="test"))


def make_order(
    status: OrderStatus = OrderStatus.WAITING_PAYMENT,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    payment_method: str = "bank_transfer",
    user_id: str = "user-1",
) -> Order:
    """Build an order document without going through checkout."""
    return Order(
        id="ORD-20260101120000-ABC123",
        user_id=user_id,
        items=[
            OrderItem(
                product_id="prod-shirt",
                product_name="Kaos Polos",
                quantity=2,
                unit_price=Decimal("50000"),
            )
        ],
        subtotal=Decimal("100000"),
        shipping_cost=Decimal("15000"),
        total_amount=Decimal("115000"),
        shipping_address=ShippingAddress(
            recipient_name="Budi", phone="0812", address="Jl. Merdeka 1"
        ),
        shipping_method=ShippingMethod(id="jne-reg", name="JNE Reguler", price=Decimal("15000")),
        payment_method=payment_method,
        payment_status=payment_status,
        status=status,
    )


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestOrderTransitionTable:
    """Test the order status table itself."""

    def test_terminal_states_have_no_transitions(self) -> None:
        assert ORDER_STATUS_TRANSITIONS[OrderStatus.DELIVERED] == set()
        assert ORDER_STATUS_TRANSITIONS[OrderStatus.CANCELLED] == set()
        assert OrderStatus.DELIVERED.is_terminal()
        assert OrderStatus.CANCELLED.is_terminal()

    def test_cancel_reachable_from_every_non_terminal_state(self) -> None:
        for status in OrderStatus:
            if not status.is_terminal():
                assert validate_order_status_transition(status, OrderStatus.CANCELLED)

    def test_no_skipping(self) -> None:
        assert not validate_order_status_transition(OrderStatus.PROCESSING, OrderStatus.SHIPPED)
        assert not validate_order_status_transition(
            OrderStatus.WAITING_PAYMENT, OrderStatus.DELIVERED
        )

    def test_allowed_transitions_returns_copy(self) -> None:
        allowed = get_allowed_order_transitions(OrderStatus.PROCESSING)
        allowed.add(OrderStatus.DELIVERED)

        assert OrderStatus.DELIVERED not in ORDER_STATUS_TRANSITIONS[OrderStatus.PROCESSING]

    def test_from_string(self) -> None:
        assert OrderStatus.from_string("PACKED") == OrderStatus.PACKED
        with pytest.raises(ValueError, match="Invalid order status"):
            OrderStatus.from_string("returned")

    def test_payment_table(self) -> None:
        assert validate_payment_status_transition(PaymentStatus.PENDING, PaymentStatus.PAID)
        assert validate_payment_status_transition(PaymentStatus.FAILED, PaymentStatus.WAITING_PAYMENT)
        assert validate_payment_status_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)
        assert not validate_payment_status_transition(PaymentStatus.PAID, PaymentStatus.FAILED)
        assert not validate_payment_status_transition(PaymentStatus.EXPIRED, PaymentStatus.PAID)
        assert not validate_payment_status_transition(PaymentStatus.REFUNDED, PaymentStatus.PAID)


# ============================================================================
# Validation Tests
# ============================================================================


class TestValidateTransition:
    """Test ordering and outcome of transition checks."""

    def test_illegal_edge_is_invalid_transition(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PAID)

        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.validate_transition(order, OrderStatus.SHIPPED, admin)

        assert exc_info.value.current_status == "processing"
        assert exc_info.value.requested_status == "shipped"
        assert exc_info.value.context["allowed_transitions"] == ["cancelled", "packed"]

    def test_illegal_edge_checked_before_role(
        self, state_machine: OrderStateMachine, customer: Actor
    ) -> None:
        order = make_order(status=OrderStatus.DELIVERED)

        with pytest.raises(InvalidTransitionError):
            state_machine.validate_transition(order, OrderStatus.PACKED, customer)

    def test_cancel_of_terminal_order_has_friendly_message(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(status=OrderStatus.DELIVERED)

        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.validate_transition(order, OrderStatus.CANCELLED, admin)

        assert exc_info.value.user_message == "Pesanan ini tidak dapat dibatalkan lagi."

    def test_customer_cannot_advance_fulfilment(
        self, state_machine: OrderStateMachine, customer: Actor
    ) -> None:
        order = make_order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PAID)

        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.PACKED, customer)

    def test_system_cannot_pack(
        self, state_machine: OrderStateMachine, system_actor: Actor
    ) -> None:
        order = make_order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PAID)

        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.PACKED, system_actor)

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PENDING, OrderStatus.WAITING_PAYMENT, OrderStatus.PROCESSING],
    )
    def test_owner_may_cancel_before_packing(
        self, state_machine: OrderStateMachine, customer: Actor, status: OrderStatus
    ) -> None:
        state_machine.validate_transition(make_order(status=status), OrderStatus.CANCELLED, customer)

    @pytest.mark.parametrize("status", [OrderStatus.PACKED, OrderStatus.SHIPPED])
    def test_only_staff_may_cancel_after_packing(
        self,
        state_machine: OrderStateMachine,
        customer: Actor,
        admin: Actor,
        system_actor: Actor,
        status: OrderStatus,
    ) -> None:
        order = make_order(status=status, payment_status=PaymentStatus.PAID)

        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.CANCELLED, customer)
        state_machine.validate_transition(order, OrderStatus.CANCELLED, admin)
        state_machine.validate_transition(order, OrderStatus.CANCELLED, system_actor)

    def test_customer_cannot_cancel_someone_elses_order(
        self, state_machine: OrderStateMachine, other_customer: Actor
    ) -> None:
        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(make_order(), OrderStatus.CANCELLED, other_customer)

    def test_processing_requires_payment(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(payment_status=PaymentStatus.WAITING_PAYMENT)

        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.validate_transition(order, OrderStatus.PROCESSING, admin)

        assert exc_info.value.context["guard_failed"] is True
        assert exc_info.value.user_message == "Pesanan belum dibayar."

    def test_cod_skips_payment_guard(self, state_machine: OrderStateMachine, admin: Actor) -> None:
        order = make_order(payment_method="COD")

        state_machine.validate_transition(order, OrderStatus.PROCESSING, admin)

    def test_allowed_transitions_filtered_by_role(
        self, state_machine: OrderStateMachine, customer: Actor, admin: Actor
    ) -> None:
        order = make_order(status=OrderStatus.PACKED, payment_status=PaymentStatus.PAID)

        assert state_machine.get_allowed_transitions(order, customer) == set()
        assert state_machine.get_allowed_transitions(order, admin) == {
            OrderStatus.SHIPPED,
            OrderStatus.CANCELLED,
        }


# ============================================================================
# Apply Transition Tests
# ============================================================================


class TestApplyTransition:
    """Test in-document effects and history."""

    def test_appends_exactly_one_history_entry(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(payment_status=PaymentStatus.PAID)
        before = list(order.status_history)

        state_machine.apply_transition(order, OrderStatus.PROCESSING, admin, "Mulai diproses")

        assert order.status == OrderStatus.PROCESSING
        assert len(order.status_history) == len(before) + 1
        assert order.status_history[: len(before)] == before
        entry = order.status_history[-1]
        assert entry.status == "processing"
        assert entry.note == "Mulai diproses"
        assert entry.actor_id == admin.id
        assert entry.actor_role == "admin"
        assert entry.payment_status == "paid"

    def test_failed_transition_leaves_order_untouched(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PAID)
        snapshot = order.model_dump()

        with pytest.raises(InvalidTransitionError):
            state_machine.apply_transition(order, OrderStatus.DELIVERED, admin, "")

        assert order.model_dump() == snapshot

    def test_shipping_generates_tracking_number(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(status=OrderStatus.PACKED, payment_status=PaymentStatus.PAID)

        state_machine.apply_transition(order, OrderStatus.SHIPPED, admin, "")

        assert order.tracking_number.startswith("TRK-")

    def test_delivery_marks_cod_paid(self, state_machine: OrderStateMachine, admin: Actor) -> None:
        order = make_order(status=OrderStatus.SHIPPED, payment_method="cod")

        state_machine.apply_transition(order, OrderStatus.DELIVERED, admin, "")

        assert order.payment_status == PaymentStatus.PAID
        assert order.paid_at is not None
        assert order.delivered_at is not None

    def test_cancel_sets_cancelled_at(self, state_machine: OrderStateMachine, customer: Actor) -> None:
        order = make_order()

        state_machine.apply_transition(order, OrderStatus.CANCELLED, customer, "Berubah pikiran")

        assert order.cancelled_at is not None
        assert order.status_history[-1].note == "Berubah pikiran"


# ============================================================================
# Payment Transition Tests
# ============================================================================


class TestPaymentTransitions:
    """Test payment status validation."""

    def test_cancelled_order_payment_is_frozen(
        self, state_machine: OrderStateMachine, system_actor: Actor
    ) -> None:
        order = make_order(status=OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            state_machine.validate_payment_transition(order, PaymentStatus.PAID, system_actor)

    def test_customer_may_only_request_waiting_payment(
        self, state_machine: OrderStateMachine, customer: Actor
    ) -> None:
        order = make_order()

        state_machine.validate_payment_transition(order, PaymentStatus.WAITING_PAYMENT, customer)
        with pytest.raises(ForbiddenError):
            state_machine.validate_payment_transition(order, PaymentStatus.PAID, customer)

    def test_customer_cannot_touch_other_orders(
        self, state_machine: OrderStateMachine, other_customer: Actor
    ) -> None:
        with pytest.raises(ForbiddenError):
            state_machine.validate_payment_transition(
                make_order(), PaymentStatus.WAITING_PAYMENT, other_customer
            )

    def test_apply_paid_sets_paid_at_and_history(
        self, state_machine: OrderStateMachine, system_actor: Actor
    ) -> None:
        order = make_order()

        state_machine.apply_payment_transition(order, PaymentStatus.PAID, system_actor)

        assert order.payment_status == PaymentStatus.PAID
        assert order.paid_at is not None
        assert order.status == OrderStatus.WAITING_PAYMENT
        assert order.status_history[-1].payment_status == "paid"
        assert order.status_history[-1].actor_role == ActorRole.SYSTEM.value
