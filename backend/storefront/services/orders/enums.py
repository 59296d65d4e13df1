"""Order and payment status enums with their transition tables.

Each table is the single source of truth for which statuses may follow which;
role checks and guards live in the state machine.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Fulfilment status of an order.

    Valid transitions:
    - PENDING -> WAITING_PAYMENT, CANCELLED
    - WAITING_PAYMENT -> PROCESSING, CANCELLED
    - PROCESSING -> PACKED, CANCELLED
    - PACKED -> SHIPPED, CANCELLED (admin/system only)
    - SHIPPED -> DELIVERED, CANCELLED (admin/system only)
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    WAITING_PAYMENT = "waiting_payment"
    PROCESSING = "processing"
    PACKED = "packed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state (DELIVERED, CANCELLED)."""
        return self in {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def customer_can_cancel(self) -> bool:
        """Customers may cancel only before the order is packed."""
        return self in {
            OrderStatus.PENDING,
            OrderStatus.WAITING_PAYMENT,
            OrderStatus.PROCESSING,
        }

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return ORDER_STATUS_LABELS[self]


class PaymentStatus(str, Enum):
    """Payment status of an order, independent of fulfilment.

    Valid transitions:
    - PENDING -> WAITING_PAYMENT, PAID, FAILED, EXPIRED
    - WAITING_PAYMENT -> PAID, FAILED, EXPIRED
    - FAILED -> WAITING_PAYMENT, PAID
    - PAID -> REFUNDED
    - EXPIRED -> (terminal state)
    - REFUNDED -> (terminal state)
    """

    PENDING = "pending"
    WAITING_PAYMENT = "waiting_payment"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        """Convert string to PaymentStatus enum.

        Raises:
            ValueError: If value is not a valid payment status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid payment status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_captured(self) -> bool:
        """Money was received (and possibly already returned)."""
        return self in {PaymentStatus.PAID, PaymentStatus.REFUNDED}

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


ORDER_STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Menunggu",
    OrderStatus.WAITING_PAYMENT: "Menunggu Pembayaran",
    OrderStatus.PROCESSING: "Diproses",
    OrderStatus.PACKED: "Dikemas",
    OrderStatus.SHIPPED: "Dikirim",
    OrderStatus.DELIVERED: "Selesai",
    OrderStatus.CANCELLED: "Dibatalkan",
}


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.WAITING_PAYMENT,
        OrderStatus.CANCELLED,
    },
    OrderStatus.WAITING_PAYMENT: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.PACKED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PACKED: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.WAITING_PAYMENT,
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
    },
    PaymentStatus.WAITING_PAYMENT: {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
    },
    PaymentStatus.FAILED: {
        PaymentStatus.WAITING_PAYMENT,
        PaymentStatus.PAID,
    },
    PaymentStatus.PAID: {
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.EXPIRED: set(),  # Terminal
    PaymentStatus.REFUNDED: set(),  # Terminal
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Validate if order status transition is allowed by the table."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def validate_payment_status_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Validate if payment status transition is allowed by the table."""
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status.

    Args:
        current: Current order status

    Returns:
        Set of allowed next statuses
    """
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()


def get_allowed_payment_transitions(current: PaymentStatus) -> Set[PaymentStatus]:
    """Get all allowed transitions from current payment status."""
    return PAYMENT_STATUS_TRANSITIONS.get(current, set()).copy()
