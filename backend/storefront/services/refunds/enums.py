"""Refund status enums and the refund transition table."""

from enum import Enum
from typing import Dict, Set


class RefundType(str, Enum):
    """Why a refund exists.

    USER_REQUEST: the customer asked for their money back. When raised against
    a delivered order the item has to be shipped back first.
    ADMIN_CANCEL: a paid order was cancelled by an admin or the system.
    """

    USER_REQUEST = "user_request"
    ADMIN_CANCEL = "admin_cancel"


class RefundStatus(str, Enum):
    """Refund lifecycle status.

    Valid transitions:
    - PENDING -> APPROVED, REJECTED (returnable refunds)
    - PENDING -> REFUNDED, COMPLETED (refunds without a physical return)
    - APPROVED -> SHIPPING
    - SHIPPING -> RECEIVED
    - RECEIVED -> REFUNDED
    - REFUNDED, COMPLETED, REJECTED -> (terminal states)
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SHIPPING = "shipping"
    RECEIVED = "received"
    REFUNDED = "refunded"
    COMPLETED = "completed"

    @classmethod
    def from_string(cls, value: str) -> "RefundStatus":
        """Convert string to RefundStatus enum.

        Raises:
            ValueError: If value is not a valid refund status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid refund status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        return self in {RefundStatus.REFUNDED, RefundStatus.COMPLETED, RefundStatus.REJECTED}

    def is_paid_out(self) -> bool:
        return self in {RefundStatus.REFUNDED, RefundStatus.COMPLETED}

    @property
    def display_name(self) -> str:
        return REFUND_STATUS_LABELS[self]


class ReturnShippingStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    RECEIVED = "received"


REFUND_STATUS_LABELS: Dict[RefundStatus, str] = {
    RefundStatus.PENDING: "Menunggu Peninjauan",
    RefundStatus.APPROVED: "Disetujui",
    RefundStatus.REJECTED: "Ditolak",
    RefundStatus.SHIPPING: "Barang Dikirim",
    RefundStatus.RECEIVED: "Barang Diterima",
    RefundStatus.REFUNDED: "Dana Dikembalikan",
    RefundStatus.COMPLETED: "Selesai",
}

# State transition validation rules
REFUND_STATUS_TRANSITIONS: Dict[RefundStatus, Set[RefundStatus]] = {
    RefundStatus.PENDING: {
        RefundStatus.APPROVED,
        RefundStatus.REJECTED,
        RefundStatus.REFUNDED,
        RefundStatus.COMPLETED,
    },
    RefundStatus.APPROVED: {RefundStatus.SHIPPING},
    RefundStatus.SHIPPING: {RefundStatus.RECEIVED},
    RefundStatus.RECEIVED: {RefundStatus.REFUNDED},
    RefundStatus.REFUNDED: set(),  # Terminal
    RefundStatus.COMPLETED: set(),  # Terminal
    RefundStatus.REJECTED: set(),  # Terminal
}


def validate_refund_status_transition(current: RefundStatus, new: RefundStatus) -> bool:
    """Validate if refund status transition is allowed by the table."""
    return new in REFUND_STATUS_TRANSITIONS.get(current, set())


def get_allowed_refund_transitions(current: RefundStatus) -> Set[RefundStatus]:
    """Get all allowed transitions from current refund status."""
    return REFUND_STATUS_TRANSITIONS.get(current, set()).copy()
