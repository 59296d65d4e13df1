"""Voucher discount and status enums."""

from enum import Enum


class DiscountType(str, Enum):
    """How a voucher's discount value is applied to the subtotal."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class VoucherStatus(str, Enum):
    """Voucher availability.

    Valid transitions:
    - ACTIVE -> USED (personal voucher redeemed)
    - ACTIVE -> EXPIRED (public voucher reached its usage cap)
    - USED, EXPIRED -> ACTIVE (redemption reverted)
    - DISABLED is set administratively and never left by the engine
    """

    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    DISABLED = "disabled"

    @classmethod
    def from_string(cls, value: str) -> "VoucherStatus":
        """Convert string to VoucherStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid voucher status: {value}. "
                f"Valid values are: {valid_values}"
            )

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()
