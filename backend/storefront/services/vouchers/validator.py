"""
Voucher eligibility rules and discount computation.

Validation never mutates a voucher; usage counters only change through
:class:`storefront.services.vouchers.service.VoucherService`.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from storefront.core.logging import get_logger
from storefront.services.vouchers.enums import DiscountType, VoucherStatus
from storefront.services.vouchers.models import Voucher, VoucherValidation
from storefront.services.vouchers.repository import VoucherRepository

logger = get_logger(__name__)


def format_rupiah(amount: Decimal) -> str:
    """Format an amount the way the storefront displays prices (Rp 100.000)."""
    whole = int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return "Rp " + f"{whole:,}".replace(",", ".")


def compute_discount(voucher: Voucher, subtotal: Decimal) -> Decimal:
    """
    Compute the discount a voucher grants on a subtotal.

    Percentage discounts are rounded half-up to whole currency units and capped
    by ``max_discount``. The result never exceeds the subtotal.

    Args:
        voucher: Voucher being applied
        subtotal: Order subtotal before shipping

    Returns:
        Discount amount, between zero and ``subtotal``
    """
    if subtotal <= 0:
        return Decimal("0")

    if voucher.discount_type == DiscountType.PERCENTAGE:
        discount = (subtotal * voucher.discount_value / Decimal("100")).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        if voucher.max_discount is not None:
            discount = min(discount, voucher.max_discount)
    else:
        discount = voucher.discount_value

    return min(discount, subtotal)


def usage_failure(voucher: Voucher, user_id: str) -> Optional[str]:
    """Reason the voucher has no use left for ``user_id``, or None."""
    if voucher.is_public:
        if voucher.max_usage is not None and voucher.usage_count >= voucher.max_usage:
            return "Voucher sudah mencapai batas penggunaan"
        if user_id in voucher.used_by_user_ids:
            return "Anda sudah menggunakan voucher ini"
    elif voucher.status == VoucherStatus.USED:
        return "Voucher sudah digunakan"
    return None


class VoucherValidator:
    """Evaluates a voucher code against a user and an order subtotal."""

    def __init__(
        self,
        repository: VoucherRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repository = repository
        self._clock = clock

    async def validate(
        self,
        code: str,
        user_id: str,
        order_amount: Decimal,
    ) -> VoucherValidation:
        """
        Validate a voucher code, returning the first failing reason.

        Checks run in order: existence, active status, expiry, ownership,
        minimum purchase and usage exhaustion.

        Args:
            code: Voucher code (case-insensitive)
            user_id: User applying the voucher
            order_amount: Order subtotal the voucher would apply to

        Returns:
            VoucherValidation with the voucher and discount when valid
        """
        voucher = await self.repository.get_by_code(code) if code and code.strip() else None
        error = self._first_failure(voucher, user_id, order_amount)

        if error is not None:
            logger.info(
                "Voucher rejected",
                code=code,
                user_id=user_id,
                reason=error,
            )
            return VoucherValidation(valid=False, voucher=voucher, error=error)

        return VoucherValidation(
            valid=True,
            voucher=voucher,
            discount=compute_discount(voucher, order_amount),
        )

    def _first_failure(
        self,
        voucher: Optional[Voucher],
        user_id: str,
        order_amount: Decimal,
    ) -> Optional[str]:
        if voucher is None:
            return "Voucher tidak ditemukan"

        if voucher.status in (VoucherStatus.EXPIRED, VoucherStatus.DISABLED):
            return "Voucher tidak aktif"

        if voucher.expires_at is not None and self._clock() > voucher.expires_at:
            return "Voucher sudah kedaluwarsa"

        if voucher.user_id is not None and voucher.user_id != user_id:
            return "Voucher ini tidak dapat digunakan oleh akun Anda"

        if voucher.min_purchase is not None and order_amount < voucher.min_purchase:
            return (
                f"Minimum pembelian {format_rupiah(voucher.min_purchase)} "
                "untuk menggunakan voucher ini"
            )

        return usage_failure(voucher, user_id)
