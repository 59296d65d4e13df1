"""
Voucher validation and redemption.
"""

from storefront.services.vouchers.enums import DiscountType, VoucherStatus
from storefront.services.vouchers.models import Voucher, VoucherStats, VoucherValidation
from storefront.services.vouchers.service import VoucherService
from storefront.services.vouchers.validator import VoucherValidator, compute_discount

__all__ = [
    "DiscountType",
    "Voucher",
    "VoucherService",
    "VoucherStats",
    "VoucherStatus",
    "VoucherValidation",
    "VoucherValidator",
    "compute_discount",
]
