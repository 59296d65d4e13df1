"""
Voucher documents and validation results.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.services.vouchers.enums import DiscountType, VoucherStatus


class VoucherRedemption(BaseModel):
    """One recorded use of a voucher by an order."""

    order_id: str
    user_id: str
    redeemed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Voucher(BaseModel):
    """
    Discount voucher.

    Personal vouchers carry ``user_id`` and are single use. Public vouchers
    have no owner, an optional aggregate ``max_usage`` cap and may be redeemed
    once per user.
    """

    model_config = ConfigDict(use_enum_values=False)

    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    min_purchase: Optional[Decimal] = Field(default=None, ge=0)
    max_discount: Optional[Decimal] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = None
    status: VoucherStatus = VoucherStatus.ACTIVE
    user_id: Optional[str] = None
    max_usage: Optional[int] = Field(default=None, ge=1)
    usage_count: int = Field(default=0, ge=0)
    used_by_user_ids: list[str] = Field(default_factory=list)
    redemptions: list[VoucherRedemption] = Field(default_factory=list)
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 0

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        code = v.strip().upper()
        if not code:
            raise ValueError("Voucher code must not be empty")
        return code

    @property
    def is_public(self) -> bool:
        return self.user_id is None

    def find_redemption(self, order_id: str) -> Optional[VoucherRedemption]:
        return next((r for r in self.redemptions if r.order_id == order_id), None)


class VoucherValidation(BaseModel):
    """Result of validating a voucher code for a user and subtotal."""

    valid: bool
    voucher: Optional[Voucher] = None
    discount: Decimal = Decimal("0")
    error: Optional[str] = None


class VoucherStats(BaseModel):
    """Aggregate voucher counters for the admin console.

    ``used`` counts redeemed personal vouchers plus every public redemption.
    """

    total: int = 0
    active: int = 0
    used: int = 0
    expired: int = 0
    disabled: int = 0
