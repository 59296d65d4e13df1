"""
Voucher Pydantic schemas.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.services.vouchers.models import Voucher


class VoucherValidateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(..., min_length=1, max_length=50)
    order_amount: Decimal = Field(..., ge=0, description="Order subtotal before discount")


class VoucherValidateResponse(BaseModel):
    valid: bool
    discount: Decimal = Decimal("0")
    error: Optional[str] = None
    voucher: Optional[Voucher] = None


class PersonalVoucherRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(..., min_length=1, max_length=128, description="Customer receiving the voucher")
