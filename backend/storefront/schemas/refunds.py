"""
Refund Pydantic schemas for API request/response validation.
"""

import base64
import binascii
import math
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.core.config import get_settings
from storefront.core.errors import ValidationError
from storefront.services.refunds.enums import RefundStatus, RefundType
from storefront.services.refunds.models import Refund, RefundTransitionExtra, ReturnShipping


class RefundCreateRequest(BaseModel):
    """Refund request for an order."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    order_id: str = Field(..., min_length=1)
    type: RefundType = RefundType.USER_REQUEST
    reason: str = Field(..., max_length=500, description="Why the refund is requested")
    description: str = Field("", max_length=2000)
    amount: Optional[Decimal] = Field(
        None,
        description="Refund amount; defaults to the order total",
    )
    evidence_ids: list[str] = Field(
        default_factory=list,
        max_length=20,
        description="Ids returned by POST /refunds/evidence",
    )


class RefundStatusUpdate(BaseModel):
    """Refund transition request with the fields merged alongside it."""

    status: RefundStatus
    note: str = Field("", max_length=500)
    courier: Optional[str] = Field(None, max_length=100)
    tracking_number: Optional[str] = Field(None, max_length=100)
    admin_note: Optional[str] = Field(None, max_length=1000)
    refund_method: Optional[str] = Field(None, max_length=100)
    return_shipping: Optional[ReturnShipping] = None

    def to_extra(self) -> RefundTransitionExtra:
        return RefundTransitionExtra(
            courier=self.courier,
            tracking_number=self.tracking_number,
            admin_note=self.admin_note,
            refund_method=self.refund_method,
            return_shipping=self.return_shipping,
        )


class ConfirmShipmentRequest(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=100)
    note: str = Field("", max_length=500)


def max_encoded_length(max_bytes: int) -> int:
    """Length of the base64 text encoding a file of ``max_bytes``."""
    return 4 * math.ceil(max_bytes / 3)


def _strip_data_url(data: str) -> str:
    return data.split(",", 1)[1] if data.startswith("data:") else data


class EvidenceUploadRequest(BaseModel):
    """Evidence file sent as base64."""

    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=3, max_length=100)
    data: str = Field(..., min_length=1, description="Base64 encoded file content")

    @field_validator("data")
    @classmethod
    def bound_encoded_size(cls, v: str) -> str:
        limit = max_encoded_length(get_settings().evidence_max_bytes)
        if len(_strip_data_url(v)) > limit:
            raise ValueError(f"Evidence data longer than {limit} base64 characters")
        return v

    def decode(self) -> bytes:
        """
        Raises:
            ValidationError: If ``data`` is not valid base64
        """
        try:
            return base64.b64decode(_strip_data_url(self.data), validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError(
                "Evidence data is not valid base64",
                user_message="Format file bukti tidak valid.",
                file_name=self.file_name,
            )


class AddEvidenceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    evidence_ids: list[str] = Field(..., min_length=1, max_length=20)


class RefundWatchResponse(BaseModel):
    changed: bool
    version: int
    refund: Refund
