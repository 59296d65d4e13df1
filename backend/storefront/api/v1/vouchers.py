"""
Voucher API endpoints.
"""

from fastapi import APIRouter, status

from storefront.api.deps import AdminActor, CurrentActor, Services
from storefront.core.logging import get_logger
from storefront.schemas.vouchers import (
    PersonalVoucherRequest,
    VoucherValidateRequest,
    VoucherValidateResponse,
)
from storefront.services.vouchers.models import Voucher, VoucherStats

logger = get_logger(__name__)

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.post("/validate", response_model=VoucherValidateResponse, summary="Validate voucher")
async def validate_voucher(
    body: VoucherValidateRequest,
    actor: CurrentActor,
    services: Services,
) -> VoucherValidateResponse:
    """Check a code against the caller and a subtotal. Counters are not touched."""
    validation = await services.vouchers.validate(body.code, actor.id, body.order_amount)
    return VoucherValidateResponse(
        valid=validation.valid,
        discount=validation.discount,
        error=validation.error,
        voucher=validation.voucher,
    )


@router.get("/mine", response_model=list[Voucher], summary="Vouchers the caller can use")
async def list_my_vouchers(actor: CurrentActor, services: Services) -> list[Voucher]:
    return await services.vouchers.list_user_vouchers(actor.id)


@router.get("", response_model=list[Voucher], summary="List vouchers")
async def list_vouchers(actor: AdminActor, services: Services) -> list[Voucher]:
    return await services.vouchers.list_vouchers()


@router.get("/stats", response_model=VoucherStats, summary="Voucher statistics")
async def voucher_stats(actor: AdminActor, services: Services) -> VoucherStats:
    return await services.vouchers.get_stats()


@router.post(
    "/personal",
    response_model=Voucher,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a personal voucher",
)
async def issue_personal_voucher(
    body: PersonalVoucherRequest,
    actor: AdminActor,
    services: Services,
) -> Voucher:
    """Give a customer a single-use welcome voucher valid for 30 days."""
    voucher = await services.vouchers.create_personal_voucher(body.user_id)
    logger.info("Personal voucher issued by admin", admin_id=actor.id, user_id=body.user_id)
    return voucher
