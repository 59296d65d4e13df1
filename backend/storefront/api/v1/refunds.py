"""
Refund API endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from storefront.api.deps import AdminActor, CurrentActor, ServiceContainer, Services
from storefront.schemas.refunds import (
    AddEvidenceRequest,
    ConfirmShipmentRequest,
    EvidenceUploadRequest,
    RefundCreateRequest,
    RefundStatusUpdate,
    RefundWatchResponse,
)
from storefront.services.evidence import Evidence
from storefront.services.refunds.enums import RefundStatus
from storefront.services.refunds.models import Refund, RefundStats
from storefront.sync.watcher import wait_for_change

router = APIRouter(prefix="/refunds", tags=["refunds"])


def _present(services: ServiceContainer, refund: Refund) -> Refund:
    """Refund as handed to callers, with freshly signed evidence links."""
    return refund.model_copy(
        update={"evidence": [services.evidence.present(e) for e in refund.evidence]}
    )


@router.post("", response_model=Refund, status_code=status.HTTP_201_CREATED, summary="Request refund")
async def create_refund(
    body: RefundCreateRequest,
    actor: CurrentActor,
    services: Services,
) -> Refund:
    """
    Open a refund for an order.

    Raises:
        DuplicateRefundError: 422 if the order already has a refund
        InvariantViolationError: 422 if the order is not refund-eligible
    """
    result = await services.refunds.create_refund(
        body.order_id,
        actor,
        type=body.type,
        reason=body.reason,
        description=body.description,
        amount=body.amount,
        evidence_ids=body.evidence_ids,
    )
    await services.dispatcher.dispatch(result.events)
    return _present(services, result.record)


@router.post(
    "/evidence",
    response_model=Evidence,
    status_code=status.HTTP_201_CREATED,
    summary="Upload refund evidence",
)
async def upload_evidence(
    body: EvidenceUploadRequest,
    actor: CurrentActor,
    services: Services,
) -> Evidence:
    """Store an image or video; its ``id`` is what refund requests attach."""
    return await services.evidence.upload(actor, body.file_name, body.content_type, body.decode())


@router.get("", response_model=list[Refund], summary="List all refunds")
async def list_refunds(
    actor: AdminActor,
    services: Services,
    refund_status: Optional[RefundStatus] = Query(None, alias="status"),
) -> list[Refund]:
    refunds = await services.refunds.list_refunds(actor, refund_status)
    return [_present(services, refund) for refund in refunds]


@router.get("/mine", response_model=list[Refund], summary="List own refunds")
async def list_my_refunds(actor: CurrentActor, services: Services) -> list[Refund]:
    return [_present(services, refund) for refund in await services.refunds.list_user_refunds(actor)]


@router.get("/stats", response_model=RefundStats, summary="Refund statistics")
async def refund_stats(actor: AdminActor, services: Services) -> RefundStats:
    return await services.refunds.get_refund_stats(actor)


@router.get("/order/{order_id}", response_model=Refund, summary="Get refund of an order")
async def get_refund_by_order(order_id: str, actor: CurrentActor, services: Services) -> Refund:
    return _present(services, await services.refunds.get_refund_by_order(order_id, actor))


@router.get("/{refund_id}", response_model=Refund, summary="Get refund")
async def get_refund(refund_id: str, actor: CurrentActor, services: Services) -> Refund:
    return _present(services, await services.refunds.get_refund(refund_id, actor))


@router.get("/{refund_id}/watch", response_model=RefundWatchResponse, summary="Wait for changes")
async def watch_refund(
    refund_id: str,
    actor: CurrentActor,
    services: Services,
    since: int = Query(0, ge=0),
    timeout: Optional[float] = Query(None, gt=0),
) -> RefundWatchResponse:
    refund = await services.refunds.get_refund(refund_id, actor)
    if refund.version > since:
        return RefundWatchResponse(
            changed=True, version=refund.version, refund=_present(services, refund)
        )

    settings = services.settings
    change = await wait_for_change(
        lambda: services.refunds.repository.get(refund_id),
        since_version=since,
        interval=settings.poll_interval_seconds,
        timeout=min(timeout or settings.watch_timeout_seconds, settings.watch_timeout_seconds),
    )
    if change is None or change.snapshot is None:
        return RefundWatchResponse(
            changed=False, version=refund.version, refund=_present(services, refund)
        )

    latest = Refund.model_validate(change.snapshot)
    return RefundWatchResponse(
        changed=True, version=latest.version, refund=_present(services, latest)
    )


@router.put("/{refund_id}/status", response_model=Refund, summary="Update refund status")
async def update_refund_status(
    refund_id: str,
    body: RefundStatusUpdate,
    actor: CurrentActor,
    services: Services,
) -> Refund:
    """Role checks happen in the refund state machine, per transition."""
    result = await services.refunds.update_refund_status(
        refund_id,
        body.status,
        actor,
        note=body.note,
        extra=body.to_extra(),
    )
    await services.dispatcher.dispatch(result.events)
    return _present(services, result.record)


@router.post(
    "/{refund_id}/confirm-shipment",
    response_model=Refund,
    summary="Confirm return shipment",
)
async def confirm_shipment(
    refund_id: str,
    body: ConfirmShipmentRequest,
    actor: CurrentActor,
    services: Services,
) -> Refund:
    result = await services.refunds.confirm_shipment(
        refund_id,
        actor,
        note=body.note,
        tracking_number=body.tracking_number,
    )
    await services.dispatcher.dispatch(result.events)
    return _present(services, result.record)


@router.post("/{refund_id}/evidence", response_model=Refund, summary="Attach evidence")
async def add_evidence(
    refund_id: str,
    body: AddEvidenceRequest,
    actor: CurrentActor,
    services: Services,
) -> Refund:
    refund = await services.refunds.add_evidence(refund_id, actor, body.evidence_ids)
    return _present(services, refund)
