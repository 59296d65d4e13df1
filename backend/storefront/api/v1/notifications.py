"""
Notification inbox endpoints.
"""

from fastapi import APIRouter, Query

from storefront.api.deps import CurrentActor, Services
from storefront.services.notifications import Notification

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[Notification], summary="List own notifications")
async def list_notifications(
    actor: CurrentActor,
    services: Services,
    unread_only: bool = Query(False),
) -> list[Notification]:
    return await services.notifications.list_for_user(actor.id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=Notification, summary="Mark as read")
async def mark_notification_read(
    notification_id: str,
    actor: CurrentActor,
    services: Services,
) -> Notification:
    return await services.notifications.mark_read(actor.id, notification_id)
