"""
In-app notification inbox.

Lifecycle transitions publish notifications through :class:`NotificationSink`;
the KV-backed implementation stores them under
``notification:{user_id}:{notification_id}`` so a user's inbox is a single
prefix query.
"""

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from storefront.core.errors import NotFoundError
from storefront.core.logging import get_logger
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)


class NotificationType(str, Enum):
    ORDER = "order"
    PAYMENT = "payment"
    REFUND = "refund"
    VOUCHER = "voucher"
    SYSTEM = "system"


class NotificationMessage(BaseModel):
    """Payload handed to a sink."""

    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.ORDER
    order_id: Optional[str] = None
    refund_id: Optional[str] = None


class Notification(NotificationMessage):
    """Stored inbox entry."""

    id: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationSink(Protocol):
    async def publish(self, message: NotificationMessage) -> Notification:
        ...


class NotificationService:
    """KV-backed notification inbox."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(user_id: str, notification_id: str) -> str:
        return f"notification:{user_id}:{notification_id}"

    async def publish(self, message: NotificationMessage) -> Notification:
        created_at = datetime.now(timezone.utc)
        notification = Notification(
            id=f"notif-{int(created_at.timestamp() * 1000)}-{secrets.token_hex(4)}",
            created_at=created_at,
            **message.model_dump(),
        )
        await self.store.set(
            self._key(notification.user_id, notification.id),
            notification.model_dump(mode="json"),
        )
        logger.info(
            "Notification published",
            user_id=notification.user_id,
            notification_id=notification.id,
            type=notification.type.value,
            order_id=notification.order_id,
            refund_id=notification.refund_id,
        )
        return notification

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Newest first."""
        documents = await self.store.get_by_prefix(f"notification:{user_id}:")
        notifications = [Notification.model_validate(d) for d in documents.values()]
        if unread_only:
            notifications = [n for n in notifications if not n.is_read]
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)

    async def mark_read(self, user_id: str, notification_id: str) -> Notification:
        key = self._key(user_id, notification_id)
        data = await self.store.get(key)
        if data is None:
            raise NotFoundError(
                f"Notification {notification_id} not found",
                user_message="Notifikasi tidak ditemukan.",
                notification_id=notification_id,
            )

        notification = Notification.model_validate(data)
        if not notification.is_read:
            notification.is_read = True
            await self.store.set(key, notification.model_dump(mode="json"))
        return notification
