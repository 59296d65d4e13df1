"""
Refund data access over the key-value store.

Keys:
    refund:{id}                 refund document
    refunds:order:{order_id}    refund id (one refund per order)
    refunds:user:{user_id}      list of the user's refund ids
"""

from typing import Optional

from storefront.core.errors import NotFoundError
from storefront.core.logging import get_logger
from storefront.services.refunds.enums import RefundStatus
from storefront.services.refunds.models import Refund
from storefront.storage.base import KeyValueStore
from storefront.storage.versioned import save_versioned

logger = get_logger(__name__)

REFUND_PREFIX = "refund:"
ORDER_REFUND_PREFIX = "refunds:order:"
USER_REFUNDS_PREFIX = "refunds:user:"


class RefundRepository:
    """Repository for refund documents and their order/user indexes."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def refund_key(refund_id: str) -> str:
        return f"{REFUND_PREFIX}{refund_id}"

    @staticmethod
    def order_index_key(order_id: str) -> str:
        return f"{ORDER_REFUND_PREFIX}{order_id}"

    @staticmethod
    def user_index_key(user_id: str) -> str:
        return f"{USER_REFUNDS_PREFIX}{user_id}"

    async def get(self, refund_id: str) -> Optional[Refund]:
        data = await self.store.get(self.refund_key(refund_id))
        return Refund.model_validate(data) if data is not None else None

    async def get_or_raise(self, refund_id: str) -> Refund:
        """
        Raises:
            NotFoundError: If the refund does not exist
        """
        refund = await self.get(refund_id)
        if refund is None:
            raise NotFoundError(
                f"Refund {refund_id} not found",
                user_message="Refund tidak ditemukan.",
                refund_id=refund_id,
            )
        return refund

    async def get_refund_id_for_order(self, order_id: str) -> Optional[str]:
        return await self.store.get(self.order_index_key(order_id))

    async def get_by_order(self, order_id: str) -> Optional[Refund]:
        refund_id = await self.get_refund_id_for_order(order_id)
        if refund_id is None:
            return None
        return await self.get(refund_id)

    async def insert(self, refund: Refund) -> Refund:
        """
        Write a new refund, then claim the order index and add the user index.

        An order index that already names another refund is left alone. The
        caller must re-check the order index afterwards to detect a concurrent
        claim.
        """
        await save_versioned(self.store, self.refund_key(refund.id), refund)
        if await self.get_refund_id_for_order(refund.order_id) is None:
            await self.store.set(self.order_index_key(refund.order_id), refund.id)

        index_key = self.user_index_key(refund.user_id)
        refund_ids = await self.store.get(index_key) or []
        if refund.id not in refund_ids:
            refund_ids.append(refund.id)
            await self.store.set(index_key, refund_ids)

        logger.info(
            "Refund created",
            refund_id=refund.id,
            order_id=refund.order_id,
            user_id=refund.user_id,
            type=refund.type.value,
            amount=str(refund.amount),
        )
        return refund

    async def save(self, refund: Refund) -> Refund:
        """
        Persist a refund read at ``refund.version``.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        await save_versioned(self.store, self.refund_key(refund.id), refund)
        return refund

    async def remove(self, refund: Refund) -> None:
        """Delete a refund and every index entry that still points at it."""
        await self.store.delete(self.refund_key(refund.id))

        if await self.get_refund_id_for_order(refund.order_id) == refund.id:
            await self.store.delete(self.order_index_key(refund.order_id))

        index_key = self.user_index_key(refund.user_id)
        refund_ids = await self.store.get(index_key) or []
        if refund.id in refund_ids:
            refund_ids.remove(refund.id)
            await self.store.set(index_key, refund_ids)

        logger.warning("Refund removed", refund_id=refund.id, order_id=refund.order_id)

    async def restore_order_index(self, order_id: str, refund_id: str) -> None:
        """Point the order index back at the refund the order references."""
        if await self.get_refund_id_for_order(order_id) != refund_id:
            await self.store.set(self.order_index_key(order_id), refund_id)
            logger.info("Refund order index restored", order_id=order_id, refund_id=refund_id)

    async def list_for_user(self, user_id: str) -> list[Refund]:
        """Refunds of one user, newest first."""
        refund_ids = await self.store.get(self.user_index_key(user_id)) or []
        refunds = []
        for refund_id in refund_ids:
            refund = await self.get(refund_id)
            if refund is not None:
                refunds.append(refund)
        return sorted(refunds, key=lambda r: r.created_at, reverse=True)

    async def list_all(self, status: Optional[RefundStatus] = None) -> list[Refund]:
        """All refunds, newest first, optionally filtered by status."""
        documents = await self.store.get_by_prefix(REFUND_PREFIX)
        refunds = [Refund.model_validate(data) for data in documents.values()]
        if status is not None:
            refunds = [r for r in refunds if r.status == status]
        return sorted(refunds, key=lambda r: r.created_at, reverse=True)
