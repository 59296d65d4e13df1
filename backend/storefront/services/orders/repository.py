"""
Order data access over the key-value store.

Keys:
    order:{id}              order document
    orders:user:{user_id}   list of the user's order ids, oldest first
"""

from typing import Optional

from storefront.core.errors import NotFoundError
from storefront.core.logging import get_logger
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.models import Order
from storefront.storage.base import KeyValueStore
from storefront.storage.versioned import save_versioned

logger = get_logger(__name__)

ORDER_PREFIX = "order:"
USER_ORDERS_PREFIX = "orders:user:"


class OrderRepository:
    """
    Repository for order documents.

    Every write goes through :func:`save_versioned`, so a caller that re-read
    the order before validating detects any concurrent transition.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def order_key(order_id: str) -> str:
        return f"{ORDER_PREFIX}{order_id}"

    @staticmethod
    def user_index_key(user_id: str) -> str:
        return f"{USER_ORDERS_PREFIX}{user_id}"

    async def get(self, order_id: str) -> Optional[Order]:
        data = await self.store.get(self.order_key(order_id))
        return Order.model_validate(data) if data is not None else None

    async def get_or_raise(self, order_id: str) -> Order:
        """
        Raises:
            NotFoundError: If the order does not exist
        """
        order = await self.get(order_id)
        if order is None:
            raise NotFoundError(
                f"Order {order_id} not found",
                user_message="Pesanan tidak ditemukan.",
                order_id=order_id,
            )
        return order

    async def insert(self, order: Order) -> Order:
        """Write a new order and append it to the owner's index."""
        await save_versioned(self.store, self.order_key(order.id), order)

        index_key = self.user_index_key(order.user_id)
        order_ids = await self.store.get(index_key) or []
        if order.id not in order_ids:
            order_ids.append(order.id)
            await self.store.set(index_key, order_ids)

        logger.info(
            "Order created",
            order_id=order.id,
            user_id=order.user_id,
            total_amount=str(order.total_amount),
        )
        return order

    async def save(self, order: Order) -> Order:
        """
        Persist an order read at ``order.version``.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        await save_versioned(self.store, self.order_key(order.id), order)
        logger.debug("Order saved", order_id=order.id, version=order.version)
        return order

    async def list_for_user(self, user_id: str) -> list[Order]:
        """Orders of one user, newest first."""
        order_ids = await self.store.get(self.user_index_key(user_id)) or []
        orders = []
        for order_id in order_ids:
            order = await self.get(order_id)
            if order is not None:
                orders.append(order)
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def list_all(self, status: Optional[OrderStatus] = None) -> list[Order]:
        """All orders, newest first, optionally filtered by status."""
        documents = await self.store.get_by_prefix(ORDER_PREFIX)
        orders = [Order.model_validate(data) for data in documents.values()]
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)
