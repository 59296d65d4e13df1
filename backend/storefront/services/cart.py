"""
Shopping cart store. Checkout only needs to read and clear carts.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from storefront.core.logging import get_logger
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)


class Cart(BaseModel):
    user_id: str
    items: list[CartItem] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CartStore:
    """Carts stored under ``cart:{user_id}``."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(user_id: str) -> str:
        return f"cart:{user_id}"

    async def get(self, user_id: str) -> Optional[Cart]:
        data = await self.store.get(self._key(user_id))
        return Cart.model_validate(data) if data is not None else None

    async def save(self, cart: Cart) -> Cart:
        cart.updated_at = datetime.now(timezone.utc)
        await self.store.set(self._key(cart.user_id), cart.model_dump(mode="json"))
        return cart

    async def clear(self, user_id: str) -> None:
        removed = await self.store.delete(self._key(user_id))
        logger.info("Cart cleared", user_id=user_id, existed=removed)
