"""
Catalog read model consulted at checkout to snapshot line items.
"""

from decimal import Decimal
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from storefront.core.logging import get_logger
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)

PRODUCT_PREFIX = "product:"


class Product(BaseModel):
    """Product as seen by checkout."""

    id: str
    name: str
    price: Decimal = Field(ge=0)
    stock: int = Field(default=0, ge=0)


class CatalogLookup(Protocol):
    async def get_product(self, product_id: str) -> Optional[Product]:
        ...


class KeyValueCatalog:
    """Catalog backed by ``product:{id}`` documents."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get_product(self, product_id: str) -> Optional[Product]:
        data = await self.store.get(f"{PRODUCT_PREFIX}{product_id}")
        return Product.model_validate(data) if data is not None else None

    async def put_product(self, product: Product) -> Product:
        """Write a product document; catalog management itself lives elsewhere."""
        await self.store.set(f"{PRODUCT_PREFIX}{product.id}", product.model_dump(mode="json"))
        logger.debug("Product stored", product_id=product.id)
        return product
