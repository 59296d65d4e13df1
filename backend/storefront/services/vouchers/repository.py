"""
Voucher data access over the key-value store.

Keys:
    voucher:{id}          voucher document
    voucher_code:{CODE}   upper-cased code -> voucher id
"""

from typing import Optional

from storefront.core.logging import get_logger
from storefront.services.vouchers.models import Voucher
from storefront.storage.base import KeyValueStore
from storefront.storage.versioned import save_versioned

logger = get_logger(__name__)

VOUCHER_PREFIX = "voucher:"
VOUCHER_CODE_PREFIX = "voucher_code:"


class VoucherRepository:
    """Repository for voucher documents and the code index."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def voucher_key(voucher_id: str) -> str:
        return f"{VOUCHER_PREFIX}{voucher_id}"

    @staticmethod
    def code_key(code: str) -> str:
        return f"{VOUCHER_CODE_PREFIX}{code.strip().upper()}"

    async def get(self, voucher_id: str) -> Optional[Voucher]:
        data = await self.store.get(self.voucher_key(voucher_id))
        return Voucher.model_validate(data) if data is not None else None

    async def get_by_code(self, code: str) -> Optional[Voucher]:
        """Case-insensitive lookup through the code index."""
        voucher_id = await self.store.get(self.code_key(code))
        if voucher_id is None:
            return None
        return await self.get(voucher_id)

    async def list_all(self) -> list[Voucher]:
        documents = await self.store.get_by_prefix(VOUCHER_PREFIX)
        vouchers = [Voucher.model_validate(data) for data in documents.values()]
        return sorted(vouchers, key=lambda v: v.created_at)

    async def insert(self, voucher: Voucher) -> Voucher:
        """Write a new voucher and its code index entry."""
        await save_versioned(self.store, self.voucher_key(voucher.id), voucher)
        await self.store.set(self.code_key(voucher.code), voucher.id)
        logger.info("Voucher created", voucher_id=voucher.id, code=voucher.code)
        return voucher

    async def save(self, voucher: Voucher) -> Voucher:
        """
        Persist a modified voucher read at ``voucher.version``.

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        return await save_versioned(self.store, self.voucher_key(voucher.id), voucher)
