"""
Voucher service: validation, idempotent redemption and reversal, seeding.
"""

import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from storefront.core.errors import (
    ConcurrentModificationError,
    InvariantViolationError,
    NotFoundError,
)
from storefront.core.logging import get_logger
from storefront.services.vouchers.enums import DiscountType, VoucherStatus
from storefront.services.vouchers.models import (
    Voucher,
    VoucherRedemption,
    VoucherStats,
    VoucherValidation,
)
from storefront.services.vouchers.repository import VoucherRepository
from storefront.services.vouchers.validator import VoucherValidator, usage_failure
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_MAX_WRITE_ATTEMPTS = 3

PUBLIC_VOUCHERS: tuple[dict, ...] = (
    {
        "id": "voucher-public-welcome10",
        "code": "WELCOME10",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "min_purchase": Decimal("100000"),
        "max_discount": Decimal("50000"),
        "max_usage": 1000,
        "description": "Diskon 10% untuk pembelian pertama",
    },
    {
        "id": "voucher-public-hemat20",
        "code": "HEMAT20",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("20"),
        "min_purchase": Decimal("200000"),
        "max_discount": Decimal("100000"),
        "max_usage": 1000,
        "description": "Hemat 20% untuk belanja minimal Rp 200.000",
    },
    {
        "id": "voucher-public-gratis30",
        "code": "GRATIS30",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("30"),
        "min_purchase": Decimal("500000"),
        "max_discount": Decimal("200000"),
        "max_usage": 1000,
        "description": "Potongan 30% untuk belanja minimal Rp 500.000",
    },
)


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


class VoucherService:
    """
    Voucher operations used by checkout, the lifecycle dispatcher and admins.

    Redemption and reversal are idempotent per ``(voucher_id, order_id)``: the
    voucher's ``redemptions`` ledger records which orders consumed it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repository = VoucherRepository(store)
        self.validator = VoucherValidator(self.repository, clock=clock)
        self._clock = clock

    async def validate(
        self,
        code: str,
        user_id: str,
        order_amount: Decimal,
    ) -> VoucherValidation:
        """Validate a code without changing any counters."""
        return await self.validator.validate(code, user_id, order_amount)

    async def get_voucher(self, voucher_id: str) -> Voucher:
        voucher = await self.repository.get(voucher_id)
        if voucher is None:
            raise NotFoundError(
                f"Voucher {voucher_id} not found",
                user_message="Voucher tidak ditemukan.",
                voucher_id=voucher_id,
            )
        return voucher

    async def _update(
        self,
        voucher_id: str,
        mutate: Callable[[Voucher], bool],
    ) -> Voucher:
        """
        Re-read, mutate and save a voucher, retrying on concurrent writes.

        ``mutate`` returns False when there is nothing to write.
        """
        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            voucher = await self.get_voucher(voucher_id)
            if not mutate(voucher):
                return voucher
            try:
                return await self.repository.save(voucher)
            except ConcurrentModificationError:
                if attempt == _MAX_WRITE_ATTEMPTS:
                    raise
                logger.warning(
                    "Retrying voucher write after concurrent update",
                    voucher_id=voucher_id,
                    attempt=attempt,
                )
        raise AssertionError("unreachable")

    async def redeem(self, voucher_id: str, user_id: str, order_id: str) -> Voucher:
        """
        Consume a voucher for an order.

        Checkout calls this before the order is stored, so an unpaid order
        already holds its voucher. Personal vouchers become ``used``. Public
        vouchers count the use, record the user and expire once ``max_usage``
        is reached. Redeeming the same voucher for the same order again changes
        nothing.

        Args:
            voucher_id: Voucher to consume
            user_id: Customer who placed the order
            order_id: Order the voucher was applied to

        Returns:
            Updated voucher

        Raises:
            NotFoundError: If the voucher does not exist
            InvariantViolationError: If the voucher is used up or the user
                already redeemed it for another order
        """

        def apply(voucher: Voucher) -> bool:
            if voucher.find_redemption(order_id) is not None:
                logger.info(
                    "Voucher already redeemed for order",
                    voucher_id=voucher_id,
                    order_id=order_id,
                )
                return False

            refusal = usage_failure(voucher, user_id)
            if refusal is not None:
                raise InvariantViolationError(
                    f"Voucher {voucher.code} has no use left for {user_id}",
                    user_message=refusal,
                    voucher_id=voucher_id,
                    user_id=user_id,
                    order_id=order_id,
                )

            voucher.redemptions.append(VoucherRedemption(order_id=order_id, user_id=user_id))
            if voucher.is_public:
                voucher.usage_count += 1
                voucher.used_by_user_ids.append(user_id)
                if voucher.max_usage is not None and voucher.usage_count >= voucher.max_usage:
                    voucher.status = VoucherStatus.EXPIRED
            else:
                voucher.status = VoucherStatus.USED
            return True

        voucher = await self._update(voucher_id, apply)
        logger.info(
            "Voucher redeemed",
            voucher_id=voucher_id,
            code=voucher.code,
            order_id=order_id,
            usage_count=voucher.usage_count,
            status=voucher.status.value,
        )
        return voucher

    async def revert(self, voucher_id: str, order_id: str) -> Voucher:
        """
        Give back a voucher consumed by an order.

        A voucher with no redemption recorded for the order is left untouched,
        so reverting twice (or reverting an unredeemed voucher) is harmless.

        Raises:
            NotFoundError: If the voucher does not exist
        """

        def apply(voucher: Voucher) -> bool:
            redemption = voucher.find_redemption(order_id)
            if redemption is None:
                return False

            voucher.redemptions.remove(redemption)
            if voucher.is_public:
                voucher.usage_count = max(0, voucher.usage_count - 1)
                if not any(r.user_id == redemption.user_id for r in voucher.redemptions):
                    voucher.used_by_user_ids = [
                        uid for uid in voucher.used_by_user_ids if uid != redemption.user_id
                    ]
                if (
                    voucher.status == VoucherStatus.EXPIRED
                    and voucher.max_usage is not None
                    and voucher.usage_count < voucher.max_usage
                ):
                    voucher.status = VoucherStatus.ACTIVE
            elif voucher.status == VoucherStatus.USED:
                voucher.status = VoucherStatus.ACTIVE
            return True

        voucher = await self._update(voucher_id, apply)
        logger.info(
            "Voucher usage reverted",
            voucher_id=voucher_id,
            order_id=order_id,
            status=voucher.status.value,
        )
        return voucher

    async def create_voucher(self, **fields) -> Voucher:
        """Create a voucher from keyword fields; ``id`` is generated if absent."""
        fields.setdefault("id", f"voucher-{int(time.time() * 1000)}-{_random_token(9).lower()}")
        voucher = Voucher(**fields)
        if await self.repository.get_by_code(voucher.code) is not None:
            raise InvariantViolationError(
                f"Voucher code {voucher.code} already exists",
                user_message="Kode voucher sudah digunakan.",
                code=voucher.code,
            )
        return await self.repository.insert(voucher)

    async def create_personal_voucher(self, user_id: str) -> Voucher:
        """Issue a single-use welcome voucher valid for 30 days."""
        voucher = await self.create_voucher(
            code=f"WELCOME{_random_token(6)}",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            min_purchase=Decimal("50000"),
            max_discount=Decimal("50000"),
            expires_at=self._clock() + timedelta(days=30),
            user_id=user_id,
            description="Voucher selamat datang",
        )
        logger.info("Personal voucher issued", user_id=user_id, code=voucher.code)
        return voucher

    async def seed_public_vouchers(self) -> list[Voucher]:
        """Create the built-in public vouchers that do not exist yet."""
        created = []
        for template in PUBLIC_VOUCHERS:
            if await self.repository.get_by_code(template["code"]) is not None:
                continue
            created.append(await self.create_voucher(**template))

        if created:
            logger.info("Public vouchers seeded", codes=[v.code for v in created])
        return created

    async def list_vouchers(self) -> list[Voucher]:
        return await self.repository.list_all()

    async def list_user_vouchers(self, user_id: str) -> list[Voucher]:
        """Personal vouchers of a user plus public vouchers they can still use."""
        return [
            voucher
            for voucher in await self.repository.list_all()
            if voucher.status == VoucherStatus.ACTIVE
            and (
                voucher.user_id == user_id
                or (voucher.is_public and user_id not in voucher.used_by_user_ids)
            )
        ]

    async def get_stats(self) -> VoucherStats:
        vouchers = await self.repository.list_all()
        stats = VoucherStats(total=len(vouchers))
        for voucher in vouchers:
            if voucher.status == VoucherStatus.ACTIVE:
                stats.active += 1
            elif voucher.status == VoucherStatus.EXPIRED:
                stats.expired += 1
            elif voucher.status == VoucherStatus.DISABLED:
                stats.disabled += 1

            if voucher.is_public:
                stats.used += voucher.usage_count
            elif voucher.status == VoucherStatus.USED:
                stats.used += 1
        return stats
