"""
Order service orchestrating checkout, payment and fulfilment transitions.

This module implements the OrderService class. Every operation re-reads the
order, validates the request through :class:`OrderStateMachine` and writes the
order back with a version check. Checkout redeems the voucher before the order
is stored, so unpaid orders hold theirs. Other side effects (notifications,
cart clearing, voucher reversal) are returned as lifecycle events rather than
performed here.

Cancelling a paid order is a saga across two aggregates: the refund is created
first, then the order is written as cancelled together with its back-reference.
A failed order write discards the refund again, and a cancelled order that
still lacks its refund is repaired on retry or by the reconciliation scan.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    ConcurrentModificationError,
    InvariantViolationError,
    MaintenanceModeError,
    NotFoundError,
    StorefrontError,
    ValidationError,
)
from storefront.core.logging import get_logger
from storefront.core.security import Actor, require_access, require_privileged
from storefront.services.catalog import CatalogLookup, KeyValueCatalog
from storefront.services.lifecycle.events import (
    ClearCart,
    LifecycleEvent,
    LifecycleResult,
    NotifyUser,
    RedeemVoucher,
    RevertVoucher,
)
from storefront.services.lifecycle.history import StatusHistoryEntry
from storefront.services.lifecycle.identifiers import generate_order_id
from storefront.services.maintenance import MaintenanceGate
from storefront.services.notifications import NotificationType
from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.models import (
    CheckoutLine,
    Order,
    OrderItem,
    ShippingAddress,
    ShippingMethod,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine
from storefront.services.refunds.models import Refund
from storefront.services.refunds.service import RefundService
from storefront.services.vouchers.service import VoucherService
from storefront.services.vouchers.validator import format_rupiah
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)

_MAX_WRITE_ATTEMPTS = 3

SHIPPING_METHOD_NAMES: dict[str, str] = {
    "jne-reg": "JNE Reguler",
    "jne-yes": "JNE YES",
    "sicepat-reg": "SiCepat Reguler",
    "pickup": "Ambil di Toko",
}

_STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.WAITING_PAYMENT: "Pesanan {order_id} menunggu pembayaran.",
    OrderStatus.PROCESSING: "Pesanan {order_id} sedang diproses.",
    OrderStatus.PACKED: "Pesanan {order_id} sedang dikemas.",
    OrderStatus.SHIPPED: "Pesanan {order_id} telah dikirim dengan nomor resi {tracking_number}.",
    OrderStatus.DELIVERED: "Pesanan {order_id} telah diterima. Terima kasih telah berbelanja!",
}


class OrderService:
    """
    Order lifecycle engine.

    Attributes:
        repository: Order repository for data access
        state_machine: Role table, guards and effects of order transitions
        refunds: Refund service used by the cancel saga
        catalog: Price and stock lookup for checkout
        vouchers: Voucher validation at checkout
        maintenance: Gate refusing checkout during maintenance windows
    """

    def __init__(
        self,
        store: KeyValueStore,
        refunds: Optional[RefundService] = None,
        catalog: Optional[CatalogLookup] = None,
        vouchers: Optional[VoucherService] = None,
        maintenance: Optional[MaintenanceGate] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = OrderRepository(store)
        self.state_machine = OrderStateMachine(self.settings)
        self.refunds = refunds or RefundService(store, self.settings)
        self.catalog = catalog or KeyValueCatalog(store)
        self.vouchers = vouchers or VoucherService(store)
        self.maintenance = maintenance or MaintenanceGate(store)

        logger.info("Order service initialized")

    # Checkout

    async def create_order(
        self,
        actor: Actor,
        items: list[CheckoutLine],
        shipping_address: ShippingAddress,
        shipping_method: str,
        payment_method: str,
        voucher_code: Optional[str] = None,
    ) -> LifecycleResult[Order]:
        """
        Place an order from catalog items.

        Args:
            actor: Customer placing the order
            items: Requested products and quantities
            shipping_address: Delivery address
            shipping_method: Identifier of a configured shipping rate
            payment_method: Payment method identifier, e.g. ``bank_transfer``
            voucher_code: Optional voucher code

        Returns:
            The new order awaiting payment, plus notification and cart
            clearing events. A voucher is already redeemed for the order.

        Raises:
            MaintenanceModeError: If the store is under maintenance
            ValidationError: If items, shipping, payment or voucher are invalid,
                or the voucher was used up meanwhile
            NotFoundError: If a product does not exist
        """
        if await self.maintenance.is_under_maintenance():
            raise MaintenanceModeError("Checkout refused during maintenance", user_id=actor.id)

        order_items = await self._snapshot_items(items)
        subtotal = sum((item.line_total for item in order_items), Decimal("0"))
        method = self._resolve_shipping(shipping_method)

        payment_method = (payment_method or "").strip()
        if not payment_method:
            raise ValidationError(
                "Payment method is required",
                user_message="Metode pembayaran wajib dipilih.",
            )

        discount = Decimal("0")
        voucher_id = None
        normalized_code = None
        if voucher_code and voucher_code.strip():
            validation = await self.vouchers.validate(voucher_code, actor.id, subtotal)
            if not validation.valid:
                raise ValidationError(
                    f"Voucher {voucher_code} rejected: {validation.error}",
                    user_message=validation.error,
                    voucher_code=voucher_code,
                )
            discount = validation.discount
            voucher_id = validation.voucher.id
            normalized_code = validation.voucher.code

        order = Order(
            id=generate_order_id(),
            user_id=actor.id,
            items=order_items,
            subtotal=subtotal,
            shipping_cost=method.price,
            voucher_code=normalized_code,
            voucher_id=voucher_id,
            discount=discount,
            total_amount=subtotal + method.price - discount,
            shipping_address=shipping_address,
            shipping_method=method,
            payment_method=payment_method,
            status_history=[
                StatusHistoryEntry.record(
                    OrderStatus.WAITING_PAYMENT.value,
                    "Pesanan dibuat",
                    actor,
                    payment_status=PaymentStatus.PENDING.value,
                )
            ],
        )
        if order.voucher_id:
            await self._reserve_voucher(order)
        try:
            await self.repository.insert(order)
        except Exception:
            if order.voucher_id:
                await self.vouchers.revert(order.voucher_id, order.id)
            raise

        events: list[LifecycleEvent] = [
            NotifyUser(
                user_id=order.user_id,
                title="Pesanan Dibuat",
                message=(
                    f"Pesanan {order.id} sebesar {format_rupiah(order.total_amount)} "
                    "berhasil dibuat."
                ),
                order_id=order.id,
            ),
            ClearCart(user_id=order.user_id),
        ]

        logger.info(
            "Checkout completed",
            order_id=order.id,
            user_id=order.user_id,
            item_count=len(order.items),
            subtotal=str(order.subtotal),
            discount=str(order.discount),
            total_amount=str(order.total_amount),
            voucher_code=order.voucher_code,
        )
        return LifecycleResult(order, events)

    async def _snapshot_items(self, lines: list[CheckoutLine]) -> list[OrderItem]:
        if not lines:
            raise ValidationError(
                "Order has no items",
                user_message="Keranjang belanja kosong.",
            )

        order_items = []
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError(
                    f"Quantity for {line.product_id} must be positive",
                    user_message="Jumlah produk harus lebih dari nol.",
                    product_id=line.product_id,
                    quantity=line.quantity,
                )

            product = await self.catalog.get_product(line.product_id)
            if product is None:
                raise NotFoundError(
                    f"Product {line.product_id} not found",
                    user_message="Produk tidak ditemukan.",
                    product_id=line.product_id,
                )
            if product.stock < line.quantity:
                raise ValidationError(
                    f"Insufficient stock for {product.id}",
                    user_message=f"Stok {product.name} tidak mencukupi.",
                    product_id=product.id,
                    requested=line.quantity,
                    available=product.stock,
                )

            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=line.quantity,
                    unit_price=product.price,
                )
            )
        return order_items

    async def _reserve_voucher(self, order: Order) -> None:
        try:
            await self.vouchers.redeem(order.voucher_id, order.user_id, order.id)
        except InvariantViolationError as e:
            raise ValidationError(
                f"Voucher {order.voucher_code} rejected: {e.message}",
                user_message=e.user_message,
                voucher_code=order.voucher_code,
            ) from e

    def _resolve_shipping(self, shipping_method: str) -> ShippingMethod:
        price = self.settings.shipping_rates.get(shipping_method)
        if price is None:
            raise ValidationError(
                f"Unknown shipping method {shipping_method}",
                user_message="Metode pengiriman tidak tersedia.",
                shipping_method=shipping_method,
            )
        return ShippingMethod(
            id=shipping_method,
            name=SHIPPING_METHOD_NAMES.get(shipping_method, shipping_method),
            price=price,
        )

    # Payment

    async def set_payment_status(
        self,
        order_id: str,
        new_payment_status: PaymentStatus,
        actor: Actor,
        paid_at: Optional[datetime] = None,
        note: str = "",
    ) -> LifecycleResult[Order]:
        """
        Record a payment status change, independent of fulfilment.

        Setting the current value again is a no-op so payment webhooks can be
        retried safely.

        Raises:
            NotFoundError: If the order does not exist
            InvalidTransitionError: If the order is cancelled or the edge is illegal
            ForbiddenError: If the actor may not set this status
            ConcurrentModificationError: If the order changed meanwhile
        """
        order = await self.repository.get_or_raise(order_id)

        if order.status != OrderStatus.CANCELLED and order.payment_status == new_payment_status:
            require_access(actor, order.user_id, "order")
            logger.info(
                "Payment status unchanged",
                order_id=order_id,
                payment_status=new_payment_status.value,
            )
            return LifecycleResult(order)

        self.state_machine.apply_payment_transition(order, new_payment_status, actor, note, paid_at)
        await self.repository.save(order)

        events: list[LifecycleEvent] = []
        if new_payment_status == PaymentStatus.PAID:
            # No-op unless a failed payment released the voucher.
            if order.voucher_id:
                events.append(
                    RedeemVoucher(
                        voucher_id=order.voucher_id,
                        user_id=order.user_id,
                        order_id=order.id,
                    )
                )
            events.append(
                NotifyUser(
                    user_id=order.user_id,
                    title="Pembayaran Berhasil",
                    message=f"Pembayaran untuk pesanan {order.id} telah kami terima.",
                    type=NotificationType.PAYMENT,
                    order_id=order.id,
                )
            )
        elif new_payment_status in (PaymentStatus.FAILED, PaymentStatus.EXPIRED):
            if order.voucher_id and self._should_revert_voucher(order):
                events.append(RevertVoucher(voucher_id=order.voucher_id, order_id=order.id))
            events.append(
                NotifyUser(
                    user_id=order.user_id,
                    title=(
                        "Pembayaran Gagal"
                        if new_payment_status == PaymentStatus.FAILED
                        else "Pembayaran Kedaluwarsa"
                    ),
                    message=f"Pembayaran untuk pesanan {order.id} tidak berhasil.",
                    type=NotificationType.PAYMENT,
                    order_id=order.id,
                )
            )

        return LifecycleResult(order, events)

    # Fulfilment

    async def advance_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        actor: Actor,
        note: str = "",
    ) -> LifecycleResult[Order]:
        """
        Move an order along its fulfilment chain.

        Cancellation requests are routed through :meth:`cancel_order`.

        Raises:
            NotFoundError: If the order does not exist
            InvalidTransitionError: If the edge is illegal or a guard fails
            ForbiddenError: If the actor lacks the role or ownership
            ConcurrentModificationError: If the order changed meanwhile
        """
        if new_status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, actor, note)

        order = await self.repository.get_or_raise(order_id)
        self.state_machine.apply_transition(order, new_status, actor, note)
        await self.repository.save(order)

        template = _STATUS_MESSAGES.get(new_status)
        events: list[LifecycleEvent] = []
        if template is not None:
            events.append(
                NotifyUser(
                    user_id=order.user_id,
                    title=f"Pesanan {new_status.display_name}",
                    message=template.format(
                        order_id=order.id,
                        tracking_number=order.tracking_number,
                    ),
                    order_id=order.id,
                )
            )
        return LifecycleResult(order, events)

    async def cancel_order(
        self,
        order_id: str,
        actor: Actor,
        reason: str = "",
    ) -> LifecycleResult[Order]:
        """
        Cancel an order, opening a refund first when payment was captured.

        Calling this again on a cancelled order is safe: it only creates the
        refund that a previous attempt failed to attach.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the actor may not cancel this order
            InvalidTransitionError: If the order can no longer be cancelled
            ConcurrentModificationError: If the order changed meanwhile; any
                refund created by this attempt has been discarded
        """
        order = await self.repository.get_or_raise(order_id)
        require_access(actor, order.user_id, "order")

        if order.status == OrderStatus.CANCELLED:
            refund = await self._repair_missing_refund(order, actor, reason)
            events = [self._refund_opened_notification(refund)] if refund else []
            return LifecycleResult(order, events)

        self.state_machine.validate_transition(order, OrderStatus.CANCELLED, actor)

        refund: Optional[Refund] = None
        created = False
        if self._refund_owed(order):
            refund, created = await self.refunds.open_cancellation_refund(order, actor, reason)

        order.cancel_reason = reason or None
        self.state_machine.apply_transition(
            order,
            OrderStatus.CANCELLED,
            actor,
            reason or "Pesanan dibatalkan",
        )
        if refund is not None:
            order.has_refund = True
            order.refund_id = refund.id

        try:
            await self.repository.save(order)
        except Exception:
            if created:
                logger.error(
                    "Order cancellation write failed, discarding refund",
                    order_id=order_id,
                    refund_id=refund.id,
                )
                await self.refunds.discard_refund(refund)
            raise

        logger.info(
            "Order cancelled",
            order_id=order_id,
            actor_id=actor.id,
            actor_role=actor.role.value,
            refund_id=order.refund_id,
        )

        events: list[LifecycleEvent] = [
            NotifyUser(
                user_id=order.user_id,
                title="Pesanan Dibatalkan",
                message=f"Pesanan {order.id} telah dibatalkan.",
                order_id=order.id,
            )
        ]
        if created:
            events.append(self._refund_opened_notification(refund))
        if order.voucher_id and self._should_revert_voucher(order):
            events.append(RevertVoucher(voucher_id=order.voucher_id, order_id=order.id))
        return LifecycleResult(order, events)

    async def reconcile_cancelled_orders(
        self,
        actor: Optional[Actor] = None,
    ) -> LifecycleResult[list[Refund]]:
        """
        Create refunds missing from cancelled paid orders.

        Failures on one order are logged and the scan moves on.

        Returns:
            The refunds created by this scan and their notification events
        """
        actor = actor or Actor.system("reconciler")
        require_privileged(actor, "reconcile cancelled orders")

        created: list[Refund] = []
        events: list[LifecycleEvent] = []
        for order in await self.repository.list_all(OrderStatus.CANCELLED):
            if not self._refund_owed(order) or order.has_refund:
                continue
            try:
                refund = await self._repair_missing_refund(order, actor, order.cancel_reason or "")
            except StorefrontError as e:
                logger.error(
                    "Failed to reconcile cancelled order",
                    order_id=order.id,
                    error=e.message,
                    error_type=type(e).__name__,
                )
                continue
            if refund is not None:
                created.append(refund)
                events.append(self._refund_opened_notification(refund))

        logger.info("Cancelled order reconciliation finished", refunds_created=len(created))
        return LifecycleResult(created, events)

    async def _repair_missing_refund(
        self,
        order: Order,
        actor: Actor,
        reason: str,
    ) -> Optional[Refund]:
        """Attach the refund owed by an already cancelled order; returns it if new."""
        if not self._refund_owed(order) or order.has_refund:
            return None

        refund, created = await self.refunds.open_cancellation_refund(order, actor, reason)
        order.has_refund = True
        order.refund_id = refund.id
        try:
            await self.repository.save(order)
        except Exception:
            if created:
                await self.refunds.discard_refund(refund)
            raise

        logger.info(
            "Missing cancellation refund attached",
            order_id=order.id,
            refund_id=refund.id,
            created=created,
        )
        return refund if created else None

    async def mark_refunded(self, order_id: str, refund_id: str) -> LifecycleResult[Order]:
        """
        Record that the order's money went back to the customer.

        Applies to cancelled orders too. Marking an already refunded order
        again changes nothing.
        """
        actor = Actor.system("refunds")
        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            order = await self.repository.get_or_raise(order_id)
            if order.payment_status == PaymentStatus.REFUNDED:
                return LifecycleResult(order)

            now = datetime.now(timezone.utc)
            order.payment_status = PaymentStatus.REFUNDED
            order.refunded_at = now
            order.has_refund = True
            order.refund_id = order.refund_id or refund_id
            order.status_history.append(
                StatusHistoryEntry.record(
                    order.status.value,
                    "Dana telah dikembalikan",
                    actor,
                    payment_status=PaymentStatus.REFUNDED.value,
                )
            )
            try:
                await self.repository.save(order)
            except ConcurrentModificationError:
                if attempt == _MAX_WRITE_ATTEMPTS:
                    raise
                logger.warning(
                    "Retrying refund mark after concurrent update",
                    order_id=order_id,
                    attempt=attempt,
                )
                continue

            logger.info("Order marked refunded", order_id=order_id, refund_id=refund_id)
            return LifecycleResult(order)

        raise AssertionError("unreachable")

    # Queries

    async def get_order(self, order_id: str, actor: Actor) -> Order:
        order = await self.repository.get_or_raise(order_id)
        require_access(actor, order.user_id, "order")
        return order

    async def list_user_orders(self, actor: Actor) -> list[Order]:
        return await self.repository.list_for_user(actor.id)

    async def list_orders(
        self,
        actor: Actor,
        status: Optional[OrderStatus] = None,
    ) -> list[Order]:
        require_privileged(actor, "list all orders")
        return await self.repository.list_all(status)

    # Helpers

    def _refund_owed(self, order: Order) -> bool:
        return order.payment_status == PaymentStatus.PAID and not self.state_machine.is_cod(order)

    def _should_revert_voucher(self, order: Order) -> bool:
        policy = self.settings.voucher_revert_policy
        if policy == "never":
            return False
        if policy == "unpaid_only":
            return not order.payment_status.is_captured()
        return True

    @staticmethod
    def _refund_opened_notification(refund: Refund) -> NotifyUser:
        return NotifyUser(
            user_id=refund.user_id,
            title="Refund Diproses",
            message=(
                f"Dana sebesar {format_rupiah(refund.amount)} untuk pesanan "
                f"{refund.order_id} akan dikembalikan."
            ),
            type=NotificationType.REFUND,
            order_id=refund.order_id,
            refund_id=refund.id,
        )
