"""
Refund lifecycle service.

Owns refund creation (one refund per order), status transitions through
:class:`RefundStateMachine`, evidence attachment and the admin queries.
Cross-aggregate effects on the order (``payment_status = refunded``) are
returned as :class:`MarkOrderRefunded` events and applied by the dispatcher.
"""

from decimal import Decimal
from typing import Optional

from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    DuplicateRefundError,
    ForbiddenError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from storefront.core.logging import get_logger
from storefront.core.security import Actor, require_access, require_privileged
from storefront.services.evidence import Evidence, EvidenceService
from storefront.services.lifecycle.events import (
    LifecycleEvent,
    LifecycleResult,
    MarkOrderRefunded,
    NotifyUser,
)
from storefront.services.lifecycle.history import StatusHistoryEntry
from storefront.services.lifecycle.identifiers import generate_refund_id
from storefront.services.notifications import NotificationType
from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.models import Order
from storefront.services.orders.repository import OrderRepository
from storefront.services.refunds.enums import RefundStatus, RefundType
from storefront.services.refunds.models import Refund, RefundStats, RefundTransitionExtra
from storefront.services.refunds.repository import RefundRepository
from storefront.services.refunds.state_machine import RefundStateMachine
from storefront.services.vouchers.validator import format_rupiah
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)


class RefundService:
    """Service for refund creation, transitions and queries."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        evidence: Optional[EvidenceService] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = RefundRepository(store)
        self.orders = OrderRepository(store)
        self.evidence = evidence or EvidenceService(store, settings=self.settings)
        self.state_machine = RefundStateMachine()

    # Creation

    async def create_refund(
        self,
        order_id: str,
        actor: Actor,
        type: RefundType,
        reason: str,
        description: str = "",
        amount: Optional[Decimal] = None,
        evidence_ids: Optional[list[str]] = None,
    ) -> LifecycleResult[Refund]:
        """
        Open a refund for an order.

        ``user_request`` refunds are raised by the owner of a delivered order
        and require the item to be shipped back. ``admin_cancel`` refunds are
        raised by an admin or the system for a paid order.

        Args:
            order_id: Order being refunded
            actor: Who is requesting the refund
            type: Refund type
            reason: Reason given by the requester
            description: Optional free-form details
            amount: Refund amount, defaults to the order total
            evidence_ids: Ids returned by evidence uploads backing the request

        Returns:
            The pending refund and a notification event

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the actor may not refund this order
            DuplicateRefundError: If the order already has a refund
            InvariantViolationError: If the order is not refund-eligible
            ValidationError: If reason or amount are invalid, or an evidence id
                was not issued to the actor
        """
        order = await self.orders.get_or_raise(order_id)
        require_access(actor, order.user_id, "order")

        await self._ensure_no_refund(order)
        self._check_eligibility(order, actor, type)

        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(
                "Refund reason is required",
                user_message="Alasan refund wajib diisi.",
                order_id=order_id,
            )

        refund_amount = order.total_amount if amount is None else Decimal(amount)
        if refund_amount <= 0 or refund_amount > order.total_amount:
            raise ValidationError(
                f"Refund amount {refund_amount} outside (0, {order.total_amount}]",
                user_message="Jumlah refund tidak valid.",
                order_id=order_id,
                amount=str(refund_amount),
            )

        evidence = await self.evidence.resolve(evidence_ids or [], actor)
        refund = self._new_refund(
            order,
            actor,
            type=type,
            reason=reason,
            description=description,
            amount=refund_amount,
            evidence=evidence,
            requires_return=type == RefundType.USER_REQUEST,
        )
        winner = await self._insert_claiming_order(refund)
        if winner != refund.id:
            raise DuplicateRefundError(
                f"Order {order_id} was refunded concurrently by {winner}",
                order_id=order_id,
                refund_id=winner,
            )

        try:
            await self._attach_to_order(order_id, refund.id)
        except Exception:
            logger.error(
                "Failed to attach refund to order, discarding refund",
                refund_id=refund.id,
                order_id=order_id,
            )
            await self.discard_refund(refund)
            raise

        return LifecycleResult(refund, [self._created_notification(refund)])

    async def open_cancellation_refund(
        self,
        order: Order,
        actor: Actor,
        reason: str,
    ) -> tuple[Refund, bool]:
        """
        Create the refund owed for a cancelled paid order.

        The order is not touched; the caller writes the back-reference together
        with the cancellation. An already indexed refund is returned as is.

        Returns:
            ``(refund, created)``
        """
        existing = await self.repository.get_by_order(order.id)
        if existing is not None:
            logger.info(
                "Reusing existing refund for cancelled order",
                order_id=order.id,
                refund_id=existing.id,
            )
            return existing, False

        refund_type = RefundType.USER_REQUEST if actor.is_customer else RefundType.ADMIN_CANCEL
        refund = self._new_refund(
            order,
            actor,
            type=refund_type,
            reason=reason or "Pesanan dibatalkan",
            description=f"Refund otomatis untuk pembatalan pesanan {order.id}",
            amount=order.total_amount,
            evidence=[],
            requires_return=False,
        )
        winner = await self._insert_claiming_order(refund)
        if winner != refund.id:
            # Another cancel attempt claimed the order first.
            return await self.repository.get_or_raise(winner), False
        return refund, True

    async def discard_refund(self, refund: Refund) -> None:
        """Compensation step: remove a refund whose order write failed."""
        await self.repository.remove(refund)

        order = await self.orders.get(refund.order_id)
        if order is not None and order.refund_id and order.refund_id != refund.id:
            await self.repository.restore_order_index(order.id, order.refund_id)

    # Transitions

    async def update_refund_status(
        self,
        refund_id: str,
        new_status: RefundStatus,
        actor: Actor,
        note: str = "",
        extra: Optional[RefundTransitionExtra] = None,
    ) -> LifecycleResult[Refund]:
        """
        Move a refund along its lifecycle.

        The refund is re-read, validated and written together with the merged
        ``extra`` fields and one history entry.

        Raises:
            NotFoundError: If the refund does not exist
            InvalidTransitionError: If the edge is illegal
            ForbiddenError: If the actor lacks role or ownership
            InvariantViolationError: If required fields are missing
            ConcurrentModificationError: If the refund changed meanwhile
        """
        refund = await self.repository.get_or_raise(refund_id)
        old_status = refund.status

        self.state_machine.apply_transition(refund, new_status, actor, note, extra)
        await self.repository.save(refund)

        logger.info(
            "Refund status updated",
            refund_id=refund.id,
            old_status=old_status.value,
            new_status=new_status.value,
            actor_id=actor.id,
        )

        events: list[LifecycleEvent] = [self._status_notification(refund)]
        if new_status.is_paid_out():
            events.append(MarkOrderRefunded(order_id=refund.order_id, refund_id=refund.id))
        return LifecycleResult(refund, events)

    async def confirm_shipment(
        self,
        refund_id: str,
        actor: Actor,
        note: str = "",
        tracking_number: Optional[str] = None,
    ) -> LifecycleResult[Refund]:
        """Owner confirms the returned item was handed to the courier."""
        refund = await self.repository.get_or_raise(refund_id)
        if not actor.is_customer or actor.id != refund.user_id:
            raise ForbiddenError(
                f"Only the owner may confirm shipment of refund {refund_id}",
                user_message="Hanya pemilik refund yang dapat mengonfirmasi pengiriman.",
                refund_id=refund_id,
                actor_id=actor.id,
            )

        return await self.update_refund_status(
            refund_id,
            RefundStatus.SHIPPING,
            actor,
            note or "Barang retur telah dikirim",
            RefundTransitionExtra(tracking_number=tracking_number),
        )

    async def add_evidence(
        self,
        refund_id: str,
        actor: Actor,
        evidence_ids: list[str],
    ) -> Refund:
        """
        Attach more uploaded evidence to a pending customer refund.

        Evidence already on the refund is not added twice.

        Raises:
            ForbiddenError: If the actor is not the owner
            InvariantViolationError: If the refund is no longer pending or is
                not a customer request
            ValidationError: If no ids are given or an id was not issued to
                the actor
        """
        refund = await self.repository.get_or_raise(refund_id)
        if actor.id != refund.user_id:
            raise ForbiddenError(
                f"User {actor.id} does not own refund {refund_id}",
                user_message="Anda tidak memiliki akses ke refund ini.",
                refund_id=refund_id,
            )
        if refund.status != RefundStatus.PENDING or refund.type != RefundType.USER_REQUEST:
            raise InvariantViolationError(
                f"Evidence cannot be added to refund {refund_id} in {refund.status.value}",
                user_message="Bukti hanya dapat ditambahkan saat refund menunggu peninjauan.",
                refund_id=refund_id,
                status=refund.status.value,
            )
        if not evidence_ids:
            raise ValidationError(
                "No evidence supplied",
                user_message="Bukti refund wajib diunggah.",
                refund_id=refund_id,
            )

        attached = {e.id for e in refund.evidence}
        evidence = [
            e for e in await self.evidence.resolve(evidence_ids, actor) if e.id not in attached
        ]
        refund.evidence.extend(evidence)
        await self.repository.save(refund)
        logger.info("Refund evidence added", refund_id=refund_id, count=len(evidence))
        return refund

    # Queries

    async def get_refund(self, refund_id: str, actor: Actor) -> Refund:
        refund = await self.repository.get_or_raise(refund_id)
        require_access(actor, refund.user_id, "refund")
        return refund

    async def get_refund_by_order(self, order_id: str, actor: Actor) -> Refund:
        order = await self.orders.get_or_raise(order_id)
        require_access(actor, order.user_id, "order")

        refund = await self.repository.get_by_order(order_id)
        if refund is None:
            raise NotFoundError(
                f"Order {order_id} has no refund",
                user_message="Refund tidak ditemukan.",
                order_id=order_id,
            )
        return refund

    async def list_user_refunds(self, actor: Actor) -> list[Refund]:
        return await self.repository.list_for_user(actor.id)

    async def list_refunds(
        self,
        actor: Actor,
        status: Optional[RefundStatus] = None,
    ) -> list[Refund]:
        require_privileged(actor, "list refunds")
        return await self.repository.list_all(status)

    async def get_refund_stats(self, actor: Actor) -> RefundStats:
        """Counters for the admin console; amounts sum paid-out refunds only."""
        require_privileged(actor, "view refund stats")

        refunds = await self.repository.list_all()
        stats = RefundStats(total=len(refunds))
        for refund in refunds:
            if refund.status == RefundStatus.PENDING:
                stats.pending += 1
            elif refund.status in (
                RefundStatus.APPROVED,
                RefundStatus.SHIPPING,
                RefundStatus.RECEIVED,
            ):
                stats.approved += 1
            elif refund.status == RefundStatus.REJECTED:
                stats.rejected += 1
            elif refund.status.is_paid_out():
                stats.completed += 1
                stats.total_amount += refund.amount
        return stats

    # Internals

    async def _ensure_no_refund(self, order: Order) -> None:
        existing_id = await self.repository.get_refund_id_for_order(order.id)
        if existing_id is not None or order.has_refund:
            raise DuplicateRefundError(
                f"Order {order.id} already has refund {existing_id or order.refund_id}",
                order_id=order.id,
                refund_id=existing_id or order.refund_id,
            )

    @staticmethod
    def _check_eligibility(order: Order, actor: Actor, type: RefundType) -> None:
        if type == RefundType.USER_REQUEST:
            if actor.id != order.user_id:
                raise ForbiddenError(
                    f"Only the owner may request a refund for order {order.id}",
                    user_message="Hanya pemilik pesanan yang dapat mengajukan refund.",
                    order_id=order.id,
                    actor_id=actor.id,
                )
            if order.status != OrderStatus.DELIVERED:
                raise InvariantViolationError(
                    f"Order {order.id} is {order.status.value}, not delivered",
                    user_message="Refund hanya dapat diajukan untuk pesanan yang sudah diterima.",
                    order_id=order.id,
                    status=order.status.value,
                )
            return

        require_privileged(actor, "open an admin cancellation refund")
        if order.payment_status != PaymentStatus.PAID:
            raise InvariantViolationError(
                f"Order {order.id} payment is {order.payment_status.value}, not paid",
                user_message="Pesanan belum dibayar sehingga tidak dapat direfund.",
                order_id=order.id,
                payment_status=order.payment_status.value,
            )
        if order.status == OrderStatus.DELIVERED:
            raise InvariantViolationError(
                f"Order {order.id} was delivered and cannot be refunded by cancellation",
                user_message="Pesanan yang sudah selesai tidak dapat dibatalkan.",
                order_id=order.id,
                status=order.status.value,
            )

    @staticmethod
    def _new_refund(
        order: Order,
        actor: Actor,
        *,
        type: RefundType,
        reason: str,
        description: str,
        amount: Decimal,
        evidence: list[Evidence],
        requires_return: bool,
    ) -> Refund:
        return Refund(
            id=generate_refund_id(),
            order_id=order.id,
            user_id=order.user_id,
            type=type,
            requires_return=requires_return,
            reason=reason,
            description=description,
            amount=amount,
            evidence=evidence,
            status_history=[
                StatusHistoryEntry.record(
                    RefundStatus.PENDING.value,
                    "Pengajuan refund dibuat",
                    actor,
                )
            ],
        )

    async def _insert_claiming_order(self, refund: Refund) -> str:
        """
        Insert the refund and return the id that owns the order afterwards.

        When a concurrent request claimed the order in between, the refund
        just written is removed again.
        """
        await self.repository.insert(refund)
        winner = await self.repository.get_refund_id_for_order(refund.order_id)
        if winner != refund.id:
            logger.warning(
                "Concurrent refund detected, discarding duplicate",
                order_id=refund.order_id,
                refund_id=refund.id,
                winner_id=winner,
            )
            await self.repository.remove(refund)
        return winner or refund.id

    async def _attach_to_order(self, order_id: str, refund_id: str) -> Order:
        """
        Raises:
            DuplicateRefundError: If the order already references another refund
            ConcurrentModificationError: If the order changed meanwhile
        """
        order = await self.orders.get_or_raise(order_id)
        if order.refund_id and order.refund_id != refund_id:
            raise DuplicateRefundError(
                f"Order {order_id} already references refund {order.refund_id}",
                order_id=order_id,
                refund_id=order.refund_id,
            )
        order.has_refund = True
        order.refund_id = refund_id
        return await self.orders.save(order)

    @staticmethod
    def _created_notification(refund: Refund) -> NotifyUser:
        return NotifyUser(
            user_id=refund.user_id,
            title="Pengajuan Refund Diterima",
            message=(
                f"Pengajuan refund sebesar {format_rupiah(refund.amount)} untuk pesanan "
                f"{refund.order_id} sedang ditinjau."
            ),
            type=NotificationType.REFUND,
            order_id=refund.order_id,
            refund_id=refund.id,
        )

    @staticmethod
    def _status_notification(refund: Refund) -> NotifyUser:
        if refund.status == RefundStatus.APPROVED:
            shipping = refund.return_shipping
            title = "Refund Disetujui"
            message = (
                f"Silakan kirim barang melalui {shipping.courier} dengan nomor resi "
                f"{shipping.tracking_number}."
            )
        elif refund.status == RefundStatus.REJECTED:
            title = "Refund Ditolak"
            message = f"Refund untuk pesanan {refund.order_id} ditolak: {refund.admin_note}"
        elif refund.status == RefundStatus.SHIPPING:
            title = "Barang Retur Dikirim"
            message = f"Barang retur untuk pesanan {refund.order_id} sedang dalam pengiriman."
        elif refund.status == RefundStatus.RECEIVED:
            title = "Barang Retur Diterima"
            message = f"Barang retur untuk pesanan {refund.order_id} telah kami terima."
        else:
            title = "Dana Dikembalikan"
            message = (
                f"Dana sebesar {format_rupiah(refund.amount)} telah dikembalikan melalui "
                f"{refund.refund_method}."
            )

        return NotifyUser(
            user_id=refund.user_id,
            title=title,
            message=message,
            type=NotificationType.REFUND,
            order_id=refund.order_id,
            refund_id=refund.id,
        )
