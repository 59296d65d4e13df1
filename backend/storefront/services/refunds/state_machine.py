"""Refund state machine implementation with transition validation.

Refunds follow one of two paths:

* returnable user requests: pending -> approved -> shipping -> received ->
  refunded, with the return shipment tracked on the refund;
* refunds without a physical return (cancellations): pending -> refunded or
  completed once a payout method is chosen.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Optional

from storefront.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    InvariantViolationError,
)
from storefront.core.logging import get_logger
from storefront.core.security import Actor, ActorRole
from storefront.services.lifecycle.history import StatusHistoryEntry
from storefront.services.lifecycle.identifiers import generate_tracking_number
from storefront.services.refunds.enums import (
    RefundStatus,
    RefundType,
    ReturnShippingStatus,
    get_allowed_refund_transitions,
    validate_refund_status_transition,
)
from storefront.services.refunds.models import Refund, RefundTransitionExtra, ReturnShipping

logger = get_logger(__name__)

Edge = tuple[RefundStatus, RefundStatus]
Requirement = Callable[[Refund, RefundTransitionExtra], None]
Effect = Callable[[Refund, RefundTransitionExtra, Actor, datetime], None]

_STAFF: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN, ActorRole.SYSTEM})
_ADMIN: FrozenSet[ActorRole] = frozenset({ActorRole.ADMIN})
_CUSTOMER: FrozenSet[ActorRole] = frozenset({ActorRole.CUSTOMER})

_RETURN_FLOW = {
    RefundStatus.APPROVED,
    RefundStatus.SHIPPING,
    RefundStatus.RECEIVED,
    RefundStatus.REFUNDED,
}


def _missing(field: str, message: str, refund: Refund, target: RefundStatus) -> InvariantViolationError:
    return InvariantViolationError(
        f"{field} is required to move refund {refund.id} to {target.value}",
        user_message=message,
        refund_id=refund.id,
        missing_field=field,
        requested_status=target.value,
    )


class RefundStateMachine:
    """State machine for refund transitions.

    Validation order: table legality (InvalidTransition), role and ownership
    (Forbidden), path eligibility (InvalidTransition), required fields and
    invariants (InvariantViolation).
    """

    def __init__(self) -> None:
        self._edge_roles: Dict[Edge, FrozenSet[ActorRole]] = self._initialize_roles()
        self._requirements: Dict[Edge, Requirement] = self._initialize_requirements()
        self._side_effects: Dict[RefundStatus, Effect] = self._initialize_side_effects()

    def _initialize_roles(self) -> Dict[Edge, FrozenSet[ActorRole]]:
        return {
            (RefundStatus.PENDING, RefundStatus.APPROVED): _ADMIN,
            (RefundStatus.PENDING, RefundStatus.REJECTED): _ADMIN,
            (RefundStatus.APPROVED, RefundStatus.SHIPPING): _CUSTOMER,
            (RefundStatus.SHIPPING, RefundStatus.RECEIVED): _ADMIN,
            (RefundStatus.RECEIVED, RefundStatus.REFUNDED): _ADMIN,
            (RefundStatus.PENDING, RefundStatus.REFUNDED): _STAFF,
            (RefundStatus.PENDING, RefundStatus.COMPLETED): _STAFF,
        }

    def _initialize_requirements(self) -> Dict[Edge, Requirement]:
        return {
            (RefundStatus.PENDING, RefundStatus.APPROVED): self._require_approvable,
            (RefundStatus.PENDING, RefundStatus.REJECTED): self._require_admin_note,
            (RefundStatus.APPROVED, RefundStatus.SHIPPING): self._require_return_shipment,
            (RefundStatus.SHIPPING, RefundStatus.RECEIVED): self._require_return_shipment,
            (RefundStatus.RECEIVED, RefundStatus.REFUNDED): self._require_refund_method,
            (RefundStatus.PENDING, RefundStatus.REFUNDED): self._require_direct_payout,
            (RefundStatus.PENDING, RefundStatus.COMPLETED): self._require_direct_payout,
        }

    def _initialize_side_effects(self) -> Dict[RefundStatus, Effect]:
        return {
            RefundStatus.APPROVED: self._effect_approved,
            RefundStatus.REJECTED: self._effect_rejected,
            RefundStatus.SHIPPING: self._effect_shipping,
            RefundStatus.RECEIVED: self._effect_received,
            RefundStatus.REFUNDED: self._effect_paid_out,
            RefundStatus.COMPLETED: self._effect_paid_out,
        }

    def validate_transition(
        self,
        refund: Refund,
        target_status: RefundStatus,
        actor: Actor,
        extra: Optional[RefundTransitionExtra] = None,
    ) -> RefundTransitionExtra:
        """Validate a refund transition and its accompanying fields.

        Args:
            refund: Freshly read refund
            target_status: Desired target status
            actor: Who is requesting the transition
            extra: Fields to merge with the status change

        Returns:
            The normalised extra fields

        Raises:
            InvalidTransitionError: If the edge is illegal for this refund
            ForbiddenError: If the actor lacks the role or ownership
            InvariantViolationError: If required fields are missing or an
                invariant would break
        """
        extra = extra or RefundTransitionExtra()
        current_status = refund.status

        if not validate_refund_status_transition(current_status, target_status):
            raise InvalidTransitionError(
                f"Invalid refund transition from {current_status.value} to "
                f"{target_status.value}",
                current_status=current_status.value,
                requested_status=target_status.value,
                user_message=(
                    f"Refund tidak dapat diubah dari {current_status.display_name} "
                    f"ke {target_status.display_name}."
                ),
                refund_id=refund.id,
                allowed_transitions=sorted(
                    s.value for s in get_allowed_refund_transitions(current_status)
                ),
            )

        edge = (current_status, target_status)
        if actor.role not in self._edge_roles[edge]:
            raise ForbiddenError(
                f"{actor.role.value} may not move refund from "
                f"{current_status.value} to {target_status.value}",
                refund_id=refund.id,
                actor_role=actor.role.value,
            )

        if actor.is_customer and actor.id != refund.user_id:
            raise ForbiddenError(
                f"User {actor.id} does not own refund {refund.id}",
                user_message="Anda tidak memiliki akses ke refund ini.",
                refund_id=refund.id,
                actor_id=actor.id,
            )

        if extra.return_shipping is not None and not (
            self._is_returnable(refund) and target_status in _RETURN_FLOW
        ):
            raise InvariantViolationError(
                f"Return shipping cannot be attached to refund {refund.id} "
                f"moving to {target_status.value}",
                user_message="Data pengiriman retur tidak berlaku untuk refund ini.",
                refund_id=refund.id,
                requested_status=target_status.value,
            )

        requirement = self._requirements.get(edge)
        if requirement is not None:
            requirement(refund, extra)

        return extra

    def apply_transition(
        self,
        refund: Refund,
        target_status: RefundStatus,
        actor: Actor,
        note: str = "",
        extra: Optional[RefundTransitionExtra] = None,
    ) -> Refund:
        """Validate, then merge extra fields, move the refund and record history."""
        extra = self.validate_transition(refund, target_status, actor, extra)

        now = datetime.now(timezone.utc)
        old_status = refund.status

        refund.status = target_status
        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(refund, extra, actor, now)

        refund.status_history.append(
            StatusHistoryEntry.record(
                target_status.value,
                note or f"Status refund: {target_status.display_name}",
                actor,
            )
        )

        logger.info(
            "Refund transition applied",
            refund_id=refund.id,
            order_id=refund.order_id,
            transition=f"{old_status.value}->{target_status.value}",
            actor_id=actor.id,
            actor_role=actor.role.value,
        )
        return refund

    @staticmethod
    def _is_returnable(refund: Refund) -> bool:
        return refund.type == RefundType.USER_REQUEST and refund.requires_return

    def _path_error(self, refund: Refund, target: RefundStatus, message: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"Refund {refund.id} ({refund.type.value}, requires_return="
            f"{refund.requires_return}) cannot move to {target.value}",
            current_status=refund.status.value,
            requested_status=target.value,
            user_message=message,
            refund_id=refund.id,
        )

    # Requirements

    def _require_approvable(self, refund: Refund, extra: RefundTransitionExtra) -> None:
        if not self._is_returnable(refund):
            raise self._path_error(
                refund,
                RefundStatus.APPROVED,
                "Refund ini tidak memerlukan pengembalian barang.",
            )
        if not refund.evidence:
            raise _missing(
                "evidence",
                "Refund tanpa bukti tidak dapat disetujui.",
                refund,
                RefundStatus.APPROVED,
            )
        courier = extra.courier or (extra.return_shipping.courier if extra.return_shipping else None)
        if not courier or not courier.strip():
            raise _missing(
                "courier",
                "Kurir pengiriman retur wajib diisi.",
                refund,
                RefundStatus.APPROVED,
            )

    def _require_admin_note(self, refund: Refund, extra: RefundTransitionExtra) -> None:
        if not extra.admin_note or not extra.admin_note.strip():
            raise _missing(
                "admin_note",
                "Alasan penolakan wajib diisi.",
                refund,
                RefundStatus.REJECTED,
            )

    def _require_return_shipment(self, refund: Refund, extra: RefundTransitionExtra) -> None:
        if refund.return_shipping is None:
            raise InvariantViolationError(
                f"Refund {refund.id} has no return shipment",
                refund_id=refund.id,
            )

    def _require_refund_method(self, refund: Refund, extra: RefundTransitionExtra) -> None:
        if not extra.refund_method or not extra.refund_method.strip():
            raise _missing(
                "refund_method",
                "Metode pengembalian dana wajib diisi.",
                refund,
                RefundStatus.REFUNDED,
            )

    def _require_direct_payout(self, refund: Refund, extra: RefundTransitionExtra) -> None:
        if refund.requires_return:
            raise self._path_error(
                refund,
                RefundStatus.REFUNDED,
                "Barang harus dikembalikan terlebih dahulu sebelum dana dikembalikan.",
            )
        self._require_refund_method(refund, extra)

    # Side Effects

    def _effect_approved(
        self, refund: Refund, extra: RefundTransitionExtra, actor: Actor, now: datetime
    ) -> None:
        supplied = extra.return_shipping
        courier = (extra.courier or (supplied.courier if supplied else "")).strip()
        tracking_number = (
            extra.tracking_number
            or (supplied.tracking_number if supplied else None)
            or generate_tracking_number()
        )
        refund.return_shipping = ReturnShipping(
            courier=courier,
            tracking_number=tracking_number,
            status=ReturnShippingStatus.PENDING,
        )
        refund.reviewed_by = actor.id
        refund.reviewed_at = now
        if extra.admin_note:
            refund.admin_note = extra.admin_note

    def _effect_rejected(
        self, refund: Refund, extra: RefundTransitionExtra, actor: Actor, now: datetime
    ) -> None:
        refund.admin_note = extra.admin_note
        refund.reviewed_by = actor.id
        refund.reviewed_at = now

    def _effect_shipping(
        self, refund: Refund, extra: RefundTransitionExtra, actor: Actor, now: datetime
    ) -> None:
        if extra.tracking_number:
            refund.return_shipping.tracking_number = extra.tracking_number
        refund.return_shipping.status = ReturnShippingStatus.SHIPPED
        refund.return_shipping.shipped_at = now

    def _effect_received(
        self, refund: Refund, extra: RefundTransitionExtra, actor: Actor, now: datetime
    ) -> None:
        refund.return_shipping.status = ReturnShippingStatus.RECEIVED
        refund.return_shipping.received_at = now
        if extra.admin_note:
            refund.admin_note = extra.admin_note

    def _effect_paid_out(
        self, refund: Refund, extra: RefundTransitionExtra, actor: Actor, now: datetime
    ) -> None:
        refund.refund_method = extra.refund_method
        refund.refunded_at = now
        if refund.reviewed_by is None:
            refund.reviewed_by = actor.id
            refund.reviewed_at = now
        if extra.admin_note:
            refund.admin_note = extra.admin_note
