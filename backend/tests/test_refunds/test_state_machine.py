"""
Test suite for RefundStateMachine.

Tests cover both refund paths, role and ownership checks, required fields and
the return shipping invariant.
"""

from decimal import Decimal
from typing import Optional

import pytest

from storefront.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    InvariantViolationError,
)
from storefront.core.security import Actor
from storefront.services.evidence import Evidence, EvidenceType
from storefront.services.refunds.enums import (
    REFUND_STATUS_TRANSITIONS,
    RefundStatus,
    RefundType,
    ReturnShippingStatus,
)
from storefront.services.refunds.models import Refund, RefundTransitionExtra, ReturnShipping
from storefront.services.refunds.state_machine import RefundStateMachine


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def state_machine() -> RefundStateMachine:
    return RefundStateMachine()


def make_refund(
    type: RefundType = RefundType.USER_REQUEST,
    requires_return: bool = True,
    status: RefundStatus = RefundStatus.PENDING,
    with_evidence: bool = True,
    return_shipping: Optional[ReturnShipping] = None,
) -> Refund:
    """Build a refund document without touching storage."""
    evidence = (
        [Evidence(type=EvidenceType.IMAGE, url="memory://refund-evidence/a.jpg")]
        if with_evidence
        else []
    )
    return Refund(
        id="REF-1700000000000-ABCDEFGHI",
        order_id="ORD-20260101120000-ABC123",
        user_id="user-1",
        type=type,
        requires_return=requires_return,
        reason="Barang rusak",
        amount=Decimal("100000"),
        evidence=evidence,
        status=status,
        return_shipping=return_shipping,
    )


def shipment() -> ReturnShipping:
    return ReturnShipping(courier="JNE", tracking_number="TRK-1")


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestRefundTransitionTable:
    def test_terminal_states(self) -> None:
        for status in (RefundStatus.REFUNDED, RefundStatus.COMPLETED, RefundStatus.REJECTED):
            assert status.is_terminal()
            assert REFUND_STATUS_TRANSITIONS[status] == set()

    def test_paid_out(self) -> None:
        assert RefundStatus.REFUNDED.is_paid_out()
        assert RefundStatus.COMPLETED.is_paid_out()
        assert not RefundStatus.REJECTED.is_paid_out()

    def test_from_string(self) -> None:
        assert RefundStatus.from_string("Shipping") == RefundStatus.SHIPPING
        with pytest.raises(ValueError):
            RefundStatus.from_string("lost")


# ============================================================================
# Return Path Tests
# ============================================================================


class TestReturnPath:
    """Test pending -> approved -> shipping -> received -> refunded."""

    def test_full_return_flow(
        self, state_machine: RefundStateMachine, admin: Actor, customer: Actor
    ) -> None:
        refund = make_refund()

        state_machine.apply_transition(
            refund, RefundStatus.APPROVED, admin, extra=RefundTransitionExtra(courier="JNE")
        )
        assert refund.return_shipping.courier == "JNE"
        assert refund.return_shipping.tracking_number.startswith("TRK-")
        assert refund.return_shipping.status == ReturnShippingStatus.PENDING
        assert refund.reviewed_by == admin.id

        state_machine.apply_transition(refund, RefundStatus.SHIPPING, customer)
        assert refund.return_shipping.status == ReturnShippingStatus.SHIPPED
        assert refund.return_shipping.shipped_at is not None

        state_machine.apply_transition(refund, RefundStatus.RECEIVED, admin)
        assert refund.return_shipping.status == ReturnShippingStatus.RECEIVED

        state_machine.apply_transition(
            refund,
            RefundStatus.REFUNDED,
            admin,
            extra=RefundTransitionExtra(refund_method="bank_transfer"),
        )
        assert refund.refund_method == "bank_transfer"
        assert refund.refunded_at is not None
        assert [e.status for e in refund.status_history] == [
            "approved",
            "shipping",
            "received",
            "refunded",
        ]

    def test_supplied_tracking_number_kept(self, state_machine, admin) -> None:
        refund = make_refund()

        state_machine.apply_transition(
            refund,
            RefundStatus.APPROVED,
            admin,
            extra=RefundTransitionExtra(courier="SiCepat", tracking_number="SC-123"),
        )

        assert refund.return_shipping.tracking_number == "SC-123"

    def test_approval_requires_courier(self, state_machine, admin) -> None:
        refund = make_refund()

        with pytest.raises(InvariantViolationError) as exc_info:
            state_machine.apply_transition(refund, RefundStatus.APPROVED, admin)

        assert exc_info.value.context["missing_field"] == "courier"
        assert refund.status == RefundStatus.PENDING
        assert refund.return_shipping is None

    def test_approval_requires_evidence(self, state_machine, admin) -> None:
        refund = make_refund(with_evidence=False)

        with pytest.raises(InvariantViolationError) as exc_info:
            state_machine.apply_transition(
                refund, RefundStatus.APPROVED, admin, extra=RefundTransitionExtra(courier="JNE")
            )

        assert exc_info.value.context["missing_field"] == "evidence"

    def test_rejection_requires_note(self, state_machine, admin) -> None:
        refund = make_refund()

        with pytest.raises(InvariantViolationError):
            state_machine.apply_transition(refund, RefundStatus.REJECTED, admin)

        state_machine.apply_transition(
            refund,
            RefundStatus.REJECTED,
            admin,
            extra=RefundTransitionExtra(admin_note="Foto tidak jelas"),
        )
        assert refund.admin_note == "Foto tidak jelas"

    def test_returnable_refund_cannot_skip_return(self, state_machine, admin) -> None:
        refund = make_refund()

        with pytest.raises(InvalidTransitionError):
            state_machine.apply_transition(
                refund,
                RefundStatus.REFUNDED,
                admin,
                extra=RefundTransitionExtra(refund_method="bank_transfer"),
            )

    def test_only_owner_confirms_shipment(
        self, state_machine, admin, other_customer
    ) -> None:
        refund = make_refund(status=RefundStatus.APPROVED, return_shipping=shipment())

        with pytest.raises(ForbiddenError):
            state_machine.apply_transition(refund, RefundStatus.SHIPPING, admin)
        with pytest.raises(ForbiddenError):
            state_machine.apply_transition(refund, RefundStatus.SHIPPING, other_customer)

    def test_received_requires_shipping_first(self, state_machine, admin) -> None:
        refund = make_refund(status=RefundStatus.APPROVED, return_shipping=shipment())

        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.apply_transition(refund, RefundStatus.RECEIVED, admin)

        assert exc_info.value.context["allowed_transitions"] == ["shipping"]

    def test_payout_requires_refund_method(self, state_machine, admin) -> None:
        refund = make_refund(status=RefundStatus.RECEIVED, return_shipping=shipment())

        with pytest.raises(InvariantViolationError):
            state_machine.apply_transition(refund, RefundStatus.REFUNDED, admin)


# ============================================================================
# Direct Payout Tests
# ============================================================================


class TestDirectPayout:
    """Test refunds that need no physical return."""

    @pytest.mark.parametrize("target", [RefundStatus.REFUNDED, RefundStatus.COMPLETED])
    def test_cancellation_refund_pays_out_directly(
        self, state_machine: RefundStateMachine, system_actor: Actor, target: RefundStatus
    ) -> None:
        refund = make_refund(
            type=RefundType.ADMIN_CANCEL, requires_return=False, with_evidence=False
        )

        state_machine.apply_transition(
            refund, target, system_actor, extra=RefundTransitionExtra(refund_method="e-wallet")
        )

        assert refund.status == target
        assert refund.return_shipping is None
        assert refund.reviewed_by == system_actor.id

    def test_non_returnable_refund_cannot_be_approved(self, state_machine, admin) -> None:
        refund = make_refund(type=RefundType.ADMIN_CANCEL, requires_return=False)

        with pytest.raises(InvalidTransitionError):
            state_machine.apply_transition(
                refund, RefundStatus.APPROVED, admin, extra=RefundTransitionExtra(courier="JNE")
            )

    def test_customer_cannot_pay_out(self, state_machine, customer) -> None:
        refund = make_refund(requires_return=False)

        with pytest.raises(ForbiddenError):
            state_machine.apply_transition(
                refund,
                RefundStatus.COMPLETED,
                customer,
                extra=RefundTransitionExtra(refund_method="bank_transfer"),
            )

    def test_return_shipping_rejected_without_return_flow(self, state_machine, admin) -> None:
        refund = make_refund(type=RefundType.ADMIN_CANCEL, requires_return=False)

        with pytest.raises(InvariantViolationError):
            state_machine.apply_transition(
                refund,
                RefundStatus.REFUNDED,
                admin,
                extra=RefundTransitionExtra(refund_method="bank_transfer", return_shipping=shipment()),
            )

        assert refund.status == RefundStatus.PENDING
        assert refund.status_history == []
