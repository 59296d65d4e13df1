"""
Exhaustive transition table tests for refunds, driven through RefundService.
"""

from itertools import product

import pytest

from storefront.api.deps import ServiceContainer
from storefront.core.errors import InvalidTransitionError
from storefront.core.security import Actor
from storefront.services.refunds.enums import (
    REFUND_STATUS_TRANSITIONS,
    RefundStatus,
    RefundType,
)
from storefront.services.refunds.models import Refund, RefundTransitionExtra

ILLEGAL_REFUND_PAIRS = [
    (current, requested)
    for current, requested in product(RefundStatus, RefundStatus)
    if requested not in REFUND_STATUS_TRANSITIONS[current]
]


@pytest.fixture
async def open_refund(
    services: ServiceContainer, delivered_order, customer: Actor, photo_evidence
) -> Refund:
    order = await delivered_order()
    result = await services.refunds.create_refund(
        order.id,
        customer,
        RefundType.USER_REQUEST,
        reason="Barang rusak",
        evidence_ids=photo_evidence,
    )
    return result.record


# ============================================================================
# Illegal Pair Tests
# ============================================================================


class TestIllegalRefundTransitions:
    @pytest.mark.parametrize(
        "pair", ILLEGAL_REFUND_PAIRS, ids=lambda p: f"{p[0].value}->{p[1].value}"
    )
    async def test_refused_and_refund_untouched(
        self, services: ServiceContainer, open_refund: Refund, admin: Actor, pair
    ) -> None:
        current, requested = pair
        stored = await services.refunds.repository.get(open_refund.id)
        stored.status = current
        await services.refunds.repository.save(stored)
        before = (await services.refunds.repository.get(open_refund.id)).model_dump(mode="json")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await services.refunds.update_refund_status(
                open_refund.id,
                requested,
                admin,
                extra=RefundTransitionExtra(courier="JNE", refund_method="bank_transfer"),
            )

        assert exc_info.value.current_status == current.value
        assert exc_info.value.requested_status == requested.value
        after = await services.refunds.repository.get(open_refund.id)
        assert after.model_dump(mode="json") == before


# ============================================================================
# History Preservation Tests
# ============================================================================


class TestHistoryIsAppendOnly:
    async def test_return_flow(
        self, services: ServiceContainer, open_refund: Refund, admin: Actor, customer: Actor
    ) -> None:
        steps = (
            lambda: services.refunds.update_refund_status(
                open_refund.id,
                RefundStatus.APPROVED,
                admin,
                extra=RefundTransitionExtra(courier="JNE"),
            ),
            lambda: services.refunds.confirm_shipment(
                open_refund.id, customer, tracking_number="JNE123"
            ),
            lambda: services.refunds.update_refund_status(
                open_refund.id, RefundStatus.RECEIVED, admin
            ),
            lambda: services.refunds.update_refund_status(
                open_refund.id,
                RefundStatus.REFUNDED,
                admin,
                extra=RefundTransitionExtra(refund_method="bank_transfer"),
            ),
        )
        for step in steps:
            before = await services.refunds.repository.get(open_refund.id)
            await step()
            after = await services.refunds.repository.get(open_refund.id)

            assert len(after.status_history) == len(before.status_history) + 1
            assert [e.model_dump(mode="json") for e in after.status_history[:-1]] == [
                e.model_dump(mode="json") for e in before.status_history
            ]

        assert after.status == RefundStatus.REFUNDED
