"""
Test suite for StorefrontClient.

Unit tests run against ``httpx.MockTransport``; the integration tests drive the
real application through the ASGI client fixture.
"""

import asyncio
import json

import httpx
import pytest

from storefront.client import (
    CheckoutInProgressError,
    OutcomeUnknownError,
    StorefrontAPIError,
    StorefrontClient,
    StorefrontConnectionError,
)
from storefront.core.security import Actor
from storefront.services.orders.enums import OrderStatus, PaymentStatus


def make_client(handler, token: str = "customer-token") -> StorefrontClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return StorefrontClient(session_token=token, poll_interval=0.001, http_client=http)


CHECKOUT = {
    "items": [{"product_id": "prod-shirt", "quantity": 2}],
    "shipping_address": {
        "recipient_name": "Budi Santoso",
        "phone": "081234567890",
        "address": "Jl. Merdeka No. 1",
    },
    "shipping_method": "pickup",
    "payment_method": "bank_transfer",
}


# ============================================================================
# Transport Tests
# ============================================================================


class TestRequests:
    async def test_sends_session_token_and_prefix(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["token"] = request.headers.get("X-Session-Token")
            return httpx.Response(200, json={"id": "ORD-1", "status": "processing"})

        async with make_client(handler) as client:
            order = await client.get_order("ORD-1")

        assert order["status"] == "processing"
        assert seen == {"path": "/api/v1/orders/ORD-1", "token": "customer-token"}

    async def test_error_envelope_becomes_api_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                409,
                json={
                    "success": False,
                    "error": "InvalidTransition",
                    "message": "Pesanan ini tidak dapat dibatalkan lagi.",
                    "request_id": "req-1",
                },
            )

        async with make_client(handler) as client:
            with pytest.raises(StorefrontAPIError) as exc_info:
                await client.cancel_order("ORD-1")

        error = exc_info.value
        assert error.status_code == 409
        assert error.error == "InvalidTransition"
        assert error.message == "Pesanan ini tidak dapat dibatalkan lagi."
        assert error.request_id == "req-1"

    async def test_non_json_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        async with make_client(handler) as client:
            with pytest.raises(StorefrontAPIError) as exc_info:
                await client.get_refund("REF-1")

        assert exc_info.value.status_code == 502
        assert exc_info.value.error is None

    async def test_failed_write_is_outcome_unknown(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_client(handler) as client:
            with pytest.raises(OutcomeUnknownError) as exc_info:
                await client.checkout(CHECKOUT)

        assert exc_info.value.method == "POST"
        assert exc_info.value.path == "/orders"
        assert not client.checkout_in_flight

    async def test_failed_read_is_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(StorefrontConnectionError) as exc_info:
                await client.list_orders()

        assert not isinstance(exc_info.value, OutcomeUnknownError)


class TestCheckoutSingleFlight:
    async def test_second_checkout_rejected_while_first_in_flight(self) -> None:
        release = asyncio.Event()
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await release.wait()
            return httpx.Response(201, json={"id": "ORD-1", **json.loads(request.content)})

        async with make_client(handler) as client:
            first = asyncio.create_task(client.checkout(CHECKOUT))
            await asyncio.sleep(0)
            while not client.checkout_in_flight:
                await asyncio.sleep(0)

            with pytest.raises(CheckoutInProgressError):
                await client.checkout(CHECKOUT)

            release.set()
            order = await first

        assert order["id"] == "ORD-1"
        assert calls == 1

    async def test_checkout_allowed_again_after_completion(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"id": "ORD-1"})

        async with make_client(handler) as client:
            await client.checkout(CHECKOUT)
            await client.checkout(CHECKOUT)

    async def test_evidence_upload_is_base64_encoded(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "ev-1", "type": "image"})

        async with make_client(handler) as client:
            evidence = await client.upload_evidence("rusak.jpg", "image/jpeg", b"\xff\xd8")

        assert evidence["id"] == "ev-1"
        assert seen["path"] == "/api/v1/refunds/evidence"
        assert seen["body"]["data"] == "/9g="


class TestWatchHelpers:
    async def test_watch_order_stops_at_terminal_status(self) -> None:
        statuses = iter(["packed", "packed", "shipped", "delivered"])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            version = {"packed": 4, "shipped": 5, "delivered": 6}[status]
            return httpx.Response(200, json={"id": "ORD-1", "status": status, "version": version})

        async with make_client(handler) as client:
            seen = [change.snapshot["status"] async for change in client.watch_order("ORD-1")]

        assert seen == ["packed", "shipped", "delivered"]

    async def test_watch_refund_respects_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "REF-1", "status": "pending", "version": 1})

        async with make_client(handler) as client:
            seen = [c async for c in client.watch_refund("REF-1", interval=0.005, timeout=0.02)]

        assert len(seen) == 1


# ============================================================================
# Integration Tests
# ============================================================================


class TestAgainstApplication:
    async def test_checkout_and_observe_payment(
        self, async_client: httpx.AsyncClient, services, system_actor: Actor
    ) -> None:
        client = StorefrontClient(session_token="customer-token", http_client=async_client)

        order = await client.checkout({**CHECKOUT, "voucher_code": "WELCOME10"})
        assert order["total_amount"] == "90000"

        await services.orders.set_payment_status(order["id"], PaymentStatus.PAID, system_actor)

        changes = client.watch_order(order["id"], interval=0.001, timeout=0.05)
        latest = [change.snapshot async for change in changes][-1]
        assert latest["payment_status"] == "paid"

        cancelled = await client.cancel_order(order["id"], "Berubah pikiran")
        assert cancelled["status"] == OrderStatus.CANCELLED.value
        assert cancelled["has_refund"] is True

        refund = await client.get_refund(cancelled["refund_id"])
        assert refund["amount"] == "90000"

    async def test_forbidden_surfaces_as_api_error(
        self, async_client: httpx.AsyncClient, place_order
    ) -> None:
        order = await place_order()
        client = StorefrontClient(session_token="other-token", http_client=async_client)

        with pytest.raises(StorefrontAPIError) as exc_info:
            await client.get_order(order.id)

        assert exc_info.value.status_code == 403
        assert exc_info.value.error == "Forbidden"
