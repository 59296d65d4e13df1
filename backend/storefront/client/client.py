"""
Async HTTP client for the storefront API.

The client mirrors how the storefront UI talks to the lifecycle engine:
checkout is single-flight, a request that fails in transit is reported as an
unknown outcome, and order or refund progress is observed by polling.
"""

import asyncio
import base64
from types import TracebackType
from typing import Any, AsyncIterator, Optional

import httpx

from storefront.client.errors import (
    CheckoutInProgressError,
    OutcomeUnknownError,
    StorefrontAPIError,
    StorefrontConnectionError,
)
from storefront.core.logging import get_logger
from storefront.sync.watcher import SnapshotChange, watch

logger = get_logger(__name__)

_TERMINAL_ORDER_STATUSES = {"delivered", "cancelled"}
_TERMINAL_REFUND_STATUSES = {"refunded", "completed", "rejected"}


class StorefrontClient:
    """
    Client for the ``/api/v1`` storefront endpoints.

    Args:
        base_url: Server root, e.g. ``https://shop.example.com``
        session_token: Session token sent as ``X-Session-Token``
        poll_interval: Default seconds between polls in the watch helpers
        timeout: Per-request timeout in seconds
        http_client: Pre-built ``httpx.AsyncClient`` (tests pass one bound to
            an ASGI app)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        session_token: Optional[str] = None,
        poll_interval: float = 3.0,
        timeout: float = 10.0,
        api_prefix: str = "/api/v1",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"X-Session-Token": session_token} if session_token else {}
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers
        self._prefix = api_prefix.rstrip("/")
        self.poll_interval = poll_interval
        self._checkout_lock = asyncio.Lock()

    async def __aenter__(self) -> "StorefrontClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    @property
    def checkout_in_flight(self) -> bool:
        return self._checkout_lock.locked()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self._prefix}{path}"
        try:
            response = await self._http.request(
                method, url, json=json, params=params, headers=self._headers
            )
        except httpx.TransportError as e:
            logger.warning(
                "Storefront request failed in transit",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            if method.upper() == "GET":
                raise StorefrontConnectionError(
                    f"GET {path} failed: {e}", method=method, path=path
                ) from e
            raise OutcomeUnknownError(
                f"{method} {path} failed in transit; re-query before retrying",
                method=method,
                path=path,
            ) from e

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        raise StorefrontAPIError(
            body.get("message") or response.reason_phrase,
            status_code=response.status_code,
            error=body.get("error"),
            request_id=body.get("request_id"),
            path=path,
        )

    # Orders

    async def checkout(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Submit a checkout.

        Raises:
            CheckoutInProgressError: If another checkout from this client is
                still in flight
            OutcomeUnknownError: If the submission failed in transit; list the
                user's orders to find out whether it went through
            StorefrontAPIError: If the server rejected the checkout
        """
        if self._checkout_lock.locked():
            raise CheckoutInProgressError("A checkout is already being submitted")

        async with self._checkout_lock:
            logger.info("Submitting checkout", item_count=len(payload.get("items", [])))
            return await self._request("POST", "/orders", json=payload)

    async def get_order(self, order_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    async def list_orders(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/orders")

    async def cancel_order(self, order_id: str, reason: str = "") -> dict[str, Any]:
        return await self._request("POST", f"/orders/{order_id}/cancel", json={"reason": reason})

    async def set_payment_status(self, order_id: str, payment_status: str) -> dict[str, Any]:
        return await self._request(
            "PUT",
            f"/orders/{order_id}/payment-status",
            json={"payment_status": payment_status},
        )

    # Refunds

    async def upload_evidence(
        self,
        file_name: str,
        content_type: str,
        data: bytes,
    ) -> dict[str, Any]:
        """Upload a photo or video; pass the returned ``id`` in ``evidence_ids``."""
        return await self._request(
            "POST",
            "/refunds/evidence",
            json={
                "file_name": file_name,
                "content_type": content_type,
                "data": base64.b64encode(data).decode(),
            },
        )

    async def request_refund(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/refunds", json=payload)

    async def get_refund(self, refund_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/refunds/{refund_id}")

    async def confirm_refund_shipment(
        self,
        refund_id: str,
        tracking_number: Optional[str] = None,
        note: str = "",
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/refunds/{refund_id}/confirm-shipment",
            json={"tracking_number": tracking_number, "note": note},
        )

    # Vouchers

    async def validate_voucher(self, code: str, order_amount: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/vouchers/validate",
            json={"code": code, "order_amount": order_amount},
        )

    # Polling

    def watch_order(
        self,
        order_id: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        stop_at_terminal: bool = True,
    ) -> AsyncIterator[SnapshotChange]:
        """Yield the order every time it changes."""
        return watch(
            lambda: self.get_order(order_id),
            interval=interval or self.poll_interval,
            timeout=timeout,
            until=(
                (lambda s: bool(s) and s.get("status") in _TERMINAL_ORDER_STATUSES)
                if stop_at_terminal
                else None
            ),
        )

    def watch_refund(
        self,
        refund_id: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        stop_at_terminal: bool = True,
    ) -> AsyncIterator[SnapshotChange]:
        """Yield the refund every time it changes."""
        return watch(
            lambda: self.get_refund(refund_id),
            interval=interval or self.poll_interval,
            timeout=timeout,
            until=(
                (lambda s: bool(s) and s.get("status") in _TERMINAL_REFUND_STATUSES)
                if stop_at_terminal
                else None
            ),
        )
