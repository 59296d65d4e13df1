"""
Errors raised by :class:`storefront.client.StorefrontClient`.
"""

from typing import Any, Optional


class StorefrontClientError(Exception):
    """Base exception for client-side errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class CheckoutInProgressError(StorefrontClientError):
    """Raised when a checkout is submitted while another one is still in flight."""


class StorefrontConnectionError(StorefrontClientError):
    """Raised when the server could not be reached or did not answer in time."""


class OutcomeUnknownError(StorefrontConnectionError):
    """
    Raised when a state-changing request failed in transit.

    The server may or may not have applied the change; re-query the resource
    instead of assuming failure.
    """

    def __init__(self, message: str, method: str, path: str, **context: Any):
        super().__init__(message, method=method, path=path, **context)
        self.method = method
        self.path = path


class StorefrontAPIError(StorefrontClientError):
    """Raised for non-success responses; carries the server's error envelope."""

    def __init__(
        self,
        message: str,
        status_code: int,
        error: Optional[str] = None,
        request_id: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            status_code=status_code,
            error=error,
            request_id=request_id,
            **context,
        )
        self.status_code = status_code
        self.error = error
        self.request_id = request_id
