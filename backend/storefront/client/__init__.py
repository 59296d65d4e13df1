"""
HTTP client for the storefront API.
"""

from storefront.client.client import StorefrontClient
from storefront.client.errors import (
    CheckoutInProgressError,
    OutcomeUnknownError,
    StorefrontAPIError,
    StorefrontClientError,
    StorefrontConnectionError,
)

__all__ = [
    "CheckoutInProgressError",
    "OutcomeUnknownError",
    "StorefrontAPIError",
    "StorefrontClient",
    "StorefrontClientError",
    "StorefrontConnectionError",
]
