"""
Request rate limiting with slowapi.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.core.config import get_settings


def checkout_limit() -> str:
    """Checkout limit read at request time so it follows APP_CHECKOUT_RATE_LIMIT."""
    return get_settings().checkout_rate_limit


limiter = Limiter(key_func=get_remote_address)
