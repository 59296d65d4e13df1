"""
Identifier formats for orders, refunds and shipments.
"""

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

_UPPER_ALNUM = string.ascii_uppercase + string.digits


def _token(length: int) -> str:
    return "".join(secrets.choice(_UPPER_ALNUM) for _ in range(length))


def generate_order_id(now: Optional[datetime] = None) -> str:
    """``ORD-<yyyymmddHHMMSS>-<6 hex>``."""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


def generate_refund_id() -> str:
    """``REF-<epoch ms>-<9 upper alnum>``."""
    return f"REF-{int(time.time() * 1000)}-{_token(9)}"


def generate_tracking_number() -> str:
    """``TRK-<epoch ms>-<6 upper alnum>``."""
    return f"TRK-{int(time.time() * 1000)}-{_token(6)}"
