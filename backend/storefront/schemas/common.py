"""
Shared response envelopes.
"""

from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    success: bool = False
    error: str
    message: str
    request_id: Optional[str] = None
