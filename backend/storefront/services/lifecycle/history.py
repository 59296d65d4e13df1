"""
Append-only status history shared by orders and refunds.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from storefront.core.security import Actor


class StatusHistoryEntry(BaseModel):
    """One transition as recorded on an aggregate. Entries are never edited."""

    model_config = ConfigDict(frozen=True)

    status: str
    note: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    payment_status: Optional[str] = None

    @classmethod
    def record(
        cls,
        status: str,
        note: str,
        actor: Optional[Actor] = None,
        payment_status: Optional[str] = None,
    ) -> "StatusHistoryEntry":
        return cls(
            status=status,
            note=note,
            actor_id=actor.id if actor else None,
            actor_role=actor.role.value if actor else None,
            payment_status=payment_status,
        )
