"""
Maintenance gate consulted before checkout.

The flag is written by the admin console; this service only reads it.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from storefront.core.logging import get_logger
from storefront.storage.base import KeyValueStore

logger = get_logger(__name__)

MAINTENANCE_KEY = "system:maintenance"


class MaintenanceState(BaseModel):
    """Maintenance flag with an optional scheduled window."""

    enabled: bool = False
    message: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        if not self.enabled:
            return False
        if self.start_time is not None and now < self.start_time:
            return False
        if self.end_time is not None and now >= self.end_time:
            return False
        return True


class MaintenanceGate:
    """Reads ``system:maintenance`` and evaluates its window."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self._clock = clock

    async def get_state(self) -> MaintenanceState:
        data = await self.store.get(MAINTENANCE_KEY)
        return MaintenanceState.model_validate(data) if data else MaintenanceState()

    async def is_under_maintenance(self) -> bool:
        state = await self.get_state()
        active = state.is_active(self._clock())
        if active:
            logger.info("Maintenance window active", message=state.message)
        return active
