"""
Schemas for inventory propagation.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from stockrelay.core.enums import InventoryAdjustmentReason
from stockrelay.schemas.base import BaseSchema


class PendingInventoryUpdate(BaseSchema):
    """An absolute quantity waiting to be written to a downstream variant."""
    connection_id: Optional[str] = None
    downstream_store_id: str
    downstream_variant_id: str
    quantity: int = Field(ge=0)
    reason: InventoryAdjustmentReason = InventoryAdjustmentReason.CORRECTION
    location_id: Optional[str] = None
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0


class PropagationOutcome(BaseSchema):
    """What happened to one downstream write on the direct path."""
    connection_id: str
    downstream_variant_id: str
    quantity: int
    written: bool = False
    queued: bool = False
    skipped_reason: Optional[str] = None


class InventoryRecord(BaseSchema):
    """Authoritative quantity for one upstream variant."""
    store_id: str
    variant_id: str
    inventory_item_id: Optional[str] = None
    location_id: Optional[str] = None
    quantity: int = 0
    last_synced_at: Optional[datetime] = None
