"""
Read-only records supplied by the mapping service: store connections,
their sync policy and the variant pairs they link.
"""

from typing import Optional

from pydantic import Field, field_validator

from stockrelay.core.enums import MappingStatus, OrderTriggerPolicy, SyncMode
from stockrelay.schemas.base import BaseSchema


class ConnectionPolicy(BaseSchema):
    order_trigger_policy: OrderTriggerPolicy = OrderTriggerPolicy.ON_CREATE
    sync_mode: SyncMode = SyncMode.FULL
    safety_stock_quantity: int = Field(default=0, ge=0)
    stock_buffer: Optional[int] = Field(default=None, ge=0)
    # Downstream location the connection writes to; None means the store's primary location
    inventory_location_id: Optional[str] = None


class Connection(BaseSchema):
    """A supplier (upstream) store linked to a retailer (downstream) store."""
    id: str
    upstream_store_id: str
    downstream_store_id: str
    policy: ConnectionPolicy = Field(default_factory=ConnectionPolicy)


class VariantMapping(BaseSchema):
    connection_id: str
    upstream_variant_id: str
    downstream_variant_id: str
    upstream_inventory_item_id: Optional[str] = None
    sync_enabled: bool = True
    status: MappingStatus = MappingStatus.ACTIVE

    @field_validator('upstream_variant_id', 'downstream_variant_id', 'upstream_inventory_item_id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        # Shopify webhooks send numeric ids, exports often send strings
        if v is None:
            return None
        return str(v)

    @property
    def is_syncable(self) -> bool:
        return self.sync_enabled and self.status == MappingStatus.ACTIVE


class StoreCredentials(BaseSchema):
    store_id: str
    shop_domain: str
    access_token: str
    api_version: Optional[str] = None
