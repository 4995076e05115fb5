# stockrelay/models/inventory.py
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from stockrelay.database import Base


class UpstreamInventoryItem(Base):
    """
    Authoritative quantity for one upstream variant.

    Every downstream quantity is derived from `quantity`. Only the order
    delta path and raw inventory-level events write to it.
    """
    __tablename__ = "upstream_inventory_items"
    __table_args__ = (
        UniqueConstraint('store_id', 'variant_id', name='uq_upstream_inventory_store_variant'),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(String, nullable=False, index=True)
    variant_id = Column(String, nullable=False, index=True)
    inventory_item_id = Column(String, nullable=True, index=True)
    location_id = Column(String, nullable=True)

    quantity = Column(Integer, nullable=False, default=0)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return (f"<UpstreamInventoryItem(store='{self.store_id}', variant='{self.variant_id}', "
                f"quantity={self.quantity})>")
