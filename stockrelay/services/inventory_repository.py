# stockrelay/services/inventory_repository.py
"""
Storage for authoritative upstream quantities.

Only two paths write a quantity: a raw inventory-level event (set) and the
order delta path (apply_delta). Propagation only reads.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from stockrelay.models.inventory import UpstreamInventoryItem
from stockrelay.schemas.inventory import InventoryRecord
from stockrelay.services.inventory_delta import apply_delta

logger = logging.getLogger(__name__)


class InventoryRepository(Protocol):
    async def get(self, store_id: str, variant_id: str) -> Optional[InventoryRecord]:
        ...

    async def find_by_inventory_item(self, store_id: str, inventory_item_id: str) -> List[InventoryRecord]:
        ...

    async def set_quantity(
        self,
        store_id: str,
        variant_id: str,
        quantity: int,
        inventory_item_id: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> Tuple[Optional[int], InventoryRecord]:
        ...

    async def apply_delta(self, store_id: str, variant_id: str, delta: int) -> Optional[Tuple[int, InventoryRecord]]:
        ...

    async def ensure_item(
        self, store_id: str, variant_id: str, inventory_item_id: Optional[str], quantity: Optional[int]
    ) -> bool:
        ...


class InMemoryInventoryRepository:
    def __init__(self, records: Optional[List[InventoryRecord]] = None):
        self._records: Dict[Tuple[str, str], InventoryRecord] = {}
        for record in records or []:
            self._records[(record.store_id, record.variant_id)] = record

    async def get(self, store_id: str, variant_id: str) -> Optional[InventoryRecord]:
        return self._records.get((store_id, str(variant_id)))

    async def find_by_inventory_item(self, store_id: str, inventory_item_id: str) -> List[InventoryRecord]:
        inventory_item_id = str(inventory_item_id)
        return [
            r for (s, _), r in self._records.items()
            if s == store_id and r.inventory_item_id == inventory_item_id
        ]

    async def set_quantity(self, store_id, variant_id, quantity, inventory_item_id=None, location_id=None):
        key = (store_id, str(variant_id))
        existing = self._records.get(key)
        previous = existing.quantity if existing else None
        record = InventoryRecord(
            store_id=store_id,
            variant_id=str(variant_id),
            inventory_item_id=inventory_item_id or (existing.inventory_item_id if existing else None),
            location_id=location_id or (existing.location_id if existing else None),
            quantity=max(0, quantity),
            last_synced_at=datetime.now(timezone.utc),
        )
        self._records[key] = record
        return previous, record

    async def apply_delta(self, store_id, variant_id, delta):
        key = (store_id, str(variant_id))
        existing = self._records.get(key)
        if existing is None:
            return None
        record = existing.model_copy(update={
            "quantity": apply_delta(existing.quantity, delta),
            "last_synced_at": datetime.now(timezone.utc),
        })
        self._records[key] = record
        return existing.quantity, record

    async def ensure_item(self, store_id, variant_id, inventory_item_id, quantity):
        key = (store_id, str(variant_id))
        existing = self._records.get(key)
        if existing is not None:
            if inventory_item_id and existing.inventory_item_id != inventory_item_id:
                self._records[key] = existing.model_copy(update={"inventory_item_id": inventory_item_id})
            return False
        self._records[key] = InventoryRecord(
            store_id=store_id,
            variant_id=str(variant_id),
            inventory_item_id=inventory_item_id,
            quantity=max(0, quantity or 0),
            last_synced_at=datetime.now(timezone.utc),
        )
        return True


class DatabaseInventoryRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get(self, store_id: str, variant_id: str) -> Optional[InventoryRecord]:
        async with self.session_factory() as session:
            item = await self._get_item(session, store_id, variant_id)
            return InventoryRecord.from_orm_model(item) if item else None

    async def find_by_inventory_item(self, store_id: str, inventory_item_id: str) -> List[InventoryRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UpstreamInventoryItem).where(
                    UpstreamInventoryItem.store_id == store_id,
                    UpstreamInventoryItem.inventory_item_id == str(inventory_item_id),
                )
            )
            return [InventoryRecord.from_orm_model(item) for item in result.scalars().all()]

    async def set_quantity(self, store_id, variant_id, quantity, inventory_item_id=None, location_id=None):
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            item = await self._get_item(session, store_id, variant_id, for_update=True)
            previous = item.quantity if item else None
            if item is None:
                item = UpstreamInventoryItem(store_id=store_id, variant_id=str(variant_id))
                session.add(item)
            item.quantity = max(0, quantity)
            item.last_synced_at = now
            if inventory_item_id:
                item.inventory_item_id = str(inventory_item_id)
            if location_id:
                item.location_id = str(location_id)
            await session.commit()
            return previous, InventoryRecord.from_orm_model(item)

    async def apply_delta(self, store_id, variant_id, delta):
        async with self.session_factory() as session:
            item = await self._get_item(session, store_id, variant_id, for_update=True)
            if item is None:
                return None
            previous = item.quantity
            item.quantity = apply_delta(previous, delta)
            item.last_synced_at = datetime.now(timezone.utc)
            await session.commit()
            return previous, InventoryRecord.from_orm_model(item)

    async def ensure_item(self, store_id, variant_id, inventory_item_id, quantity):
        stmt = insert(UpstreamInventoryItem).values(
            store_id=store_id,
            variant_id=str(variant_id),
            inventory_item_id=inventory_item_id,
            quantity=max(0, quantity or 0),
            last_synced_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=['store_id', 'variant_id'])
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return (result.rowcount or 0) > 0

    async def _get_item(self, session, store_id, variant_id, for_update: bool = False):
        query = select(UpstreamInventoryItem).where(
            UpstreamInventoryItem.store_id == store_id,
            UpstreamInventoryItem.variant_id == str(variant_id),
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()
