# stockrelay/services/inventory_sync_service.py
"""
Purpose: Orchestrates inventory movement from an upstream store to the
downstream stores connected to it.

Flow for one change:
    resolved delta (or raw level) -> authoritative quantity updated once
    -> per connection: location filter, safety stock / buffer
    -> rate-limit check -> direct write, or enqueue on the propagation queue

A failure for one connection is logged and never blocks the others.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from stockrelay.core.config import get_settings
from stockrelay.core.enums import InventoryAdjustmentReason, OrderEvent, SyncMode
from stockrelay.core.exceptions import InventoryItemNotFoundError, MappingNotFoundError
from stockrelay.integrations.events import (
    InventoryLevelPayload,
    OrderEditPayload,
    OrderPayload,
    ProductPayload,
    RefundPayload,
)
from stockrelay.integrations.propagation_queue import InventoryPropagationQueue
from stockrelay.schemas.inventory import PendingInventoryUpdate, PropagationOutcome
from stockrelay.schemas.mapping import Connection, VariantMapping
from stockrelay.services.activity_logger import ActivityLogger
from stockrelay.services.adjustment_pipeline import (
    apply_stock_buffer,
    compute_available_quantity,
    location_matches,
)
from stockrelay.services.inventory_delta import (
    order_event_deltas,
    reason_for_event,
    refund_restock_deltas,
    resolve_edit_deltas,
    should_process_order_event,
)
from stockrelay.services.rate_limit_service import DLQ_SENTINEL, RateLimitService

logger = logging.getLogger(__name__)

OrderLikePayload = Union[OrderPayload, OrderEditPayload, RefundPayload]


class InventorySyncService:
    def __init__(
        self,
        mappings,
        inventory,
        rate_limiter: RateLimitService,
        queue: InventoryPropagationQueue,
        activity: Optional[ActivityLogger] = None,
        direct_write_max_delay_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.mappings = mappings
        self.inventory = inventory
        self.rate_limiter = rate_limiter
        self.queue = queue
        self.activity = activity or ActivityLogger()
        if direct_write_max_delay_ms is None:
            direct_write_max_delay_ms = get_settings().DIRECT_WRITE_MAX_DELAY_MS
        self.direct_write_max_delay_ms = direct_write_max_delay_ms
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Raw inventory levels
    # ------------------------------------------------------------------

    async def update_upstream_inventory(self, store_id: str, payload: InventoryLevelPayload) -> List[PropagationOutcome]:
        """
        Apply an absolute inventory level reported by the upstream store and
        propagate it. A reported level that differs from the tracked one is
        audited as drift before being accepted.
        """
        if payload.available is None:
            logger.info(f"Inventory level for item {payload.inventory_item_id} has no available quantity - ignoring")
            return []

        logger.info(
            f"Updating inventory for item {payload.inventory_item_id} at location "
            f"{payload.location_id or 'unknown'} in store {store_id}: {payload.available}"
        )

        records = await self.inventory.find_by_inventory_item(store_id, payload.inventory_item_id)
        variant_ids = [r.variant_id for r in records]
        if not variant_ids:
            variant_ids = await self._variants_for_inventory_item(store_id, payload.inventory_item_id)
        if not variant_ids:
            logger.warning(f"No tracked variant for inventory item {payload.inventory_item_id} in store {store_id}")
            return []

        outcomes: List[PropagationOutcome] = []
        for variant_id in variant_ids:
            previous, record = await self.inventory.set_quantity(
                store_id,
                variant_id,
                payload.available,
                inventory_item_id=payload.inventory_item_id,
                location_id=payload.location_id,
            )
            if previous is not None and previous != record.quantity:
                await self.activity.log_drift(store_id, variant_id, previous, record.quantity)

            outcomes.extend(await self.propagate_inventory(
                store_id,
                variant_id,
                record.quantity,
                reason=InventoryAdjustmentReason.INVENTORY_LEVEL_UPDATE,
                event_location_id=payload.location_id,
            ))
        return outcomes

    async def _variants_for_inventory_item(self, store_id: str, inventory_item_id: str) -> List[str]:
        variant_ids: List[str] = []
        for connection in await self.mappings.get_connections(store_id):
            for mapping in await self.mappings.get_active_mappings(connection.id):
                if mapping.upstream_inventory_item_id == str(inventory_item_id) and mapping.upstream_variant_id not in variant_ids:
                    variant_ids.append(mapping.upstream_variant_id)
        return variant_ids

    async def register_product_variants(self, store_id: str, payload: ProductPayload) -> int:
        """Start tracking variants seen on a product payload; existing quantities are left alone."""
        created = 0
        for variant in payload.variants:
            if await self.inventory.ensure_item(store_id, variant.id, variant.inventory_item_id, variant.inventory_quantity):
                created += 1
        if created:
            logger.info(f"Tracking {created} new variants from product {payload.id} in store {store_id}")
        return created

    # ------------------------------------------------------------------
    # Order-driven deltas
    # ------------------------------------------------------------------

    async def process_order_event(self, store_id: str, event: OrderEvent, payload: OrderLikePayload) -> Dict:
        """
        Resolve an order lifecycle event into deltas and apply them.

        The authoritative quantity moves once per event if at least one
        connection's trigger policy accepts it; propagation then goes only to
        the accepting connections.
        """
        connections = await self.mappings.get_connections(store_id)
        if not connections:
            return {"processed": False, "reason": "No active connections"}

        financial_status = getattr(payload, "financial_status", None)
        accepting: List[Connection] = []
        last_reason = None
        for connection in connections:
            decision = should_process_order_event(
                connection.policy.order_trigger_policy,
                connection.policy.sync_mode,
                event,
                financial_status,
            )
            if decision.process:
                accepting.append(connection)
                continue
            last_reason = decision.reason
            if connection.policy.sync_mode == SyncMode.CATALOG_ONLY:
                await self.activity.log_skip(
                    store_id, connection.id, "Ignored: CATALOG_ONLY mode", {"event": event.value}
                )
            else:
                logger.info(f"Skipping {event.value} for connection {connection.id}: {decision.reason}")

        if not accepting:
            return {"processed": False, "reason": last_reason}

        if event == OrderEvent.EDITED:
            deltas, source = resolve_edit_deltas(payload)
            if deltas is None:
                logger.warning(f"Order edit for {payload.order_id} carries no line item changes or snapshot - skipping")
                return {"processed": False, "reason": "No edit details"}
            logger.info(f"Order edit {payload.order_id} resolved from {source}: {dict(deltas)}")
        elif event == OrderEvent.REFUNDED:
            deltas = refund_restock_deltas(payload.refund_line_items)
        else:
            deltas = order_event_deltas(event, payload.line_items)

        reason = reason_for_event(event)
        applied = {}
        for variant_id, delta in deltas.items():
            result = await self.apply_inventory_delta(store_id, variant_id, delta, reason, connections=accepting)
            if result is not None:
                applied[variant_id] = delta

        return {"processed": True, "deltas": applied, "connections": [c.id for c in accepting]}

    async def process_order_edit(self, store_id: str, payload: OrderEditPayload) -> Dict:
        return await self.process_order_event(store_id, OrderEvent.EDITED, payload)

    async def process_refund(self, store_id: str, payload: RefundPayload) -> Dict:
        return await self.process_order_event(store_id, OrderEvent.REFUNDED, payload)

    async def apply_inventory_delta(
        self,
        store_id: str,
        variant_id: str,
        delta: int,
        reason: InventoryAdjustmentReason,
        connections: Optional[List[Connection]] = None,
        order_triggered: bool = True,
    ) -> Optional[List[PropagationOutcome]]:
        """
        Add delta to the tracked quantity (clamped at zero) and propagate.
        Returns None when the variant is not tracked.
        """
        result = await self.inventory.apply_delta(store_id, variant_id, delta)
        if result is None:
            logger.warning(f"No tracked inventory for variant {variant_id} in store {store_id} - skipping delta {delta}")
            return None

        previous, record = result
        logger.info(
            f"Applied inventory delta {delta} to variant {variant_id}: "
            f"{previous} -> {record.quantity} ({reason.value})"
        )
        return await self.propagate_inventory(
            store_id,
            variant_id,
            record.quantity,
            reason=reason,
            order_triggered=order_triggered,
            connections=connections,
        )

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    async def propagate_inventory(
        self,
        store_id: str,
        variant_id: str,
        quantity: int,
        reason: InventoryAdjustmentReason = InventoryAdjustmentReason.CORRECTION,
        event_location_id: Optional[str] = None,
        order_triggered: bool = False,
        connections: Optional[List[Connection]] = None,
    ) -> List[PropagationOutcome]:
        if connections is None:
            connections = await self.mappings.get_connections(store_id)

        outcomes: List[PropagationOutcome] = []
        for connection in connections:
            try:
                if not location_matches(connection.policy.inventory_location_id, event_location_id):
                    logger.debug(
                        f"Skipping store {connection.downstream_store_id} - location mismatch "
                        f"({connection.policy.inventory_location_id} != {event_location_id})"
                    )
                    continue

                targets = await self._mappings_for_variant(connection, variant_id)
                if not targets:
                    continue

                available = compute_available_quantity(quantity, connection.policy, order_triggered=order_triggered)
                logger.info(
                    f"Propagating inventory to connection {connection.id}: {quantity} -> {available} ({reason.value})"
                )
                for mapping in targets:
                    outcomes.append(await self._propagate_to_connection(
                        connection, mapping.downstream_variant_id, available, reason
                    ))
            except Exception as e:
                logger.error(f"Failed to propagate inventory to connection {connection.id}: {e}", exc_info=True)
                await self.activity.log_sync(
                    store_id=connection.downstream_store_id,
                    success=False,
                    connection_id=connection.id,
                    details={"variant_id": variant_id, "error": str(e)},
                )
        return outcomes

    async def _mappings_for_variant(self, connection: Connection, variant_id: str) -> List[VariantMapping]:
        return [
            m for m in await self.mappings.get_active_mappings(connection.id)
            if m.upstream_variant_id == str(variant_id) and m.is_syncable
        ]

    async def _propagate_to_connection(
        self,
        connection: Connection,
        downstream_variant_id: str,
        quantity: int,
        reason: InventoryAdjustmentReason,
        location_id: Optional[str] = None,
    ) -> PropagationOutcome:
        store_id = connection.downstream_store_id
        update = PendingInventoryUpdate(
            connection_id=connection.id,
            downstream_store_id=store_id,
            downstream_variant_id=downstream_variant_id,
            quantity=quantity,
            reason=reason,
            location_id=location_id or connection.policy.inventory_location_id,
        )
        outcome = PropagationOutcome(
            connection_id=connection.id,
            downstream_variant_id=downstream_variant_id,
            quantity=quantity,
        )

        if self.queue.is_busy(update):
            # queue it behind the earlier write so this quantity lands last
            logger.info(f"Earlier write for variant {downstream_variant_id} on store {store_id} still pending - queueing update")
            self.queue.enqueue(update)
            outcome.queued = True
            return outcome

        delay_ms = self.rate_limiter.get_required_delay(store_id)
        if delay_ms == DLQ_SENTINEL or delay_ms > self.direct_write_max_delay_ms:
            logger.warning(f"Rate limit concerns for store {store_id} (delay: {delay_ms}ms) - queueing update")
            self.queue.enqueue(update)
            outcome.queued = True
            return outcome

        with self.queue.direct_write(update):
            if delay_ms > 0:
                await self._sleep(delay_ms / 1000)
            report = await self.queue.write(store_id, [update])
            self.queue.requeue(report.retry)
        outcome.written = bool(report.written)
        outcome.queued = bool(report.retry)
        if report.dropped:
            outcome.skipped_reason = "; ".join(report.errors) or "dropped"
        return outcome

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def sync_product_inventory(self, store_id: str, variant_id: str) -> List[PropagationOutcome]:
        """Push the tracked quantity of one upstream variant to every connection."""
        record = await self.inventory.get(store_id, variant_id)
        if record is None:
            raise InventoryItemNotFoundError(f"Variant {variant_id} is not tracked for store {store_id}")

        logger.info(f"Syncing inventory {record.quantity} for variant {variant_id} in store {store_id}")
        outcomes = await self.propagate_inventory(
            store_id,
            variant_id,
            record.quantity,
            reason=InventoryAdjustmentReason.MANUAL_ADJUSTMENT,
        )
        logger.info(f"Inventory sync complete for variant {variant_id}: {len(outcomes)} downstream variants")
        return outcomes

    async def handle_location_change(
        self, connection_id: str, old_location_id: Optional[str], new_location_id: str
    ) -> Dict[str, int]:
        """
        Move a connection's stock to another downstream location: zero the
        old location (when known) and write the buffered quantity to the new one.
        """
        connection = await self.mappings.get_connection(connection_id)
        if connection is None:
            raise MappingNotFoundError(f"Connection {connection_id} not found")

        logger.info(
            f"Handling location change for connection {connection_id}: "
            f"{old_location_id or 'all'} -> {new_location_id}"
        )

        zeroed = 0
        synced = 0
        for mapping in await self.mappings.get_active_mappings(connection_id):
            if not mapping.is_syncable:
                continue

            if old_location_id:
                outcome = await self._propagate_to_connection(
                    connection, mapping.downstream_variant_id, 0,
                    InventoryAdjustmentReason.TRANSFER, location_id=old_location_id,
                )
                if outcome.written or outcome.queued:
                    zeroed += 1

            record = await self.inventory.get(connection.upstream_store_id, mapping.upstream_variant_id)
            if record is None:
                continue
            quantity = apply_stock_buffer(record.quantity, connection.policy.stock_buffer)
            outcome = await self._propagate_to_connection(
                connection, mapping.downstream_variant_id, quantity,
                InventoryAdjustmentReason.TRANSFER, location_id=new_location_id,
            )
            if outcome.written or outcome.queued:
                synced += 1

        logger.info(f"Location change complete: zeroed {zeroed} items, synced {synced} items")
        return {"zeroed": zeroed, "synced": synced}
