"""
Purpose: In-process batching queue for downstream inventory writes.

Updates that cannot be written immediately (store throttled, dead-lettered,
or a transient failure) wait here. A single flush task wakes every
QUEUE_FLUSH_INTERVAL_SECONDS, or sooner once QUEUE_BATCH_SIZE updates are
pending, takes up to QUEUE_BATCH_SIZE updates, groups them by downstream
store and writes each store's share with one inventorySetQuantities call.

Writes are absolute quantities, so re-queueing and re-sending is safe
(at-least-once). Within one store and one tick, updates keep enqueue order
and repeated (variant, location) pairs collapse to the last one.

Only one write per (store, variant, location) is in flight at a time. A
retried update never lands behind a newer pending one for the same key, so
the newest quantity is always the last one written.

The flush task stops itself when the queue drains and is started again by
the next enqueue.
"""

import asyncio
import logging
from collections import OrderedDict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Iterator, List, Optional, Set, Tuple

from stockrelay.core.config import get_settings
from stockrelay.core.exceptions import ShopifyAPIError, ShopifyServiceError
from stockrelay.integrations.base import InventoryQuantity, PlatformRegistry, RemoteInventoryPlatform
from stockrelay.schemas.inventory import PendingInventoryUpdate
from stockrelay.services.rate_limit_service import DLQ_SENTINEL, RateLimitService

logger = logging.getLogger(__name__)


@dataclass
class WriteReport:
    written: List[PendingInventoryUpdate] = field(default_factory=list)
    retry: List[PendingInventoryUpdate] = field(default_factory=list)
    dropped: List[PendingInventoryUpdate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class FlushReport:
    taken: int = 0
    written: int = 0
    requeued: int = 0
    dropped: int = 0
    stores: int = 0


def _unsettled(updates: List[PendingInventoryUpdate], report: WriteReport) -> List[PendingInventoryUpdate]:
    settled = {id(u) for u in report.written} | {id(u) for u in report.dropped}
    return [u for u in updates if id(u) not in settled]


WriteKey = Tuple[str, str, Optional[str]]


def write_key(update: PendingInventoryUpdate) -> WriteKey:
    return (update.downstream_store_id, update.downstream_variant_id, update.location_id)


def collapse_updates(updates: List[PendingInventoryUpdate]) -> List[PendingInventoryUpdate]:
    """Last write wins per (variant, location); keeps first-seen order."""
    latest: "OrderedDict[Tuple[str, Optional[str]], PendingInventoryUpdate]" = OrderedDict()
    for update in updates:
        latest[(update.downstream_variant_id, update.location_id)] = update
    return list(latest.values())


class InventoryPropagationQueue:
    def __init__(
        self,
        rate_limiter: RateLimitService,
        platforms: PlatformRegistry,
        activity=None,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.rate_limiter = rate_limiter
        self.platforms = platforms
        self.activity = activity
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.QUEUE_FLUSH_INTERVAL_SECONDS
        self.batch_size = batch_size or settings.QUEUE_BATCH_SIZE
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else settings.QUEUE_MAX_DELAY_MS
        self._sleep = sleep
        self._pending: Deque[PendingInventoryUpdate] = deque()
        self._task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._direct: Set[WriteKey] = set()
        self._flushing: Set[WriteKey] = set()

    def __len__(self):
        return len(self._pending)

    @property
    def pending(self) -> List[PendingInventoryUpdate]:
        return list(self._pending)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, update: PendingInventoryUpdate, start: bool = True):
        self._pending.append(update)
        logger.info(
            f"Queued inventory update for variant {update.downstream_variant_id} "
            f"on store {update.downstream_store_id} (qty {update.quantity}, {len(self._pending)} pending)"
        )
        if len(self._pending) >= self.batch_size and self._wakeup is not None:
            self._wakeup.set()
        if start:
            self.start_if_idle()

    def _pending_keys(self) -> Set[WriteKey]:
        return {write_key(u) for u in self._pending}

    def is_busy(self, update: PendingInventoryUpdate) -> bool:
        """True when a write for the same key is pending or in flight."""
        key = write_key(update)
        return key in self._direct or key in self._flushing or key in self._pending_keys()

    @contextmanager
    def direct_write(self, update: PendingInventoryUpdate) -> Iterator[None]:
        """Claim an update's key for a write made outside the flush loop."""
        key = write_key(update)
        self._direct.add(key)
        try:
            yield
        finally:
            self._direct.discard(key)

    def requeue(self, updates: List[PendingInventoryUpdate], start: bool = True) -> int:
        """
        Put failed updates back with attempts + 1. An update whose key
        already has a pending entry is dropped: the pending one is newer.
        """
        newer = self._pending_keys()
        requeued = 0
        for update in updates:
            if write_key(update) in newer:
                logger.info(f"Not re-queueing stale update for variant {update.downstream_variant_id} - newer update pending")
                continue
            self._pending.append(update.model_copy(update={"attempts": update.attempts + 1}))
            requeued += 1
        if requeued and start:
            self.start_if_idle()
        return requeued

    def start_if_idle(self) -> bool:
        if self.is_running or not self._pending:
            return False
        loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        if len(self._pending) >= self.batch_size:
            self._wakeup.set()
        self._task = loop.create_task(self._run())
        logger.info("Starting inventory batch processor")
        return True

    async def stop(self):
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Inventory batch processor stopped with {len(self._pending)} updates pending")

    def purge_store(self, store_id: str) -> int:
        kept = [u for u in self._pending if u.downstream_store_id != store_id]
        purged = len(self._pending) - len(kept)
        self._pending = deque(kept)
        if purged:
            logger.info(f"Purged {purged} pending inventory updates for store {store_id}")
        return purged

    async def _run(self):
        while self._pending:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            try:
                await self.flush_once()
            except Exception as e:
                logger.error(f"Inventory batch flush failed: {e}", exc_info=True)
        logger.info("Batch processor stopped - no pending updates")

    def _put_back(self, updates: List[PendingInventoryUpdate]):
        newer = self._pending_keys()
        self._pending.extend(u for u in updates if write_key(u) not in newer)

    async def flush_once(self) -> FlushReport:
        """Process one tick: up to batch_size updates, grouped by store."""
        report = FlushReport()
        batch: List[PendingInventoryUpdate] = []
        held: List[PendingInventoryUpdate] = []
        while self._pending and len(batch) < self.batch_size:
            update = self._pending.popleft()
            # wait for the direct write on this key to finish first
            if write_key(update) in self._direct:
                held.append(update)
            else:
                batch.append(update)
        self._pending.extendleft(reversed(held))
        if not batch:
            return report

        keys = {write_key(u) for u in batch}
        self._flushing |= keys
        try:
            await self._flush_batch(batch, report)
        finally:
            self._flushing -= keys
        return report

    async def _flush_batch(self, batch: List[PendingInventoryUpdate], report: FlushReport):
        by_store: "OrderedDict[str, List[PendingInventoryUpdate]]" = OrderedDict()
        for update in batch:
            by_store.setdefault(update.downstream_store_id, []).append(update)

        report.taken = len(batch)
        report.stores = len(by_store)
        logger.info(f"Processing batch of {len(batch)} inventory updates across {len(by_store)} stores")

        for store_id, updates in by_store.items():
            try:
                await self._flush_store(store_id, updates, report)
            except Exception as e:
                logger.error(f"Failed to process batch for store {store_id}: {e}", exc_info=True)
                report.requeued += self.requeue(updates, start=False)

    async def _flush_store(self, store_id: str, updates: List[PendingInventoryUpdate], report: FlushReport):
        delay_ms = self.rate_limiter.get_required_delay(store_id)
        if delay_ms == DLQ_SENTINEL or delay_ms > self.max_delay_ms:
            logger.warning(f"Rate limit still exceeded for store {store_id} (delay {delay_ms}) - re-queueing {len(updates)} updates")
            self._put_back(updates)
            report.requeued += len(updates)
            return
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

        result = await self.write(store_id, updates)
        report.requeued += self.requeue(result.retry, start=False)
        report.written += len(result.written)
        report.dropped += len(result.dropped)

    async def write(self, store_id: str, updates: List[PendingInventoryUpdate]) -> WriteReport:
        """
        Write updates for one store now, without touching the queue.

        Transient failures come back in `retry`; validation failures and
        local problems (no credentials, unknown variant) come back in
        `dropped`. Siblings of a rejected update are re-sent once.
        """
        report = WriteReport()
        updates = collapse_updates(updates)
        if not updates:
            return report

        platform = await self.platforms.get(store_id)
        if platform is None:
            logger.error(f"Store {store_id} not found for batch processing - dropping {len(updates)} updates")
            report.dropped.extend(updates)
            report.errors.append("missing credentials")
            await self._audit(store_id, updates, report)
            return report

        try:
            pairs = await self._build_quantities(platform, updates, report)
            if pairs:
                await self._send(platform, pairs, report, resend_siblings=True)
        except ShopifyAPIError as e:
            logger.warning(f"Transient error writing inventory for store {store_id}: {e}")
            remaining = _unsettled(updates, report)
            report.retry.extend(remaining)
            report.errors.append(str(e))
        except ShopifyServiceError as e:
            logger.error(f"Shopify rejected inventory write for store {store_id}: {e}")
            remaining = _unsettled(updates, report)
            report.dropped.extend(remaining)
            report.errors.append(str(e))

        await self._audit(store_id, updates, report)
        return report

    async def _build_quantities(
        self, platform: RemoteInventoryPlatform, updates: List[PendingInventoryUpdate], report: WriteReport
    ) -> List[Tuple[PendingInventoryUpdate, InventoryQuantity]]:
        item_ids = await platform.get_inventory_item_ids([u.downstream_variant_id for u in updates])

        default_location = None
        if any(not u.location_id for u in updates):
            default_location = await platform.get_primary_location_id()

        pairs = []
        for update in updates:
            inventory_item_id = item_ids.get(update.downstream_variant_id)
            if not inventory_item_id:
                logger.warning(f"No inventory item found for variant {update.downstream_variant_id} - dropping update")
                report.dropped.append(update)
                continue
            location_id = update.location_id or default_location
            if not location_id:
                logger.error(f"No location to write variant {update.downstream_variant_id} on store {update.downstream_store_id}")
                report.dropped.append(update)
                continue
            pairs.append((update, InventoryQuantity(
                inventory_item_id=inventory_item_id,
                location_id=location_id,
                quantity=update.quantity,
            )))

        if not pairs:
            logger.warning("No valid inventory items to update in batch")
        return pairs

    async def _send(
        self,
        platform: RemoteInventoryPlatform,
        pairs: List[Tuple[PendingInventoryUpdate, InventoryQuantity]],
        report: WriteReport,
        resend_siblings: bool,
    ):
        result = await platform.set_inventory_quantities([q for _, q in pairs])
        if result.success:
            report.written.extend(u for u, _ in pairs)
            return

        messages = [e.message for e in result.user_errors]
        report.errors.extend(messages)
        rejected = result.rejected_indexes()
        if rejected is None or not resend_siblings:
            logger.error(f"Dropping {len(pairs)} inventory updates for store {platform.store_id}: {messages}")
            report.dropped.extend(u for u, _ in pairs)
            return

        siblings = []
        for index, pair in enumerate(pairs):
            if index in rejected:
                logger.error(f"Dropping inventory update for variant {pair[0].downstream_variant_id}: rejected by Shopify")
                report.dropped.append(pair[0])
            else:
                siblings.append(pair)
        if siblings:
            await self._send(platform, siblings, report, resend_siblings=False)

    async def _audit(self, store_id: str, updates: List[PendingInventoryUpdate], report: WriteReport):
        if self.activity is None:
            return
        connection_ids = sorted({u.connection_id for u in updates if u.connection_id})
        await self.activity.log_sync(
            store_id=store_id,
            success=not report.dropped and not report.retry,
            item_count=len(report.written),
            connection_id=connection_ids[0] if len(connection_ids) == 1 else None,
            details={
                "written": len(report.written),
                "retry": len(report.retry),
                "dropped": len(report.dropped),
                "errors": report.errors[:10],
            },
        )
