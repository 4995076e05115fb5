"""
Purpose: Builds and wires the sync engine during application startup.

build_engine() picks the storage backend from STORAGE_BACKEND, loads the
mapping records, and connects the rate limiter, platform registry,
propagation queue and services into one SyncEngine held on app.state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from stockrelay.core.config import Settings, get_settings
from stockrelay.integrations.base import PlatformRegistry
from stockrelay.integrations.platforms.shopify import ShopifyInventoryClient
from stockrelay.integrations.propagation_queue import InventoryPropagationQueue
from stockrelay.services.activity_logger import ActivityLogger
from stockrelay.services.dedup_store import DatabaseDedupStore, InMemoryDedupStore
from stockrelay.services.event_service import EventService
from stockrelay.services.inventory_repository import DatabaseInventoryRepository, InMemoryInventoryRepository
from stockrelay.services.inventory_sync_service import InventorySyncService
from stockrelay.services.mapping_provider import InMemoryMappingProvider
from stockrelay.services.rate_limit_service import RateLimitService
from stockrelay.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "database")


@dataclass
class SyncEngine:
    mappings: object
    rate_limiter: RateLimitService
    platforms: PlatformRegistry
    queue: InventoryPropagationQueue
    activity: ActivityLogger
    events: EventService
    sync: InventorySyncService
    processor: WebhookProcessor

    async def shutdown(self):
        await self.queue.stop()
        await self.platforms.close()
        if self.queue.pending:
            logger.warning(f"Shutting down with {len(self.queue)} inventory updates still queued")


def load_mappings(settings: Settings) -> InMemoryMappingProvider:
    if settings.MAPPINGS_FILE:
        return InMemoryMappingProvider.from_file(settings.MAPPINGS_FILE)
    logger.warning("MAPPINGS_FILE not set - starting with no connections")
    return InMemoryMappingProvider()


def build_engine(settings: Optional[Settings] = None, mappings=None, platform_factory=None) -> SyncEngine:
    """
    Wire the engine. `mappings` and `platform_factory` can be swapped out,
    which is how tests run the whole flow against fakes.
    """
    settings = settings or get_settings()
    backend = settings.STORAGE_BACKEND.lower()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unknown STORAGE_BACKEND '{settings.STORAGE_BACKEND}' - expected one of {STORAGE_BACKENDS}")

    if backend == "database":
        from stockrelay.database import get_session_factory

        session_factory = get_session_factory()
        dedup_store = DatabaseDedupStore(session_factory)
        inventory = DatabaseInventoryRepository(session_factory)
        activity = ActivityLogger(session_factory)
    else:
        dedup_store = InMemoryDedupStore()
        inventory = InMemoryInventoryRepository()
        activity = ActivityLogger()

    if mappings is None:
        mappings = load_mappings(settings)

    rate_limiter = RateLimitService()
    if platform_factory is None:
        def platform_factory(credentials):
            return ShopifyInventoryClient(credentials, rate_limiter)

    platforms = PlatformRegistry(mappings, platform_factory)
    queue = InventoryPropagationQueue(rate_limiter, platforms, activity=activity)
    events = EventService(dedup_store, ttl_hours=settings.IDEMPOTENCY_TTL_HOURS)
    sync = InventorySyncService(mappings, inventory, rate_limiter, queue, activity=activity)
    processor = WebhookProcessor(events, sync, queue, rate_limiter, platforms, mappings=mappings)

    logger.info(f"Sync engine ready (storage: {backend})")
    return SyncEngine(
        mappings=mappings,
        rate_limiter=rate_limiter,
        platforms=platforms,
        queue=queue,
        activity=activity,
        events=events,
        sync=sync,
        processor=processor,
    )
