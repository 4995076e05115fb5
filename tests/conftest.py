# tests/conftest.py
import random

import pytest

from stockrelay.core.config import Settings, clear_settings_cache
from stockrelay.core.enums import OrderTriggerPolicy, SyncMode
from stockrelay.integrations.base import PlatformRegistry
from stockrelay.integrations.propagation_queue import InventoryPropagationQueue
from stockrelay.schemas.inventory import InventoryRecord
from stockrelay.schemas.mapping import Connection, ConnectionPolicy, StoreCredentials, VariantMapping
from stockrelay.services.activity_logger import ActivityLogger
from stockrelay.services.dedup_store import InMemoryDedupStore
from stockrelay.services.event_service import EventService
from stockrelay.services.inventory_repository import InMemoryInventoryRepository
from stockrelay.services.inventory_sync_service import InventorySyncService
from stockrelay.services.mapping_provider import InMemoryMappingProvider
from stockrelay.services.rate_limit_service import RateLimitService
from stockrelay.services.webhook_processor import WebhookProcessor

from tests.mocks import MockInventoryPlatform, no_sleep
from tests.mocks.ids import (
    CONNECTION_ID,
    DOWNSTREAM_INVENTORY_ITEM,
    DOWNSTREAM_STORE,
    DOWNSTREAM_VARIANT,
    UPSTREAM_INVENTORY_ITEM,
    UPSTREAM_STORE,
    UPSTREAM_VARIANT,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Every test reads settings from a clean cache"""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        WEBHOOK_SECRET="test_secret",
        STORAGE_BACKEND="memory",
    )


@pytest.fixture
def rate_limiter():
    """Rate limiter without jitter so delays are exact"""
    return RateLimitService(jitter=0, rng=random.Random(7))


@pytest.fixture
def connection():
    return Connection(
        id=CONNECTION_ID,
        upstream_store_id=UPSTREAM_STORE,
        downstream_store_id=DOWNSTREAM_STORE,
        policy=ConnectionPolicy(order_trigger_policy=OrderTriggerPolicy.ON_CREATE, sync_mode=SyncMode.FULL),
    )


@pytest.fixture
def mapping_provider(connection):
    return InMemoryMappingProvider(
        connections=[connection],
        mappings=[
            VariantMapping(
                connection_id=CONNECTION_ID,
                upstream_variant_id=UPSTREAM_VARIANT,
                downstream_variant_id=DOWNSTREAM_VARIANT,
                upstream_inventory_item_id=UPSTREAM_INVENTORY_ITEM,
            )
        ],
        credentials=[
            StoreCredentials(store_id=DOWNSTREAM_STORE, shop_domain="retailer.myshopify.com", access_token="shpat_test"),
        ],
    )


@pytest.fixture
def mock_platform(rate_limiter):
    return MockInventoryPlatform(
        StoreCredentials(store_id=DOWNSTREAM_STORE, shop_domain="retailer.myshopify.com", access_token="shpat_test"),
        inventory_items={DOWNSTREAM_VARIANT: DOWNSTREAM_INVENTORY_ITEM},
        rate_limiter=rate_limiter,
    )


@pytest.fixture
def platform_registry(mapping_provider, mock_platform):
    return PlatformRegistry(mapping_provider, lambda credentials: mock_platform)


@pytest.fixture
def activity():
    return ActivityLogger()


@pytest.fixture
def propagation_queue(rate_limiter, platform_registry, activity):
    return InventoryPropagationQueue(
        rate_limiter,
        platform_registry,
        activity=activity,
        interval_seconds=0.01,
        batch_size=50,
        max_delay_ms=10000,
        sleep=no_sleep,
    )


@pytest.fixture
def inventory_repository():
    return InMemoryInventoryRepository([
        InventoryRecord(
            store_id=UPSTREAM_STORE,
            variant_id=UPSTREAM_VARIANT,
            inventory_item_id=UPSTREAM_INVENTORY_ITEM,
            quantity=10,
        )
    ])


@pytest.fixture
async def sync_service(mapping_provider, inventory_repository, rate_limiter, propagation_queue, activity):
    service = InventorySyncService(
        mapping_provider,
        inventory_repository,
        rate_limiter,
        propagation_queue,
        activity=activity,
        direct_write_max_delay_ms=5000,
        sleep=no_sleep,
    )
    yield service
    await propagation_queue.stop()


@pytest.fixture
def dedup_store():
    return InMemoryDedupStore()


@pytest.fixture
def webhook_processor(dedup_store, sync_service, propagation_queue, rate_limiter, platform_registry, mapping_provider):
    return WebhookProcessor(
        EventService(dedup_store, ttl_hours=24),
        sync_service,
        propagation_queue,
        rate_limiter,
        platform_registry,
        mappings=mapping_provider,
    )
