# tests/unit/integrations/test_setup.py
import json

import pytest

from stockrelay.core.config import Settings
from stockrelay.integrations.platforms.shopify import ShopifyInventoryClient
from stockrelay.integrations.setup import build_engine

from tests.mocks.ids import DOWNSTREAM_STORE


@pytest.mark.asyncio
async def test_memory_engine_from_mappings_file(tmp_path):
    path = tmp_path / "mappings.json"
    path.write_text(json.dumps({
        "connections": [{"id": "conn-1", "upstream_store_id": "supplier-shop", "downstream_store_id": DOWNSTREAM_STORE}],
        "mappings": [{"connection_id": "conn-1", "upstream_variant_id": 111, "downstream_variant_id": 911}],
        "stores": [{"store_id": DOWNSTREAM_STORE, "shop_domain": "retailer.myshopify.com", "access_token": "shpat_test"}],
    }))

    engine = build_engine(Settings(STORAGE_BACKEND="memory", MAPPINGS_FILE=str(path)))

    assert [c.id for c in await engine.mappings.get_connections("supplier-shop")] == ["conn-1"]
    platform = await engine.platforms.get(DOWNSTREAM_STORE)
    assert isinstance(platform, ShopifyInventoryClient)
    assert platform.rate_limiter is engine.rate_limiter
    assert engine.sync.queue is engine.queue
    await engine.shutdown()


def test_engine_without_mappings_file_starts_empty():
    engine = build_engine(Settings(STORAGE_BACKEND="memory"))
    assert engine.mappings._connections == {}


def test_unknown_storage_backend():
    with pytest.raises(ValueError):
        build_engine(Settings(STORAGE_BACKEND="redis"))
