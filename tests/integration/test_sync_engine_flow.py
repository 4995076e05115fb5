# tests/integration/test_sync_engine_flow.py
"""
End-to-end flows through the webhook processor: deliveries in, authoritative
quantity tracked, downstream writes out through the direct path or queue.
"""
import asyncio

import pytest

from stockrelay.core.enums import OrderTriggerPolicy, WebhookTopic
from stockrelay.core.exceptions import ShopifyRateLimitError

from tests.mocks.ids import (
    CONNECTION_ID,
    DOWNSTREAM_STORE,
    DOWNSTREAM_VARIANT,
    UPSTREAM_INVENTORY_ITEM,
    UPSTREAM_STORE,
    UPSTREAM_VARIANT,
)


async def _wait_until(condition, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _order(financial_status, quantity=3):
    return {
        "id": 4501,
        "financial_status": financial_status,
        "line_items": [{"id": 1, "variant_id": int(UPSTREAM_VARIANT), "quantity": quantity}],
    }


def _level(available):
    return {"inventory_item_id": int(UPSTREAM_INVENTORY_ITEM), "location_id": 1, "available": available}


async def _tracked(repository):
    return (await repository.get(UPSTREAM_STORE, UPSTREAM_VARIANT)).quantity


@pytest.mark.asyncio
async def test_paid_order_lifecycle_with_refund(webhook_processor, mapping_provider, inventory_repository, mock_platform):
    mapping_provider.update_policy(CONNECTION_ID, order_trigger_policy=OrderTriggerPolicy.ON_PAID)

    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.ORDERS_CREATE, _order("pending"))
    assert await _tracked(inventory_repository) == 10
    assert mock_platform.set_calls == []

    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.ORDERS_PAID, _order("paid"))
    assert await _tracked(inventory_repository) == 7
    assert mock_platform.quantity_for(DOWNSTREAM_VARIANT) == 7

    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.REFUNDS_CREATE, {
        "id": 77,
        "order_id": 4501,
        "refund_line_items": [
            {"line_item_id": 1, "quantity": 3, "restock_type": "return", "line_item": {"variant_id": int(UPSTREAM_VARIANT)}},
        ],
    })
    assert await _tracked(inventory_repository) == 10
    assert mock_platform.written_quantities == [7, 10]


@pytest.mark.asyncio
async def test_order_edit_increase(webhook_processor, inventory_repository, mock_platform):
    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.ORDERS_EDITED, {
        "order_edit": {"order_id": 4501, "line_items": {"additions": [], "removals": []}},
        "financial_status": "paid",
        "line_items": [{"id": 1, "variant_id": int(UPSTREAM_VARIANT), "quantity": 5}],
        "previous_line_items": [{"id": 1, "variant_id": int(UPSTREAM_VARIANT), "quantity": 2}],
    })

    assert await _tracked(inventory_repository) == 7
    assert mock_platform.quantity_for(DOWNSTREAM_VARIANT) == 7


@pytest.mark.asyncio
async def test_safety_stock_from_level_updates(webhook_processor, mapping_provider, mock_platform):
    mapping_provider.update_policy(CONNECTION_ID, safety_stock_quantity=5)

    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.INVENTORY_LEVELS_UPDATE, _level(100))
    assert mock_platform.quantity_for(DOWNSTREAM_VARIANT) == 95

    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.INVENTORY_LEVELS_UPDATE, _level(3))
    assert mock_platform.quantity_for(DOWNSTREAM_VARIANT) == 0


@pytest.mark.asyncio
async def test_repeated_rate_limits_dead_letter_until_reset(webhook_processor, propagation_queue, rate_limiter, mock_platform):
    mock_platform.responses.extend(ShopifyRateLimitError() for _ in range(5))

    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.INVENTORY_LEVELS_UPDATE, _level(6))
    await _wait_until(lambda: rate_limiter.should_use_dlq(DOWNSTREAM_STORE))

    assert len(mock_platform.set_calls) == 5
    assert len(propagation_queue) == 1
    await asyncio.sleep(0.05)
    assert len(mock_platform.set_calls) == 5

    rate_limiter.reset_state(DOWNSTREAM_STORE)
    propagation_queue.start_if_idle()
    await _wait_until(lambda: mock_platform.quantity_for(DOWNSTREAM_VARIANT) == 6)
    assert rate_limiter.get_required_delay(DOWNSTREAM_STORE) == 0


@pytest.mark.asyncio
async def test_queued_updates_collapse_to_latest(webhook_processor, rate_limiter, mock_platform):
    for _ in range(5):
        rate_limiter.record_throttled(DOWNSTREAM_STORE)

    for available in (9, 8, 6):
        await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.INVENTORY_LEVELS_UPDATE, _level(available))
    assert mock_platform.set_calls == []

    rate_limiter.reset_state(DOWNSTREAM_STORE)
    await _wait_until(lambda: mock_platform.set_calls)

    assert mock_platform.written_quantities == [6]


@pytest.mark.asyncio
async def test_uninstall_drops_queued_work(webhook_processor, propagation_queue, rate_limiter, mock_platform):
    for _ in range(5):
        rate_limiter.record_throttled(DOWNSTREAM_STORE)
    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.ORDERS_CREATE, _order("pending", quantity=1))
    await webhook_processor.handle(UPSTREAM_STORE, WebhookTopic.INVENTORY_LEVELS_UPDATE, _level(4))
    assert len(propagation_queue) == 2

    await webhook_processor.handle(DOWNSTREAM_STORE, WebhookTopic.APP_UNINSTALLED, {"id": 1})

    assert len(propagation_queue) == 0
    await asyncio.sleep(0.05)
    assert mock_platform.set_calls == []
