# tests/unit/integrations/test_events.py
import pytest
from pydantic import ValidationError

from stockrelay.core.enums import EventPriority, OrderEvent, ResourceType, WebhookTopic
from stockrelay.integrations.events import (
    InventoryLevelPayload,
    OrderEditPayload,
    OrderPayload,
    RefundPayload,
    extract_resource_id,
    parse_payload,
)
from stockrelay.services.event_service import normalize_event


@pytest.mark.parametrize("header,topic", [
    ("orders/create", WebhookTopic.ORDERS_CREATE),
    ("orders/updated", WebhookTopic.ORDERS_UPDATED),
    ("orders/update", WebhookTopic.ORDERS_UPDATED),
    ("inventory_levels/update", WebhookTopic.INVENTORY_LEVELS_UPDATE),
    ("refunds/create", WebhookTopic.REFUNDS_CREATE),
    ("app/uninstalled", WebhookTopic.APP_UNINSTALLED),
    ("PRODUCTS_UPDATE", WebhookTopic.PRODUCTS_UPDATE),
])
def test_topic_from_header(header, topic):
    assert WebhookTopic.from_header(header) == topic


def test_unknown_topic_header_raises():
    with pytest.raises(ValueError):
        WebhookTopic.from_header("customers/create")


def test_payload_model_follows_topic():
    assert isinstance(parse_payload(WebhookTopic.ORDERS_PAID, {"id": 1}), OrderPayload)
    assert isinstance(parse_payload(WebhookTopic.ORDERS_EDITED, {"order_id": 1}), OrderEditPayload)
    assert isinstance(parse_payload(WebhookTopic.REFUNDS_CREATE, {"id": 1}), RefundPayload)


def test_numeric_ids_become_strings():
    order = OrderPayload.model_validate({"id": 4501, "line_items": [{"id": 1, "variant_id": 111, "quantity": 2}]})
    assert order.id == "4501"
    assert order.line_items[0].variant_id == "111"


def test_inventory_level_requires_inventory_item():
    with pytest.raises(ValidationError):
        InventoryLevelPayload.model_validate({"location_id": 1, "available": 3})
    level = InventoryLevelPayload.model_validate({"inventory_item_id": 5111, "location_id": 1, "available": 3})
    assert level.inventory_item_id == "5111"


def test_refund_lifts_variant_from_nested_line_item():
    refund = RefundPayload.model_validate({
        "id": 77,
        "order_id": 4501,
        "refund_line_items": [
            {"line_item_id": 1, "quantity": 2, "restock_type": "return", "line_item": {"variant_id": 111}},
        ],
    })
    assert refund.refund_line_items[0].variant_id == "111"


def test_order_edit_envelope_is_unwrapped():
    edit = OrderEditPayload.model_validate({
        "order_edit": {"order_id": 4501, "line_items": {"additions": [{"id": 9, "delta": 2}], "removals": []}},
    })
    assert edit.order_id == "4501"
    assert edit.has_native_changes
    assert edit.additions[0].line_item_id == "9"


@pytest.mark.parametrize("topic,payload,expected", [
    (WebhookTopic.INVENTORY_LEVELS_UPDATE, {"inventory_item_id": 5111}, "5111"),
    (WebhookTopic.ORDERS_EDITED, {"order_edit": {"order_id": 4501}}, "4501"),
    (WebhookTopic.ORDERS_CREATE, {"id": 4501}, "4501"),
    (WebhookTopic.ORDERS_CREATE, {}, "unknown"),
])
def test_resource_id(topic, payload, expected):
    assert extract_resource_id(topic, payload) == expected


def test_inbound_event_derived_fields():
    event = normalize_event("shop-a", WebhookTopic.ORDERS_CREATE, {"id": 4501, "line_items": []})
    assert event.resource_type == ResourceType.ORDER
    assert event.priority == EventPriority.CRITICAL
    assert event.order_event == OrderEvent.CREATED
    assert event.idempotency_key.startswith("shop-a:ORDERS_CREATE:4501:")

    products = normalize_event("shop-a", WebhookTopic.PRODUCTS_CREATE, {"id": 1})
    assert products.priority == EventPriority.LOW
    assert products.order_event is None
    assert products.priority > event.priority


def test_inbound_event_is_frozen():
    event = normalize_event("shop-a", WebhookTopic.ORDERS_CREATE, {"id": 4501})
    with pytest.raises(ValidationError):
        event.store_id = "shop-b"
