"""
Purpose: Defines the inbound webhook event and the typed payloads the sync
engine reads from it.

InboundEvent carries the raw delivery plus the derived fields used for
routing and deduplication (resource type, priority, payload hash,
idempotency key). It is immutable and only lives as long as the dedup window.

Payloads are a tagged union keyed by topic: parse_payload() picks the model
for the topic, and each model keeps only the fields the resolver inspects.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from stockrelay.core.enums import EventPriority, OrderEvent, ResourceType, WebhookTopic


def _str_id(v):
    if v is None or v == "":
        return None
    return str(v)


StrId = Annotated[Optional[str], BeforeValidator(_str_id)]
RequiredStrId = Annotated[str, BeforeValidator(str)]


class PayloadModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LineItem(PayloadModel):
    id: StrId = None
    variant_id: StrId = None
    quantity: int = 0
    fulfillable_quantity: Optional[int] = None
    price: StrId = None


class OrderPayload(PayloadModel):
    id: StrId = None
    order_number: Optional[int] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)
    location_id: StrId = None


class EditChange(PayloadModel):
    """One line of a native order edit; delta is always a positive unit count."""
    line_item_id: StrId = Field(default=None, alias="id")
    variant_id: StrId = None
    delta: int = 0


class OrderEditPayload(PayloadModel):
    order_id: StrId = None
    financial_status: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)
    previous_line_items: Optional[List[LineItem]] = None
    additions: List[EditChange] = Field(default_factory=list)
    removals: List[EditChange] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def unwrap_order_edit(cls, data):
        # orders/edited delivers {"order_edit": {"order_id", "line_items": {"additions", "removals"}}}
        if not isinstance(data, dict) or "order_edit" not in data:
            return data
        edit = data.get("order_edit") or {}
        changes = edit.get("line_items") or {}
        merged = {k: v for k, v in data.items() if k != "order_edit"}
        merged.setdefault("order_id", edit.get("order_id"))
        if isinstance(changes, dict):
            merged.setdefault("additions", changes.get("additions") or [])
            merged.setdefault("removals", changes.get("removals") or [])
        return merged

    @property
    def has_native_changes(self) -> bool:
        return bool(self.additions or self.removals)


class RefundLineItem(PayloadModel):
    line_item_id: StrId = None
    variant_id: StrId = None
    quantity: int = 0
    restock_type: Optional[str] = None
    location_id: StrId = None

    @model_validator(mode="before")
    @classmethod
    def lift_variant_id(cls, data):
        # Shopify nests the variant under the refunded line item
        if isinstance(data, dict) and not data.get("variant_id"):
            line_item = data.get("line_item") or {}
            if isinstance(line_item, dict) and line_item.get("variant_id") is not None:
                data = {**data, "variant_id": line_item["variant_id"]}
        return data


class RefundPayload(PayloadModel):
    id: StrId = None
    order_id: StrId = None
    refund_line_items: List[RefundLineItem] = Field(default_factory=list)


class InventoryLevelPayload(PayloadModel):
    inventory_item_id: RequiredStrId
    location_id: StrId = None
    available: Optional[int] = None


class ProductVariantPayload(PayloadModel):
    id: RequiredStrId
    sku: Optional[str] = None
    price: StrId = None
    inventory_quantity: Optional[int] = None
    inventory_item_id: StrId = None


class ProductPayload(PayloadModel):
    id: StrId = None
    title: Optional[str] = None
    status: Optional[str] = None
    variants: List[ProductVariantPayload] = Field(default_factory=list)


class AppUninstalledPayload(PayloadModel):
    id: StrId = None
    myshopify_domain: Optional[str] = None


WebhookPayload = Union[
    OrderPayload,
    OrderEditPayload,
    RefundPayload,
    InventoryLevelPayload,
    ProductPayload,
    AppUninstalledPayload,
]


PAYLOAD_MODELS: Dict[WebhookTopic, type] = {
    WebhookTopic.PRODUCTS_CREATE: ProductPayload,
    WebhookTopic.PRODUCTS_UPDATE: ProductPayload,
    WebhookTopic.PRODUCTS_DELETE: ProductPayload,
    WebhookTopic.INVENTORY_LEVELS_UPDATE: InventoryLevelPayload,
    WebhookTopic.ORDERS_CREATE: OrderPayload,
    WebhookTopic.ORDERS_UPDATED: OrderPayload,
    WebhookTopic.ORDERS_PAID: OrderPayload,
    WebhookTopic.ORDERS_CANCELLED: OrderPayload,
    WebhookTopic.ORDERS_EDITED: OrderEditPayload,
    WebhookTopic.REFUNDS_CREATE: RefundPayload,
    WebhookTopic.APP_UNINSTALLED: AppUninstalledPayload,
}


RESOURCE_TYPES: Dict[WebhookTopic, ResourceType] = {
    WebhookTopic.PRODUCTS_CREATE: ResourceType.PRODUCT,
    WebhookTopic.PRODUCTS_UPDATE: ResourceType.PRODUCT,
    WebhookTopic.PRODUCTS_DELETE: ResourceType.PRODUCT,
    WebhookTopic.INVENTORY_LEVELS_UPDATE: ResourceType.INVENTORY,
    WebhookTopic.ORDERS_CREATE: ResourceType.ORDER,
    WebhookTopic.ORDERS_UPDATED: ResourceType.ORDER,
    WebhookTopic.ORDERS_PAID: ResourceType.ORDER,
    WebhookTopic.ORDERS_CANCELLED: ResourceType.ORDER,
    WebhookTopic.ORDERS_EDITED: ResourceType.ORDER,
    WebhookTopic.REFUNDS_CREATE: ResourceType.ORDER,
    WebhookTopic.APP_UNINSTALLED: ResourceType.APP,
}


PRIORITIES: Dict[WebhookTopic, EventPriority] = {
    WebhookTopic.APP_UNINSTALLED: EventPriority.CRITICAL,
    WebhookTopic.ORDERS_CREATE: EventPriority.CRITICAL,
    WebhookTopic.INVENTORY_LEVELS_UPDATE: EventPriority.HIGH,
    WebhookTopic.ORDERS_UPDATED: EventPriority.HIGH,
    WebhookTopic.ORDERS_PAID: EventPriority.HIGH,
    WebhookTopic.ORDERS_CANCELLED: EventPriority.HIGH,
    WebhookTopic.ORDERS_EDITED: EventPriority.HIGH,
    WebhookTopic.REFUNDS_CREATE: EventPriority.HIGH,
    WebhookTopic.PRODUCTS_UPDATE: EventPriority.NORMAL,
    WebhookTopic.PRODUCTS_CREATE: EventPriority.LOW,
    WebhookTopic.PRODUCTS_DELETE: EventPriority.LOW,
}


ORDER_EVENTS: Dict[WebhookTopic, OrderEvent] = {
    WebhookTopic.ORDERS_CREATE: OrderEvent.CREATED,
    WebhookTopic.ORDERS_PAID: OrderEvent.PAID,
    WebhookTopic.ORDERS_CANCELLED: OrderEvent.CANCELLED,
    WebhookTopic.REFUNDS_CREATE: OrderEvent.REFUNDED,
    WebhookTopic.ORDERS_EDITED: OrderEvent.EDITED,
}


def parse_payload(topic: WebhookTopic, raw: Dict[str, Any]) -> WebhookPayload:
    """Validate a raw webhook body into the payload model for its topic."""
    return PAYLOAD_MODELS[topic].model_validate(raw or {})


def extract_resource_id(topic: WebhookTopic, payload: Dict[str, Any]) -> str:
    """Best identifier for the resource a delivery is about."""
    if topic == WebhookTopic.INVENTORY_LEVELS_UPDATE:
        value = payload.get("inventory_item_id")
    elif topic == WebhookTopic.ORDERS_EDITED:
        value = (payload.get("order_edit") or {}).get("order_id") or payload.get("order_id")
    else:
        value = payload.get("id")
    return str(value) if value is not None else "unknown"


class InboundEvent(BaseModel):
    """
    One webhook delivery. Build with event_service.normalize_event() so the
    hash and key are derived consistently.
    """
    model_config = ConfigDict(frozen=True)

    store_id: str
    topic: WebhookTopic
    resource_id: str
    payload: Dict[str, Any]
    payload_hash: str
    idempotency_key: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def resource_type(self) -> ResourceType:
        return RESOURCE_TYPES[self.topic]

    @property
    def priority(self) -> EventPriority:
        return PRIORITIES[self.topic]

    @property
    def order_event(self) -> Optional[OrderEvent]:
        return ORDER_EVENTS.get(self.topic)

    def parsed(self) -> WebhookPayload:
        return parse_payload(self.topic, self.payload)
