# stockrelay/services/event_service.py
"""
Idempotency gate for inbound webhooks.

Shopify delivers webhooks at least once and in no particular order, so each
delivery is fingerprinted as

    {store_id}:{topic}:{resource_id}:{payload_hash}

where payload_hash covers only the business-relevant fields of the payload
(quantities, prices, statuses). Two deliveries that differ only by
timestamps hash the same; any change a handler would act on does not.

A key is written to the dedup store only after its handler succeeds. When a
handler raises, nothing is recorded and the exception reaches the caller, so
the platform's retry is processed rather than skipped.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from stockrelay.core.config import get_settings
from stockrelay.core.enums import WebhookTopic
from stockrelay.core.exceptions import DedupStoreError
from stockrelay.integrations.events import InboundEvent, extract_resource_id
from stockrelay.services.dedup_store import DedupStore

logger = logging.getLogger(__name__)

PAYLOAD_HASH_LENGTH = 16

# Keys that change on every delivery without changing what the event means
VOLATILE_KEYS = frozenset({"updated_at", "processed_at"})


def _pick(item: Any, *fields: str) -> Any:
    if not isinstance(item, dict):
        return item
    return {f: item.get(f) for f in fields}


def _strip_volatile(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_volatile(v) for k, v in value.items() if k not in VOLATILE_KEYS}
    if isinstance(value, list):
        return [_strip_volatile(v) for v in value]
    return value


def extract_relevant_fields(payload: Any) -> Any:
    """Reduce a webhook body to the fields that carry business meaning."""
    if not isinstance(payload, dict):
        return payload

    # Order edits and refunds first: both can also carry order-like fields
    if "order_edit" in payload or "previous_line_items" in payload:
        return _strip_volatile(payload)

    if "refund_line_items" in payload:
        return {
            "id": payload.get("id"),
            "order_id": payload.get("order_id"),
            "refund_line_items": [
                {
                    "line_item_id": rli.get("line_item_id"),
                    "variant_id": rli.get("variant_id") or (rli.get("line_item") or {}).get("variant_id"),
                    "quantity": rli.get("quantity"),
                    "restock_type": rli.get("restock_type"),
                }
                for rli in payload.get("refund_line_items") or []
                if isinstance(rli, dict)
            ],
        }

    if "title" in payload and "variants" in payload:
        return {
            "id": payload.get("id"),
            "title": payload.get("title"),
            "status": payload.get("status"),
            "variants": [
                _pick(v, "id", "sku", "price", "inventory_quantity")
                for v in payload.get("variants") or []
            ],
        }

    if "inventory_item_id" in payload:
        return _pick(payload, "inventory_item_id", "location_id", "available")

    if "order_number" in payload or "financial_status" in payload:
        return {
            "id": payload.get("id"),
            "order_number": payload.get("order_number"),
            "financial_status": payload.get("financial_status"),
            "fulfillment_status": payload.get("fulfillment_status"),
            "cancelled_at": payload.get("cancelled_at"),
            "line_items": [
                _pick(li, "id", "variant_id", "quantity", "fulfillable_quantity", "price")
                for li in payload.get("line_items") or []
            ],
            "fulfillments": [
                _pick(f, "id", "status", "tracking_number")
                for f in payload.get("fulfillments") or []
            ],
            "refunds": [
                _pick(r, "id") for r in payload.get("refunds") or []
            ],
        }

    # app/uninstalled and anything unrecognised
    return _strip_volatile(payload)


def hash_payload(payload: Any) -> str:
    relevant = extract_relevant_fields(payload)
    canonical = json.dumps(relevant, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:PAYLOAD_HASH_LENGTH]


def generate_idempotency_key(store_id: str, topic: WebhookTopic, resource_id: str, payload: Any) -> str:
    topic_value = topic.value if isinstance(topic, WebhookTopic) else str(topic)
    return f"{store_id}:{topic_value}:{resource_id}:{hash_payload(payload)}"


def normalize_event(
    store_id: str,
    topic: WebhookTopic,
    payload: Dict[str, Any],
    resource_id: Optional[str] = None,
    received_at: Optional[datetime] = None,
) -> InboundEvent:
    """Build an InboundEvent with its hash and idempotency key filled in."""
    payload = payload or {}
    if resource_id is None:
        resource_id = extract_resource_id(topic, payload)
    payload_hash = hash_payload(payload)
    return InboundEvent(
        store_id=store_id,
        topic=topic,
        resource_id=str(resource_id),
        payload=payload,
        payload_hash=payload_hash,
        idempotency_key=f"{store_id}:{topic.value}:{resource_id}:{payload_hash}",
        received_at=received_at or datetime.now(timezone.utc),
    )


def _snapshot(result: Any) -> Any:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if result is None:
        return "success"
    return json.loads(json.dumps(result, default=str))


@dataclass
class IdempotentResult:
    processed: bool
    skipped: bool
    result: Any = None


class EventService:
    def __init__(self, store: DedupStore, ttl_hours: Optional[int] = None):
        self.store = store
        self.ttl_seconds = int((ttl_hours if ttl_hours is not None else get_settings().IDEMPOTENCY_TTL_HOURS) * 3600)

    async def is_processed(self, key: str) -> bool:
        try:
            return await self.store.exists(key)
        except DedupStoreError as e:
            # Reprocessing a duplicate is recoverable, dropping an event is not
            logger.error(f"Error checking idempotency key {key}: {e}")
            return False

    async def mark_processed(self, key: str, result: Any = None) -> None:
        value = {
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "result": _snapshot(result),
        }
        try:
            await self.store.set_with_ttl(key, value, self.ttl_seconds)
        except DedupStoreError as e:
            logger.error(f"Error marking event {key} as processed: {e}")

    async def process_with_idempotency(
        self,
        event: InboundEvent,
        handler: Callable[[], Awaitable[Any]],
    ) -> IdempotentResult:
        """
        Run handler once per idempotency key.

        Already-seen keys are skipped without calling the handler. If the
        handler raises, the key stays unrecorded and the exception propagates.
        """
        if await self.is_processed(event.idempotency_key):
            logger.info(f"Event already processed, skipping: {event.idempotency_key}")
            return IdempotentResult(processed=False, skipped=True)

        result = await handler()
        await self.mark_processed(event.idempotency_key, result)
        return IdempotentResult(processed=True, skipped=False, result=result)

    async def purge_expired(self) -> int:
        return await self.store.purge_expired()
