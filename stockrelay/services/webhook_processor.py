"""
Purpose: Entry point for inbound webhook deliveries.

Each delivery is normalized into an InboundEvent, passed through the
idempotency gate and dispatched by topic to InventorySyncService. A handler
error propagates so the route can answer 500 and the platform retries; the
event is not recorded as processed in that case.
"""

import logging
from typing import Any, Dict

from stockrelay.core.enums import WebhookTopic
from stockrelay.integrations.base import PlatformRegistry
from stockrelay.integrations.events import InboundEvent
from stockrelay.integrations.propagation_queue import InventoryPropagationQueue
from stockrelay.services.event_service import EventService, IdempotentResult, normalize_event
from stockrelay.services.inventory_sync_service import InventorySyncService
from stockrelay.services.rate_limit_service import RateLimitService

logger = logging.getLogger(__name__)

PRODUCT_TOPICS = frozenset({
    WebhookTopic.PRODUCTS_CREATE,
    WebhookTopic.PRODUCTS_UPDATE,
})


class WebhookProcessor:
    def __init__(
        self,
        events: EventService,
        sync: InventorySyncService,
        queue: InventoryPropagationQueue,
        rate_limiter: RateLimitService,
        platforms: PlatformRegistry,
        mappings=None,
    ):
        self.events = events
        self.sync = sync
        self.queue = queue
        self.rate_limiter = rate_limiter
        self.platforms = platforms
        self.mappings = mappings

    async def handle(self, store_id: str, topic: WebhookTopic, payload: Dict[str, Any]) -> IdempotentResult:
        event = normalize_event(store_id, topic, payload)
        logger.info(
            f"Webhook {event.topic.value} for store {store_id} "
            f"(resource {event.resource_id}, priority {event.priority.name})"
        )
        return await self.events.process_with_idempotency(event, lambda: self.dispatch(event))

    async def dispatch(self, event: InboundEvent) -> Dict[str, Any]:
        topic = event.topic
        payload = event.parsed()

        if topic == WebhookTopic.INVENTORY_LEVELS_UPDATE:
            outcomes = await self.sync.update_upstream_inventory(event.store_id, payload)
            return {"outcomes": [o.model_dump(mode="json") for o in outcomes]}

        if topic == WebhookTopic.ORDERS_UPDATED:
            # Lifecycle changes arrive on their own topics (paid, cancelled, edited)
            logger.debug(f"Order {event.resource_id} updated - no inventory action")
            return {"processed": False, "reason": "orders/updated carries no inventory change"}

        if event.order_event is not None:
            return await self.sync.process_order_event(event.store_id, event.order_event, payload)

        if topic in PRODUCT_TOPICS:
            created = await self.sync.register_product_variants(event.store_id, payload)
            return {"tracked": created}

        if topic == WebhookTopic.PRODUCTS_DELETE:
            logger.info(f"Product {event.resource_id} deleted in store {event.store_id}")
            return {"processed": False, "reason": "product deletion is handled by the mapping service"}

        if topic == WebhookTopic.APP_UNINSTALLED:
            return await self.handle_uninstall(event.store_id)

        logger.warning(f"No handler for topic {topic.value}")
        return {"processed": False, "reason": f"unhandled topic {topic.value}"}

    async def handle_uninstall(self, store_id: str) -> Dict[str, Any]:
        purged = self.queue.purge_store(store_id)
        self.rate_limiter.reset_state(store_id)
        await self.platforms.evict(store_id)
        # drop credentials so the next enqueue cannot rebuild a client
        if hasattr(self.mappings, "remove_store"):
            self.mappings.remove_store(store_id)
        logger.warning(f"App uninstalled from store {store_id}: purged {purged} queued updates")
        return {"purged": purged}
