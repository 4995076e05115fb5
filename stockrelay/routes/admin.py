import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from stockrelay.core.exceptions import InventoryItemNotFoundError, MappingNotFoundError
from stockrelay.core.security import get_current_username
from stockrelay.dependencies import get_sync_engine
from stockrelay.integrations.setup import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class LocationChangeRequest(BaseModel):
    old_location_id: Optional[str] = None
    new_location_id: str


@router.get("/sync/rate-limits")
async def rate_limit_health(
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    return engine.rate_limiter.get_health_summary()


@router.get("/sync/rate-limits/{store_id}")
async def rate_limit_state(
    store_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    state = engine.rate_limiter.get_state(store_id)
    return {
        **state.to_dict(),
        "required_delay_ms": engine.rate_limiter.get_required_delay(store_id),
        "dead_lettered": engine.rate_limiter.should_use_dlq(store_id),
    }


@router.post("/sync/rate-limits/{store_id}/reset")
async def reset_rate_limit(
    store_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    """Operator recovery for a dead-lettered store; queued updates resume on the next flush."""
    engine.rate_limiter.reset_state(store_id)
    engine.queue.start_if_idle()
    logger.info(f"Rate limit state for store {store_id} reset by {current_user}")
    return {"status": "reset", "store_id": store_id, "pending": len(engine.queue)}


@router.get("/sync/queue")
async def queue_status(
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    by_store = {}
    for update in engine.queue.pending:
        by_store[update.downstream_store_id] = by_store.get(update.downstream_store_id, 0) + 1
    return {"pending": len(engine.queue), "running": engine.queue.is_running, "by_store": by_store}


@router.get("/sync/activity")
async def recent_activity(
    action: Optional[str] = None,
    limit: int = 50,
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    return {"entries": engine.activity.recent_entries(action=action, limit=limit)}


@router.post("/sync/stores/{store_id}/variants/{variant_id}")
async def sync_variant(
    store_id: str,
    variant_id: str,
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    """Push the tracked quantity of one upstream variant to all connected stores"""
    try:
        outcomes = await engine.sync.sync_product_inventory(store_id, variant_id)
    except InventoryItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"outcomes": [o.model_dump(mode="json") for o in outcomes]}


@router.post("/connections/{connection_id}/location")
async def change_location(
    connection_id: str,
    request: LocationChangeRequest,
    engine: SyncEngine = Depends(get_sync_engine),
    current_user: str = Depends(get_current_username)
):
    try:
        result = await engine.sync.handle_location_change(
            connection_id, request.old_location_id, request.new_location_id
        )
    except MappingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    # The mapping service owns the record; the bundled provider can take the change directly
    if hasattr(engine.mappings, "update_policy"):
        engine.mappings.update_policy(connection_id, inventory_location_id=request.new_location_id)
    return result
