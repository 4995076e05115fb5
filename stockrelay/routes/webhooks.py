import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from stockrelay.core.config import get_settings
from stockrelay.core.enums import WebhookTopic
from stockrelay.core.security import verify_shopify_hmac
from stockrelay.dependencies import get_sync_engine
from stockrelay.integrations.setup import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


async def verify_webhook_signature(request: Request, x_shopify_hmac_sha256: str = Header(None)):
    """Verify the Shopify webhook signature when a secret is configured"""
    secret = get_settings().WEBHOOK_SECRET
    if not secret:
        return
    body = await request.body()
    if not verify_shopify_hmac(body, x_shopify_hmac_sha256, secret):
        raise HTTPException(status_code=401, detail="Invalid signature")


@router.post("/webhooks/{store_id}")
async def receive_webhook(
    store_id: str,
    request: Request,
    x_shopify_topic: str = Header(...),
    engine: SyncEngine = Depends(get_sync_engine),
    _: None = Depends(verify_webhook_signature),
):
    """Receive a store webhook and run it through the sync engine"""
    try:
        topic = WebhookTopic.from_header(x_shopify_topic)
    except ValueError:
        logger.info(f"Ignoring unsupported webhook topic {x_shopify_topic} from store {store_id}")
        return {"status": "ignored", "topic": x_shopify_topic}

    try:
        payload = json.loads(await request.body() or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        logger.error(f"Non-object {topic.value} payload from store {store_id}: {type(payload).__name__}")
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    try:
        outcome = await engine.processor.handle(store_id, topic, payload)
    except ValidationError as e:
        logger.error(f"Malformed {topic.value} payload from store {store_id}: {e}")
        raise HTTPException(status_code=400, detail=f"Malformed {topic.value} payload")
    except Exception as e:
        logger.exception(f"Error processing {topic.value} webhook for store {store_id}: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {
        "status": "skipped" if outcome.skipped else "processed",
        "topic": topic.value,
    }
