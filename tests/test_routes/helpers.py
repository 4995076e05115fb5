# tests/test_routes/helpers.py
import base64
import hashlib
import hmac
import json

WEBHOOK_SECRET = "test_secret"
ADMIN_AUTH = ("admin", "changeme")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def webhook_request(client, store_id, topic, payload, secret=WEBHOOK_SECRET):
    body = json.dumps(payload).encode()
    return client.post(
        f"/webhooks/{store_id}",
        content=body,
        headers={
            "X-Shopify-Topic": topic,
            "X-Shopify-Hmac-Sha256": sign(body, secret),
            "Content-Type": "application/json",
        },
    )
