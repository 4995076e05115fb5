import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from stockrelay.core.config import get_settings
from stockrelay.core.exceptions import ShopifyAPIError, ShopifyRateLimitError, ShopifyServiceError
from stockrelay.integrations.base import (
    InventoryQuantity,
    RemoteInventoryPlatform,
    SetQuantitiesResult,
    UserError,
)
from stockrelay.schemas.mapping import StoreCredentials
from stockrelay.services.rate_limit_service import RateLimitService

logger = logging.getLogger(__name__)

# Shopify caps nodes(ids:) at 250 ids per query
NODES_PAGE_SIZE = 250

TRANSIENT_GRAPHQL_CODES = {"THROTTLED", "INTERNAL_SERVER_ERROR", "TIMEOUT"}

LOCATIONS_QUERY = """
query {
  locations(first: 1) {
    edges {
      node {
        id
      }
    }
  }
}
"""

VARIANT_INVENTORY_ITEMS_QUERY = """
query getVariantInventoryItems($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on ProductVariant {
      id
      inventoryItem {
        id
      }
    }
  }
}
"""

SET_QUANTITIES_MUTATION = """
mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup {
      reason
      changes {
        name
        delta
      }
    }
    userErrors {
      field
      message
      code
    }
  }
}
"""


def to_gid(resource: str, value: str) -> str:
    value = str(value)
    if value.startswith("gid://"):
        return value
    return f"gid://shopify/{resource}/{value}"


class ShopifyInventoryClient(RemoteInventoryPlatform):
    """
    Async GraphQL client for one downstream Shopify store's inventory.

    Every response (success, 429 or THROTTLED) is reported to the
    RateLimitService so the propagation path can back off per store.
    Inventory item ids and the primary location are cached for the life of
    the client.
    """

    def __init__(
        self,
        credentials: StoreCredentials,
        rate_limiter: RateLimitService,
        timeout: Optional[float] = None,
    ):
        super().__init__(credentials)
        settings = get_settings()
        self.rate_limiter = rate_limiter
        self.api_version = credentials.api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_REQUEST_TIMEOUT
        self.graphql_url = f"https://{credentials.shop_domain}/admin/api/{self.api_version}/graphql.json"
        self._inventory_item_cache: Dict[str, str] = {}
        self._primary_location_id: Optional[str] = None

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.credentials.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        POST a GraphQL document and return its data.

        Raises:
            ShopifyRateLimitError: 429 or THROTTLED
            ShopifyAPIError: network failures, 5xx, transient GraphQL errors
            ShopifyServiceError: other 4xx and GraphQL errors (not worth retrying)
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        logger.debug(f"Shopify request to {self.graphql_url}: {json.dumps(variables or {})[:500]}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.graphql_url, headers=self._get_headers(), json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling Shopify for {self.store_id}: {str(e)}")
            raise ShopifyAPIError(f"Request timed out: {str(e)}")
        except httpx.RequestError as e:
            logger.error(f"Network error calling Shopify for {self.store_id}: {str(e)}")
            raise ShopifyAPIError(f"Network error: {str(e)}")

        headers = response.headers

        if response.status_code == 429:
            retry_after = _parse_retry_after(headers.get("Retry-After"))
            self.rate_limiter.record_response(self.store_id, headers, status_code=429, retry_after=retry_after)
            raise ShopifyRateLimitError(retry_after=retry_after)

        if response.status_code >= 400:
            # any non-429 answer clears the 429 streak
            self.rate_limiter.record_response(self.store_id, headers, status_code=response.status_code)

        if response.status_code >= 500:
            logger.error(f"Shopify server error {response.status_code} for {self.store_id}: {response.text[:500]}")
            raise ShopifyAPIError(f"Server error: {response.status_code}", status_code=response.status_code)

        if response.status_code >= 400:
            logger.error(f"Shopify rejected request {response.status_code} for {self.store_id}: {response.text[:500]}")
            raise ShopifyServiceError(f"Request failed ({response.status_code}): {response.text[:200]}")

        try:
            body = response.json()
        except ValueError:
            raise ShopifyAPIError(f"Failed to decode JSON response: {response.text[:200]}")

        extensions = body.get("extensions")
        errors = body.get("errors") or []
        codes = {((e or {}).get("extensions") or {}).get("code") for e in errors if isinstance(e, dict)}

        if "THROTTLED" in codes:
            self.rate_limiter.record_response(self.store_id, headers, extensions, status_code=429)
            raise ShopifyRateLimitError("GraphQL query throttled")

        self.rate_limiter.record_response(self.store_id, headers, extensions, status_code=response.status_code)

        if errors:
            messages = "; ".join(str((e or {}).get("message", e)) for e in errors)
            if codes & TRANSIENT_GRAPHQL_CODES:
                raise ShopifyAPIError(f"GraphQL errors: {messages}")
            raise ShopifyServiceError(f"GraphQL errors: {messages}")

        return body.get("data") or {}

    async def get_primary_location_id(self) -> Optional[str]:
        if self._primary_location_id:
            return self._primary_location_id
        data = await self._execute(LOCATIONS_QUERY)
        edges = ((data.get("locations") or {}).get("edges")) or []
        if not edges:
            logger.error(f"No locations found for shop {self.credentials.shop_domain}")
            return None
        self._primary_location_id = edges[0]["node"]["id"]
        return self._primary_location_id

    async def get_inventory_item_ids(self, variant_ids: Iterable[str]) -> Dict[str, str]:
        requested = [str(v) for v in variant_ids if v]
        result = {v: self._inventory_item_cache[v] for v in requested if v in self._inventory_item_cache}
        missing = [v for v in dict.fromkeys(requested) if v not in result]

        for start in range(0, len(missing), NODES_PAGE_SIZE):
            chunk = missing[start:start + NODES_PAGE_SIZE]
            by_gid = {to_gid("ProductVariant", v): v for v in chunk}
            data = await self._execute(VARIANT_INVENTORY_ITEMS_QUERY, {"ids": list(by_gid)})
            for node in data.get("nodes") or []:
                if not node or not node.get("id") or not (node.get("inventoryItem") or {}).get("id"):
                    continue
                variant_id = by_gid.get(node["id"])
                if variant_id is None:
                    continue
                inventory_item_id = node["inventoryItem"]["id"]
                self._inventory_item_cache[variant_id] = inventory_item_id
                result[variant_id] = inventory_item_id

        for variant_id in missing:
            if variant_id not in result:
                logger.warning(f"No inventory item found for variant {variant_id} in {self.credentials.shop_domain}")
        return result

    async def set_inventory_quantities(
        self, quantities: List[InventoryQuantity], reason: str = "correction"
    ) -> SetQuantitiesResult:
        if not quantities:
            return SetQuantitiesResult(success=True)

        variables = {
            "input": {
                "reason": reason,
                "name": "available",
                "ignoreCompareQuantity": True,
                "quantities": [
                    {
                        "inventoryItemId": to_gid("InventoryItem", q.inventory_item_id),
                        "locationId": to_gid("Location", q.location_id),
                        "quantity": q.quantity,
                    }
                    for q in quantities
                ],
            }
        }
        data = await self._execute(SET_QUANTITIES_MUTATION, variables)
        raw_errors = (data.get("inventorySetQuantities") or {}).get("userErrors") or []
        if raw_errors:
            logger.error(f"Shopify inventory update errors for {self.credentials.shop_domain}: {raw_errors}")
            return SetQuantitiesResult(
                success=False,
                user_errors=[UserError.model_validate(e) for e in raw_errors],
            )

        logger.info(f"Set {len(quantities)} inventory quantities for {self.credentials.shop_domain}")
        return SetQuantitiesResult(success=True)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
