import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from stockrelay.schemas.mapping import StoreCredentials

logger = logging.getLogger(__name__)

_INDEX_RE = re.compile(r"^\d+$")


class InventoryQuantity(BaseModel):
    """One absolute quantity for an inventory item at a location."""
    inventory_item_id: str
    location_id: str
    quantity: int


class UserError(BaseModel):
    field: Optional[List[str]] = None
    message: str = ""
    code: Optional[str] = None

    @property
    def quantity_index(self) -> Optional[int]:
        """Index into the submitted quantities, from a field path like ["input", "quantities", "2", "locationId"]."""
        if not self.field:
            return None
        path = [str(p) for p in self.field]
        for i, part in enumerate(path[:-1]):
            if part == "quantities" and _INDEX_RE.match(path[i + 1]):
                return int(path[i + 1])
        return None


class SetQuantitiesResult(BaseModel):
    success: bool
    user_errors: List[UserError] = Field(default_factory=list)

    def rejected_indexes(self) -> Optional[set]:
        """Indexes of rejected quantities, or None if any error is not tied to one."""
        indexes = set()
        for error in self.user_errors:
            index = error.quantity_index
            if index is None:
                return None
            indexes.add(index)
        return indexes


class RemoteInventoryPlatform(ABC):
    """
    Narrow view of a downstream store's inventory API.

    Transient failures raise ShopifyAPIError (ShopifyRateLimitError for 429s);
    validation failures come back as user_errors on the result.
    """

    def __init__(self, credentials: StoreCredentials):
        self.credentials = credentials

    @property
    def store_id(self) -> str:
        return self.credentials.store_id

    @abstractmethod
    async def set_inventory_quantities(
        self, quantities: List[InventoryQuantity], reason: str = "correction"
    ) -> SetQuantitiesResult:
        """Set absolute available quantities in one call"""
        pass

    @abstractmethod
    async def get_inventory_item_ids(self, variant_ids: Iterable[str]) -> Dict[str, str]:
        """Map variant ids to inventory item ids; unknown variants are left out"""
        pass

    async def get_inventory_item_id(self, variant_id: str) -> Optional[str]:
        return (await self.get_inventory_item_ids([variant_id])).get(variant_id)

    @abstractmethod
    async def get_primary_location_id(self) -> Optional[str]:
        """Location used when a connection does not pin one"""
        pass

    async def aclose(self):
        pass


PlatformFactory = Callable[[StoreCredentials], RemoteInventoryPlatform]


class PlatformRegistry:
    """One platform client per downstream store, built from stored credentials."""

    def __init__(self, credentials_provider, factory: PlatformFactory):
        self.credentials_provider = credentials_provider
        self.factory = factory
        self._clients: Dict[str, RemoteInventoryPlatform] = {}

    async def get(self, store_id: str) -> Optional[RemoteInventoryPlatform]:
        client = self._clients.get(store_id)
        if client is not None:
            return client
        credentials = await self.credentials_provider.get_store_credentials(store_id)
        if credentials is None:
            logger.warning(f"No credentials for store {store_id}")
            return None
        client = self.factory(credentials)
        self._clients[store_id] = client
        return client

    async def evict(self, store_id: str):
        client = self._clients.pop(store_id, None)
        if client is not None:
            await client.aclose()

    async def close(self):
        for store_id in list(self._clients):
            await self.evict(store_id)
