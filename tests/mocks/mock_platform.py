from typing import Dict, Iterable, List, Optional, Tuple, Union

from stockrelay.integrations.base import (
    InventoryQuantity,
    RemoteInventoryPlatform,
    SetQuantitiesResult,
    UserError,
)
from stockrelay.schemas.mapping import StoreCredentials

DEFAULT_LOCATION = "gid://shopify/Location/1"


class MockInventoryPlatform(RemoteInventoryPlatform):
    """
    In-memory downstream store.

    Queue responses in `responses` to script the next set_inventory_quantities
    calls: a SetQuantitiesResult is returned as-is, an exception is raised.
    With a rate limiter attached, calls feed their HTTP status to it the way
    the real client does.
    """

    def __init__(
        self,
        credentials: StoreCredentials,
        inventory_items: Optional[Dict[str, str]] = None,
        location_id: Optional[str] = DEFAULT_LOCATION,
        rate_limiter=None,
    ):
        super().__init__(credentials)
        self.inventory_items = dict(inventory_items or {})
        self.location_id = location_id
        self.rate_limiter = rate_limiter
        self.responses: List[Union[SetQuantitiesResult, Exception]] = []
        self.set_calls: List[List[InventoryQuantity]] = []
        self.levels: Dict[Tuple[str, str], int] = {}
        self.closed = False

    async def set_inventory_quantities(self, quantities, reason: str = "correction") -> SetQuantitiesResult:
        self.set_calls.append(list(quantities))
        if self.responses:
            response = self.responses.pop(0)
            status_code = getattr(response, "status_code", None)
            if status_code is not None and self.rate_limiter is not None:
                self.rate_limiter.record_response(self.store_id, status_code=status_code)
            if isinstance(response, Exception):
                raise response
            if not response.success:
                self._record_success()
                return response

        for q in quantities:
            self.levels[(q.inventory_item_id, q.location_id)] = q.quantity
        self._record_success()
        return SetQuantitiesResult(success=True)

    def _record_success(self):
        if self.rate_limiter is not None:
            self.rate_limiter.record_response(self.store_id, status_code=200)

    async def get_inventory_item_ids(self, variant_ids: Iterable[str]) -> Dict[str, str]:
        return {v: self.inventory_items[v] for v in variant_ids if v in self.inventory_items}

    async def get_primary_location_id(self) -> Optional[str]:
        return self.location_id

    async def aclose(self):
        self.closed = True

    def quantity_for(self, variant_id: str, location_id: Optional[str] = None) -> Optional[int]:
        inventory_item_id = self.inventory_items.get(variant_id)
        return self.levels.get((inventory_item_id, location_id or self.location_id))

    @property
    def written_quantities(self) -> List[int]:
        return [q.quantity for call in self.set_calls for q in call]

    def clear_history(self):
        """Clear test history"""
        self.set_calls = []
        self.levels = {}


def user_errors_result(*indexes: Optional[int], message: str = "Invalid location") -> SetQuantitiesResult:
    """A failed result with one user error per index; None gives an error not tied to a quantity."""
    errors = []
    for index in indexes:
        field = ["input", "quantities", str(index), "locationId"] if index is not None else ["input"]
        errors.append(UserError(field=field, message=message))
    return SetQuantitiesResult(success=False, user_errors=errors)


async def no_sleep(seconds):
    return None
