from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass

class ShopifyServiceError(PlatformServiceError):
    """Base exception for Shopify-specific errors."""
    pass

class ShopifyAPIError(ShopifyServiceError):
    """Raised when a Shopify call fails in a way worth retrying (transport, 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class ShopifyRateLimitError(ShopifyAPIError):
    """Raised on HTTP 429 or a THROTTLED GraphQL error."""

    def __init__(self, message: str = "Rate limited by Shopify", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after

class SyncError(PlatformServiceError):
    """Raised when inventory synchronization fails."""
    pass

class MappingNotFoundError(SyncError):
    """Raised when no active variant mapping exists for a variant."""
    pass

class InventoryItemNotFoundError(SyncError):
    """Raised when a variant's inventory item id cannot be resolved."""
    pass

class DedupStoreError(BaseServiceError):
    """Raised when the idempotency dedup store cannot be read or written."""
    pass
