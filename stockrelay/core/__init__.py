"""
Core module exports.
"""
from .enums import (
    WebhookTopic,
    ResourceType,
    EventPriority,
    OrderTriggerPolicy,
    SyncMode,
    MappingStatus,
    OrderEvent,
    InventoryAdjustmentReason,
    ThrottleStatus,
)

from .exceptions import (
    BaseServiceError,
    PlatformServiceError,
    ShopifyServiceError,
    ShopifyAPIError,
    ShopifyRateLimitError,
    SyncError,
    MappingNotFoundError,
    InventoryItemNotFoundError,
    DedupStoreError,
)
