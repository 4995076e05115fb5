"""
Shared enums and constants used across the sync engine.
"""

from enum import Enum, IntEnum


class WebhookTopic(str, Enum):
    PRODUCTS_CREATE = "PRODUCTS_CREATE"
    PRODUCTS_UPDATE = "PRODUCTS_UPDATE"
    PRODUCTS_DELETE = "PRODUCTS_DELETE"
    INVENTORY_LEVELS_UPDATE = "INVENTORY_LEVELS_UPDATE"
    ORDERS_CREATE = "ORDERS_CREATE"
    ORDERS_UPDATED = "ORDERS_UPDATED"
    ORDERS_PAID = "ORDERS_PAID"
    ORDERS_CANCELLED = "ORDERS_CANCELLED"
    ORDERS_EDITED = "ORDERS_EDITED"
    REFUNDS_CREATE = "REFUNDS_CREATE"
    APP_UNINSTALLED = "APP_UNINSTALLED"

    @classmethod
    def from_header(cls, value: str) -> "WebhookTopic":
        """
        Accepts either the X-Shopify-Topic header form ("orders/create")
        or the enum form ("ORDERS_CREATE").
        """
        normalized = value.strip().upper().replace("/", "_")
        # products/update but orders/updated
        if normalized == "ORDERS_UPDATE":
            normalized = "ORDERS_UPDATED"
        return cls(normalized)


class ResourceType(str, Enum):
    PRODUCT = "PRODUCT"
    INVENTORY = "INVENTORY"
    ORDER = "ORDER"
    APP = "APP"


class EventPriority(IntEnum):
    """Lower value is handled first."""
    CRITICAL = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


class OrderTriggerPolicy(str, Enum):
    ON_CREATE = "ON_CREATE"
    ON_PAID = "ON_PAID"


class SyncMode(str, Enum):
    FULL = "FULL"
    CATALOG_ONLY = "CATALOG_ONLY"


class MappingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    UNMAPPED = "UNMAPPED"
    CONFLICT = "CONFLICT"


class OrderEvent(str, Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    EDITED = "EDITED"


class InventoryAdjustmentReason(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_PAID = "ORDER_PAID"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_EDITED = "ORDER_EDITED"
    REFUND = "REFUND"
    RESTOCK = "RESTOCK"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    CORRECTION = "CORRECTION"
    TRANSFER = "TRANSFER"
    INVENTORY_LEVEL_UPDATE = "INVENTORY_LEVEL_UPDATE"


class ThrottleStatus(str, Enum):
    OK = "OK"
    APPROACHING = "APPROACHING"
    THROTTLED = "THROTTLED"


class StoreHealth(str, Enum):
    HEALTHY = "healthy"
    THROTTLED = "throttled"
    ERRORING = "erroring"


class FinancialStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    VOIDED = "voided"


# Shopify restock_type values on refund line items
RESTOCK_TYPE_NO_RESTOCK = "no_restock"
RESTOCK_TYPE_CANCEL = "cancel"
RESTOCK_TYPE_RETURN = "return"
RESTOCK_TYPE_LEGACY = "legacy_restock"
