from .activity_log import SyncActivity
from .idempotency import IdempotencyRecord
from .inventory import UpstreamInventoryItem

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'SyncActivity',
    'IdempotencyRecord',
    'UpstreamInventoryItem',
]
