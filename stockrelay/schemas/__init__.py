"""
Schema exports for the sync engine.
"""

from .base import BaseSchema
from .mapping import ConnectionPolicy, Connection, VariantMapping, StoreCredentials
from .inventory import PendingInventoryUpdate, PropagationOutcome, InventoryRecord
