# stockrelay/services/adjustment_pipeline.py
"""
Turns an authoritative upstream quantity into the number written downstream
for one connection: location filter first, then safety stock or buffer.
"""

from typing import Optional

from stockrelay.schemas.mapping import ConnectionPolicy


def normalize_location_id(location_id) -> Optional[str]:
    """'gid://shopify/Location/123' and 123 both become '123'."""
    if location_id is None:
        return None
    value = str(location_id).strip().rstrip("/")
    if not value:
        return None
    return value.split("/")[-1]


def location_matches(connection_location_id, event_location_id) -> bool:
    """True unless both sides name a location and they differ."""
    pinned = normalize_location_id(connection_location_id)
    incoming = normalize_location_id(event_location_id)
    if pinned is None or incoming is None:
        return True
    return pinned == incoming


def apply_safety_stock(quantity: int, safety_stock_quantity: int) -> int:
    return max(0, quantity - max(0, safety_stock_quantity or 0))


def apply_stock_buffer(quantity: int, buffer: int) -> int:
    return max(0, quantity - max(0, buffer or 0))


def order_path_buffer(policy: ConnectionPolicy) -> int:
    # The order path reserves the stock buffer, or the safety stock when no buffer is set
    return policy.stock_buffer or policy.safety_stock_quantity or 0


def compute_available_quantity(quantity: int, policy: ConnectionPolicy, order_triggered: bool = False) -> int:
    if order_triggered:
        return apply_stock_buffer(quantity, order_path_buffer(policy))
    return apply_safety_stock(quantity, policy.safety_stock_quantity)
