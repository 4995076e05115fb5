# stockrelay/services/inventory_delta.py
"""
Pure functions that turn order activity into inventory deltas.

Negative deltas take stock out (an order consumed units), positive deltas
put it back (cancel, refund, edit removals). Nothing here touches storage or
the network; InventorySyncService applies the results.

Trigger policy table:

    event       ON_CREATE   ON_PAID
    CREATED     decrement   suppressed
    PAID        decrement   decrement
    CANCELLED   restock     restock only if financial status paid/refunded
    REFUNDED    restock     restock
    EDITED      diff        diff only if financial status paid

CATALOG_ONLY connections never move inventory from orders and are checked
before the policy.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from stockrelay.core.enums import (
    FinancialStatus,
    InventoryAdjustmentReason,
    OrderEvent,
    OrderTriggerPolicy,
    SyncMode,
    RESTOCK_TYPE_NO_RESTOCK,
)
from stockrelay.integrations.events import EditChange, LineItem, OrderEditPayload, RefundLineItem

logger = logging.getLogger(__name__)

DECREMENT_EVENTS = frozenset({OrderEvent.CREATED, OrderEvent.PAID})
RESTOCK_EVENTS = frozenset({OrderEvent.CANCELLED, OrderEvent.REFUNDED})

EVENT_REASONS = {
    OrderEvent.CREATED: InventoryAdjustmentReason.ORDER_CREATED,
    OrderEvent.PAID: InventoryAdjustmentReason.ORDER_PAID,
    OrderEvent.CANCELLED: InventoryAdjustmentReason.ORDER_CANCELLED,
    OrderEvent.REFUNDED: InventoryAdjustmentReason.REFUND,
    OrderEvent.EDITED: InventoryAdjustmentReason.ORDER_EDITED,
}


@dataclass(frozen=True)
class PolicyDecision:
    process: bool
    reason: Optional[str] = None


def should_process_order_event(
    policy: OrderTriggerPolicy,
    sync_mode: SyncMode,
    event: OrderEvent,
    financial_status: Optional[str],
) -> PolicyDecision:
    if sync_mode == SyncMode.CATALOG_ONLY:
        return PolicyDecision(False, "CATALOG_ONLY mode")

    if policy == OrderTriggerPolicy.ON_CREATE:
        return PolicyDecision(True)

    if policy == OrderTriggerPolicy.ON_PAID:
        status = (financial_status or "").lower()
        if event == OrderEvent.CREATED:
            return PolicyDecision(False, "ON_PAID policy - waiting for payment")
        if event == OrderEvent.PAID:
            return PolicyDecision(True)
        if event == OrderEvent.CANCELLED:
            if status in (FinancialStatus.PAID.value, FinancialStatus.REFUNDED.value):
                return PolicyDecision(True)
            return PolicyDecision(False, "Order was not paid - no restock needed")
        if event == OrderEvent.REFUNDED:
            return PolicyDecision(True)
        if event == OrderEvent.EDITED:
            if status == FinancialStatus.PAID.value:
                return PolicyDecision(True)
            return PolicyDecision(False, "Order not paid - ignoring edit")
        return PolicyDecision(False, f"Unknown event type {event}")

    return PolicyDecision(False, f"Unknown policy {policy}")


def reason_for_event(event: OrderEvent) -> InventoryAdjustmentReason:
    return EVENT_REASONS[event]


def aggregate_line_items(line_items: Iterable[LineItem]) -> Dict[str, int]:
    """Sum quantity per variant, keeping first-seen order. Lines without a variant are ignored."""
    totals: Dict[str, int] = OrderedDict()
    for item in line_items or []:
        if not item.variant_id:
            logger.warning(f"Line item {item.id} has no variant_id - skipping")
            continue
        totals[item.variant_id] = totals.get(item.variant_id, 0) + (item.quantity or 0)
    return totals


def order_event_deltas(event: OrderEvent, line_items: Iterable[LineItem]) -> Dict[str, int]:
    """Per-variant delta for a create/paid/cancel/refund event; edits go through diff_line_items."""
    if event in DECREMENT_EVENTS:
        sign = -1
    elif event in RESTOCK_EVENTS:
        sign = 1
    else:
        return {}
    return OrderedDict(
        (variant_id, sign * quantity)
        for variant_id, quantity in aggregate_line_items(line_items).items()
        if quantity
    )


def diff_line_items(previous: Iterable[LineItem], current: Iterable[LineItem]) -> Dict[str, int]:
    """
    delta = -(current - previous) per variant.

    More units ordered gives a negative delta, removed units a positive one.
    Unchanged variants are left out.
    """
    before = aggregate_line_items(previous)
    after = aggregate_line_items(current)
    deltas: Dict[str, int] = OrderedDict()
    for variant_id in list(before) + [v for v in after if v not in before]:
        change = after.get(variant_id, 0) - before.get(variant_id, 0)
        if change:
            deltas[variant_id] = -change
    return deltas


def _resolve_variant(change: EditChange, variants_by_line: Dict[str, str]) -> Optional[str]:
    if change.variant_id:
        return change.variant_id
    if change.line_item_id:
        return variants_by_line.get(change.line_item_id)
    return None


def native_edit_deltas(payload: OrderEditPayload) -> Optional[Dict[str, int]]:
    """
    Deltas from the platform's own edit record (additions/removals).

    Returns None when there is no native record or any line cannot be tied to
    a variant, so the caller can fall back to the snapshot diff.
    """
    if not payload.has_native_changes:
        return None

    variants_by_line = {
        item.id: item.variant_id
        for item in list(payload.line_items) + list(payload.previous_line_items or [])
        if item.id and item.variant_id
    }

    deltas: Dict[str, int] = OrderedDict()
    for sign, changes in ((-1, payload.additions), (1, payload.removals)):
        for change in changes:
            variant_id = _resolve_variant(change, variants_by_line)
            if variant_id is None:
                logger.info(f"Order edit line {change.line_item_id} has no resolvable variant; using snapshot diff")
                return None
            deltas[variant_id] = deltas.get(variant_id, 0) + sign * abs(change.delta)

    return OrderedDict((v, d) for v, d in deltas.items() if d)


def resolve_edit_deltas(payload: OrderEditPayload) -> Tuple[Optional[Dict[str, int]], str]:
    """
    Prefer the native edit record, fall back to diffing snapshots.
    Returns (deltas, source); deltas is None when neither is available.
    """
    native = native_edit_deltas(payload)
    if native is not None:
        return native, "native"
    if payload.previous_line_items is not None:
        return diff_line_items(payload.previous_line_items, payload.line_items), "diff"
    return None, "unavailable"


def refund_restock_deltas(refund_line_items: Iterable[RefundLineItem]) -> Dict[str, int]:
    """Positive per-variant deltas for refunded lines, skipping no_restock lines."""
    deltas: Dict[str, int] = OrderedDict()
    for item in refund_line_items or []:
        if (item.restock_type or "").lower() == RESTOCK_TYPE_NO_RESTOCK:
            logger.info(f"Refund item {item.variant_id} marked as no_restock - skipping")
            continue
        if not item.variant_id or not item.quantity:
            continue
        deltas[item.variant_id] = deltas.get(item.variant_id, 0) + item.quantity
    return deltas


def apply_delta(current: int, delta: int) -> int:
    """Oversold protection: quantities clamp at zero."""
    return max(0, (current or 0) + delta)
