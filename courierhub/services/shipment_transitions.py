# courierhub/services/shipment_transitions.py
"""
Shipment status -> order status.

The table is deliberately asymmetric:

- delivered / returned / cancelled orders never move again
- picked_up / in_transit both collapse to "shipped", and only for orders
  already confirmed; pending / processing orders are left alone
- failed rolls a shipped / processing order back to "confirmed" so it can be
  shipped again; it never moves an order forward
- every pair not listed is a no-op (next == current)
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from courierhub.models.enums import OrderStatus, ShipmentStatus, status_value

ORDER_TERMINAL_STATUSES = frozenset(
    {
        OrderStatus.DELIVERED.value,
        OrderStatus.RETURNED.value,
        OrderStatus.CANCELLED.value,
    }
)

_O = OrderStatus
_S = ShipmentStatus

# (current order status, shipment status) -> next order status
_TRANSITIONS: Dict[Tuple[str, str], str] = {
    # pending
    (_O.PENDING.value, _S.DELIVERED.value): _O.DELIVERED.value,
    (_O.PENDING.value, _S.RETURNED.value): _O.RETURNED.value,
    (_O.PENDING.value, _S.CANCELLED.value): _O.CANCELLED.value,
    # processing
    (_O.PROCESSING.value, _S.DELIVERED.value): _O.DELIVERED.value,
    (_O.PROCESSING.value, _S.RETURNED.value): _O.RETURNED.value,
    (_O.PROCESSING.value, _S.FAILED.value): _O.CONFIRMED.value,
    (_O.PROCESSING.value, _S.CANCELLED.value): _O.CANCELLED.value,
    # confirmed (failed / cancelled: no-op)
    (_O.CONFIRMED.value, _S.PICKED_UP.value): _O.SHIPPED.value,
    (_O.CONFIRMED.value, _S.IN_TRANSIT.value): _O.SHIPPED.value,
    (_O.CONFIRMED.value, _S.DELIVERED.value): _O.DELIVERED.value,
    (_O.CONFIRMED.value, _S.RETURNED.value): _O.RETURNED.value,
    # shipped
    (_O.SHIPPED.value, _S.DELIVERED.value): _O.DELIVERED.value,
    (_O.SHIPPED.value, _S.RETURNED.value): _O.RETURNED.value,
    (_O.SHIPPED.value, _S.FAILED.value): _O.CONFIRMED.value,
    (_O.SHIPPED.value, _S.CANCELLED.value): _O.CONFIRMED.value,
}


def next_order_status(current: Optional[str], shipment_status: Optional[str]) -> Optional[str]:
    """Pure lookup; returns ``current`` (normalised) when nothing should change."""
    cur = status_value(current)
    if cur in ORDER_TERMINAL_STATUSES:
        return cur
    return _TRANSITIONS.get((cur, status_value(shipment_status)), cur)
