# courierhub/models/enums.py
from __future__ import annotations

from enum import Enum
from typing import Optional


class ShipmentStatus(str, Enum):
    """Courier-agnostic shipment vocabulary; adapters translate into these."""

    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RETURNED = "returned"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    """The part of the order lifecycle this core moves between."""

    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class ProviderType(str, Enum):
    PATHAO = "pathao"
    STEADFAST = "steadfast"
    MANUAL = "manual"


# Shipments in these states are no longer polled
SHIPMENT_FINAL_STATUSES = frozenset(
    {
        ShipmentStatus.DELIVERED.value,
        ShipmentStatus.RETURNED.value,
        ShipmentStatus.CANCELLED.value,
    }
)


def status_value(value: Optional[str | Enum]) -> Optional[str]:
    """Enum or str -> lower-case plain str (None stays None)."""
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip().lower()
