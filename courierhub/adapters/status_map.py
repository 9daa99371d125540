# courierhub/adapters/status_map.py
"""
Courier raw status -> ShipmentStatus.

Raw values are normalised (lower-case, spaces / hyphens -> "_") and then
matched exactly. Anything we have not seen before lands on "pending" and is
logged, so a new courier state never advances an order on its own.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Sequence

from courierhub.models.enums import ShipmentStatus

log = logging.getLogger(__name__)

COURIER_STATUS_MAP: Dict[str, Dict[str, Sequence[str]]] = {
    "pathao": {
        ShipmentStatus.PENDING.value: (
            "pending",
            "pickup_requested",
            "pickup_pending",
            "assigned_for_pickup",
            "not_found",
        ),
        ShipmentStatus.PICKED_UP.value: ("picked", "picked_up"),
        ShipmentStatus.IN_TRANSIT.value: (
            "at_the_sorting_hub",
            "at_sorting_hub",
            "in_transit",
            "received_at_last_mile_hub",
            "assigned_for_delivery",
            "on_hold",
        ),
        ShipmentStatus.DELIVERED.value: ("delivered", "partial_delivery", "partial_delivered"),
        ShipmentStatus.RETURNED.value: ("return", "returned", "paid_return"),
        ShipmentStatus.FAILED.value: ("pickup_failed", "delivery_failed", "failed", "unknown"),
        ShipmentStatus.CANCELLED.value: ("pickup_cancelled", "cancelled", "canceled"),
    },
    "steadfast": {
        ShipmentStatus.PENDING.value: ("pending", "in_review", "not_found"),
        ShipmentStatus.PICKED_UP.value: ("picked", "picked_up"),
        ShipmentStatus.IN_TRANSIT.value: ("hold", "in_transit"),
        ShipmentStatus.DELIVERED.value: (
            "delivered",
            "partial_delivered",
            "delivered_approval_pending",
            "partial_delivered_approval_pending",
        ),
        ShipmentStatus.RETURNED.value: ("return", "returned"),
        ShipmentStatus.FAILED.value: ("failed",),
        ShipmentStatus.CANCELLED.value: (
            "cancelled",
            "canceled",
            "cancelled_approval_pending",
            "unknown",
            "unknown_approval_pending",
        ),
    },
}

_NORMALISE_RE = re.compile(r"[\s\-]+")


def normalise_raw_status(raw: Optional[str]) -> str:
    return _NORMALISE_RE.sub("_", (raw or "").strip().lower())


def _build_index() -> Dict[str, Dict[str, str]]:
    index: Dict[str, Dict[str, str]] = {}
    for provider_type, table in COURIER_STATUS_MAP.items():
        reverse: Dict[str, str] = {}
        for status, raws in table.items():
            for raw in raws:
                reverse[raw] = status
        index[provider_type] = reverse
    return index


_INDEX = _build_index()


def map_courier_status(provider_type: str, raw: Optional[str]) -> str:
    """Translate one courier status string; unmapped values fall back to pending."""
    key = normalise_raw_status(raw)
    if not key:
        return ShipmentStatus.PENDING.value

    mapped = _INDEX.get((provider_type or "").lower(), {}).get(key)
    if mapped is None:
        log.warning("UNMAPPED_COURIER_STATUS provider=%s raw=%r -> pending", provider_type, raw)
        return ShipmentStatus.PENDING.value
    return mapped
