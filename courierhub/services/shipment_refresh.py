# courierhub/services/shipment_refresh.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from courierhub.models.delivery_shipment import DeliveryShipment
from courierhub.models.enums import status_value
from courierhub.services.delivery_errors import ShipmentNotFound
from courierhub.services.delivery_service import DeliveryService
from courierhub.services.shipment_tracker import (
    OrderStatusChange,
    ShipmentTracker,
    StatusChangeNotification,
)

log = logging.getLogger(__name__)

Notifier = Callable[[StatusChangeNotification], Awaitable[None]]


@dataclass
class RefreshOutcome:
    shipment: DeliveryShipment
    previous_status: str
    status_changed: bool
    order_update: Optional[OrderStatusChange] = None
    notification: Optional[StatusChangeNotification] = None

    @property
    def order_status_updated(self) -> bool:
        return self.order_update is not None


class ShipmentRefresher:
    """check status -> (if changed) reconcile order -> notify."""

    def __init__(
        self,
        service: DeliveryService,
        tracker: ShipmentTracker,
        *,
        notifier: Optional[Notifier] = None,
    ):
        self.service = service
        self.tracker = tracker
        self._notifier = notifier

    async def refresh(self, shipment_id: str, *, expected_order_id: Optional[str] = None) -> RefreshOutcome:
        shipment = await self.service.get_shipment(shipment_id)
        if shipment is None or (expected_order_id and shipment.order_id != expected_order_id):
            raise ShipmentNotFound(shipment_id)

        previous_status = shipment.status
        updated = await self.service.check_shipment_status(shipment_id)
        return await self.reconcile(updated, previous_status)

    async def reconcile(self, shipment: DeliveryShipment, previous_status: str) -> RefreshOutcome:
        shipment_id = shipment.id
        current_status = shipment.status

        if status_value(current_status) == status_value(previous_status):
            return RefreshOutcome(shipment=shipment, previous_status=previous_status, status_changed=False)

        order_update = await self.tracker.update_order_status_from_shipment(shipment_id, current_status)
        notification = await self.tracker.notify_status_change(shipment_id, previous_status, current_status)

        if notification is not None and self._notifier is not None:
            try:
                await self._notifier(notification)
            except Exception:
                log.exception("status-change notifier failed for shipment %s", shipment_id)

        # tracker may have rolled back; hand back a freshly loaded row
        fresh = await self.service.get_shipment(shipment_id)
        return RefreshOutcome(
            shipment=fresh if fresh is not None else shipment,
            previous_status=previous_status,
            status_changed=True,
            order_update=order_update,
            notification=notification,
        )
