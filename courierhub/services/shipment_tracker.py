# courierhub/services/shipment_tracker.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from courierhub.core.clock import Clock, utcnow
from courierhub.core.config import get_settings
from courierhub.models.delivery_shipment import DeliveryShipment
from courierhub.models.enums import status_value
from courierhub.models.order import Order
from courierhub.obs.metrics import ORDER_RECONCILIATIONS
from courierhub.services.shipment_transitions import next_order_status
from courierhub.services.tracking_url import get_tracking_url

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderStatusChange:
    order_id: str
    previous_status: str
    new_status: str


@dataclass(frozen=True)
class StatusChangeNotification:
    shipment_id: str
    order_id: str
    customer_phone: Optional[str]
    customer_email: Optional[str]
    previous_status: str
    new_status: str
    timestamp: datetime

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class ShipmentTracker:
    """
    Shipment status change -> order status, via next_order_status().

    Never raises: reconciliation runs after a courier status has already been
    saved, and a failure here must not fail that flow. Every failure path is a
    log line plus ``None``.
    """

    get_tracking_url = staticmethod(get_tracking_url)

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock = utcnow,
        max_attempts: Optional[int] = None,
    ):
        self.session = session
        self._clock = clock
        self._max_attempts = max_attempts or get_settings().RECONCILE_MAX_ATTEMPTS

    async def update_order_status_from_shipment(
        self, shipment_id: str, new_status: str
    ) -> Optional[OrderStatusChange]:
        try:
            return await self._reconcile(shipment_id, status_value(new_status))
        except Exception:
            log.exception("Error updating order status from shipment %s", shipment_id)
            await self._rollback_quietly()
            return None

    async def _reconcile(self, shipment_id: str, new_status: Optional[str]) -> Optional[OrderStatusChange]:
        shipment = await self.session.get(DeliveryShipment, shipment_id, populate_existing=True)
        if shipment is None:
            log.error("Shipment %s not found; order not reconciled", shipment_id)
            return None

        # a newer status already landed on the shipment: this event is stale
        current_shipment_status = status_value(shipment.status)
        if current_shipment_status != new_status:
            log.info(
                "RECONCILE_SKIPPED shipment %s is %s now, ignoring stale %s",
                shipment_id, current_shipment_status, new_status,
            )
            return None

        order_id = shipment.order_id
        for attempt in range(1, self._max_attempts + 1):
            order = await self.session.get(Order, order_id, populate_existing=True)
            if order is None:
                log.error("Order %s for shipment %s not found", order_id, shipment_id)
                return None

            stored_status = order.status
            current = status_value(stored_status)
            target = next_order_status(current, new_status)
            if target == current:
                log.debug("order %s stays %s on shipment status %s", order_id, current, new_status)
                return None

            res = await self.session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == stored_status)
                .values({Order.status: target, Order.updated_at: self._clock()})
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 1:
                await self.session.commit()
                ORDER_RECONCILIATIONS.labels(current, target).inc()
                log.info(
                    "Updated order %s status from %s to %s (shipment %s is %s)",
                    order_id, current, target, shipment_id, new_status,
                )
                return OrderStatusChange(order_id=order_id, previous_status=current, new_status=target)

            log.warning(
                "order %s changed concurrently (attempt %d/%d), re-reading",
                order_id, attempt, self._max_attempts,
            )

        log.warning("RECONCILE_SKIPPED order %s: gave up after %d attempts", order_id, self._max_attempts)
        return None

    async def notify_status_change(
        self, shipment_id: str, previous_status: str, new_status: str
    ) -> Optional[StatusChangeNotification]:
        """Payload for an external email / SMS notifier; delivery is the caller's business."""
        try:
            shipment = await self.session.get(DeliveryShipment, shipment_id, populate_existing=True)
            if shipment is None:
                log.error("Shipment %s not found; no notification", shipment_id)
                return None
            order = await self.session.get(Order, shipment.order_id, populate_existing=True)
            if order is None:
                log.error("Order %s not found; no notification", shipment.order_id)
                return None
        except Exception:
            log.exception("Error building status notification for shipment %s", shipment_id)
            await self._rollback_quietly()
            return None

        return StatusChangeNotification(
            shipment_id=shipment.id,
            order_id=order.id,
            customer_phone=order.customer_phone,
            customer_email=order.customer_email,
            previous_status=status_value(previous_status),
            new_status=status_value(new_status),
            timestamp=self._clock(),
        )

    async def _rollback_quietly(self) -> None:
        try:
            await self.session.rollback()
        except Exception:
            log.exception("rollback after reconciliation failure also failed")
