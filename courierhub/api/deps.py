# courierhub/api/deps.py
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from courierhub.db.session import get_session
from courierhub.services.courier_push import CourierPushHandler
from courierhub.services.delivery_service import DeliveryService
from courierhub.services.shipment_refresh import ShipmentRefresher
from courierhub.services.shipment_tracker import ShipmentTracker

__all__ = [
    "get_session",
    "get_delivery_service",
    "get_tracker",
    "get_refresher",
    "get_push_handler",
]


def get_delivery_service(session: AsyncSession = Depends(get_session)) -> DeliveryService:
    return DeliveryService(session)


def get_tracker(session: AsyncSession = Depends(get_session)) -> ShipmentTracker:
    return ShipmentTracker(session)


def get_refresher(
    service: DeliveryService = Depends(get_delivery_service),
    tracker: ShipmentTracker = Depends(get_tracker),
) -> ShipmentRefresher:
    return ShipmentRefresher(service, tracker)


def get_push_handler(
    service: DeliveryService = Depends(get_delivery_service),
    refresher: ShipmentRefresher = Depends(get_refresher),
) -> CourierPushHandler:
    return CourierPushHandler(service, refresher)
