# courierhub/jobs/shipment_status_sync_runner.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from courierhub.core.clock import Clock, utcnow
from courierhub.core.config import get_settings
from courierhub.core.logging import setup_logging
from courierhub.db.session import close_engine, get_sessionmaker
from courierhub.models.delivery_shipment import DeliveryShipment
from courierhub.models.enums import SHIPMENT_FINAL_STATUSES
from courierhub.services.delivery_errors import DeliveryError
from courierhub.services.delivery_service import DeliveryService
from courierhub.services.shipment_refresh import ShipmentRefresher
from courierhub.services.shipment_tracker import ShipmentTracker

log = logging.getLogger(__name__)

ServiceFactory = Callable[[AsyncSession], DeliveryService]


async def _due_shipment_ids(session: AsyncSession, limit: int, now: datetime) -> List[str]:
    stmt = (
        select(DeliveryShipment.id)
        .where(
            DeliveryShipment.provider_id.is_not(None),
            DeliveryShipment.status.not_in(sorted(SHIPMENT_FINAL_STATUSES)),
            or_(DeliveryShipment.next_check_at.is_(None), DeliveryShipment.next_check_at <= now),
        )
        .order_by(
            DeliveryShipment.check_failures.asc(),
            DeliveryShipment.last_checked.asc().nulls_first(),
            DeliveryShipment.created_at.asc(),
            DeliveryShipment.id.asc(),
        )
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def run_once(
    session: AsyncSession,
    *,
    limit: Optional[int] = None,
    service_factory: Optional[ServiceFactory] = None,
    clock: Clock = utcnow,
) -> int:
    """
    Poll couriers for every shipment that is not final yet.

    - manual shipments and delivered / returned / cancelled ones are skipped
    - shipments without recent failures first, then least recently checked,
      never-checked before everything else
    - one shipment failing (courier down, bad credentials...) does not stop
      the batch; it is backed off (SYNC_FAILURE_BACKOFF_SECONDS, doubling)
      so it cannot crowd healthy shipments out of later batches

    Returns how many shipments changed status.
    """
    settings = get_settings()
    limit = limit or settings.SYNC_BATCH_LIMIT
    service = (service_factory or DeliveryService)(session)
    refresher = ShipmentRefresher(service, ShipmentTracker(session))

    ids = await _due_shipment_ids(session, limit, clock())
    if not ids:
        return 0

    changed = 0
    failed = 0
    for shipment_id in ids:
        try:
            outcome = await refresher.refresh(shipment_id)
        except DeliveryError as exc:
            failed += 1
            log.warning("status sync failed for shipment %s: %s", shipment_id, exc.message)
            await service.record_check_failure(
                shipment_id,
                base_delay=settings.SYNC_FAILURE_BACKOFF_SECONDS,
                max_delay=settings.SYNC_FAILURE_BACKOFF_MAX_SECONDS,
            )
            continue
        if outcome.status_changed:
            changed += 1

    log.info(
        "[shipment_status_sync] checked=%d changed=%d failed=%d", len(ids), changed, failed
    )
    return changed


async def main() -> None:
    setup_logging(get_settings().LOG_LEVEL)
    try:
        async with get_sessionmaker()() as session:
            changed = await run_once(session)
        log.info("[shipment_status_sync] shipments changed: %d", changed)
    finally:
        await close_engine()


def run_cli() -> None:
    asyncio.run(main())
