# courierhub/services/delivery_locations.py
from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courierhub.adapters.base import ExternalLocationIds, LocationRef
from courierhub.models.delivery_location import DeliveryLocation

log = logging.getLogger(__name__)


def _external_ref(location: Optional[DeliveryLocation], provider_type: str) -> Optional[LocationRef]:
    if location is None or not location.external_ids:
        return None
    ref = location.external_ids.get(provider_type)
    if ref is None or ref == "":
        return None
    # couriers want numeric ids as numbers
    if isinstance(ref, str) and ref.isdigit():
        return int(ref)
    return ref


async def resolve_external_location_ids(
    session: AsyncSession, order, provider_type: str
) -> ExternalLocationIds:
    """Internal city / zone / area ids on the order -> the courier's own ids."""
    wanted = {"city": order.city, "zone": order.zone, "area": order.area}
    ids = [v for v in wanted.values() if v]
    if not ids:
        return ExternalLocationIds()

    rows = (await session.execute(select(DeliveryLocation).where(DeliveryLocation.id.in_(ids)))).scalars().all()
    by_id: Dict[str, DeliveryLocation] = {row.id: row for row in rows}

    resolved = ExternalLocationIds(
        **{key: _external_ref(by_id.get(loc_id), provider_type) if loc_id else None for key, loc_id in wanted.items()}
    )
    log.debug("order %s locations for %s: %s", order.id, provider_type, resolved)
    return resolved
