# courierhub/services/delivery_service.py
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from courierhub.adapters.base import (
    ConnectionResult,
    CourierAdapter,
    ShipmentOptions,
    StatusResult,
    as_decimal,
    default_cod_amount,
)
from courierhub.adapters.registry import create_provider
from courierhub.core.clock import Clock, utcnow
from courierhub.models.delivery_provider import DeliveryProvider
from courierhub.models.delivery_shipment import DeliveryShipment
from courierhub.models.enums import ProviderType, ShipmentStatus
from courierhub.models.order import Order
from courierhub.obs.metrics import ORPHANED_SHIPMENTS, STALE_STATUS_DISCARDED
from courierhub.services.delivery_errors import (
    ConfigurationError,
    OrderNotFound,
    ProviderInactive,
    ProviderNotFound,
    ShipmentNotFound,
    ShipmentPersistenceError,
)
from courierhub.services.delivery_locations import resolve_external_location_ids

log = logging.getLogger(__name__)

ProviderFactory = Callable[[DeliveryProvider], CourierAdapter]


def _new_id() -> str:
    return uuid.uuid4().hex


def _as_blob(value: Any) -> str:
    if value is None:
        return "{}"
    if isinstance(value, str):
        return value
    return json.dumps(value)


class DeliveryService:
    """
    Orchestration over courier adapters. No courier-specific logic lives here.

    - order / provider / shipment rows are read through the given session
    - the adapter is the only thing that talks to the network
    - shipment status writes are compare-and-set on ``version`` so a
      straggling status check can never overwrite a newer result
    - the Order row is never touched here (see ShipmentTracker)
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        provider_factory: ProviderFactory = create_provider,
        clock: Clock = utcnow,
    ):
        self.session = session
        self._provider_factory = provider_factory
        self._clock = clock

    # ---------- lookups ----------

    async def get_order(self, order_id: str) -> Optional[Order]:
        if not order_id:
            return None
        return await self.session.get(Order, order_id, populate_existing=True)

    async def get_provider(self, provider_id: Optional[str]) -> Optional[DeliveryProvider]:
        if not provider_id:
            return None
        return await self.session.get(DeliveryProvider, provider_id, populate_existing=True)

    async def get_shipment(self, shipment_id: str) -> Optional[DeliveryShipment]:
        if not shipment_id:
            return None
        return await self.session.get(DeliveryShipment, shipment_id, populate_existing=True)

    async def list_providers(self, *, active_only: bool = False) -> List[DeliveryProvider]:
        stmt = select(DeliveryProvider).order_by(DeliveryProvider.updated_at.desc())
        if active_only:
            stmt = stmt.where(DeliveryProvider.is_active.is_(True))
        return list((await self.session.execute(stmt)).scalars().all())

    async def get_shipments(self, order_id: str) -> List[DeliveryShipment]:
        stmt = (
            select(DeliveryShipment)
            .where(DeliveryShipment.order_id == order_id)
            .order_by(DeliveryShipment.created_at.desc(), DeliveryShipment.id.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def get_latest_shipment(self, order_id: str) -> Optional[DeliveryShipment]:
        shipments = await self.get_shipments(order_id)
        return shipments[0] if shipments else None

    async def find_shipment_by_courier_ref(
        self,
        provider_type: str,
        *,
        external_id: Optional[str] = None,
        tracking_id: Optional[str] = None,
    ) -> Optional[DeliveryShipment]:
        """Courier consignment id first, tracking code second."""
        key = (provider_type or "").strip().lower()
        for column, value in (
            (DeliveryShipment.external_id, external_id),
            (DeliveryShipment.tracking_id, tracking_id),
        ):
            if not value:
                continue
            stmt = (
                select(DeliveryShipment)
                .where(DeliveryShipment.provider_type == key, column == str(value))
                .order_by(DeliveryShipment.created_at.desc())
                .limit(1)
            )
            row = (await self.session.execute(stmt)).scalars().first()
            if row is not None:
                return row
        return None

    # ---------- providers ----------

    async def test_provider(self, provider_id: str) -> ConnectionResult:
        provider = await self.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFound(provider_id)
        try:
            adapter = self._provider_factory(provider)
        except ConfigurationError as exc:
            return ConnectionResult(False, f"Failed to test provider: {exc.message}")
        async with adapter:
            return await adapter.test_connection()

    async def test_credentials(
        self,
        provider_type: str,
        credentials: Any,
        config: Any = None,
        *,
        name: str = "Test Provider",
    ) -> ConnectionResult:
        """Same as test_provider, for settings an admin has not saved yet."""
        provider = DeliveryProvider(
            id=_new_id(),
            name=name,
            type=provider_type,
            is_active=True,
            credentials=_as_blob(credentials),
            config=_as_blob(config),
        )
        try:
            adapter = self._provider_factory(provider)
        except ConfigurationError as exc:
            return ConnectionResult(False, f"Failed to test provider: {exc.message}")
        async with adapter:
            return await adapter.test_connection()

    # ---------- create ----------

    async def create_shipment(
        self, order_id: str, provider_id: str, options: Optional[ShipmentOptions] = None
    ) -> DeliveryShipment:
        options = replace(options) if options is not None else ShipmentOptions()

        order = await self.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        provider = await self.get_provider(provider_id)
        if provider is None:
            raise ProviderNotFound(provider_id)
        if not provider.is_active:
            raise ProviderInactive(provider_id)

        # configuration problems surface here, before any network call
        adapter = self._provider_factory(provider)
        provider_type = adapter.provider_type

        options.cod_amount = (
            default_cod_amount(order) if options.cod_amount is None else as_decimal(options.cod_amount)
        )
        if options.locations is None:
            options.locations = await resolve_external_location_ids(self.session, order, provider_type)

        async with adapter:
            result = await adapter.create_shipment(order, options)

        now = self._clock()
        shipment = DeliveryShipment(
            id=_new_id(),
            order_id=order.id,
            provider_id=provider.id,
            provider_type=provider_type,
            courier_name=provider.name,
            external_id=result.external_id,
            tracking_id=result.tracking_id,
            status=ShipmentStatus.PENDING.value,
            raw_status=result.raw_status or ShipmentStatus.PENDING.value,
            meta=dict(result.raw_response or {}),
            cod_amount=options.cod_amount,
            note=options.note,
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.add(shipment)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            ORPHANED_SHIPMENTS.labels(provider_type).inc()
            log.error(
                "ORPHANED_REMOTE_SHIPMENT order=%s provider=%s type=%s external_id=%s tracking_id=%s: %s",
                order_id, provider_id, provider_type, result.external_id, result.tracking_id, exc,
            )
            raise ShipmentPersistenceError(
                f"{provider_type} accepted shipment {result.tracking_id or result.external_id} "
                f"for order {order_id} but it could not be saved",
                order_id=order_id,
                provider_type=provider_type,
                result=result,
            ) from exc

        log.info(
            "shipment %s created for order %s via %s (tracking_id=%s)",
            shipment.id, order_id, provider_type, shipment.tracking_id,
        )
        return shipment

    async def create_manual_shipment(
        self,
        order_id: str,
        *,
        courier_name: str,
        tracking_id: Optional[str] = None,
        note: Optional[str] = None,
        cod_amount: Any = None,
    ) -> DeliveryShipment:
        order = await self.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)

        now = self._clock()
        shipment = DeliveryShipment(
            id=_new_id(),
            order_id=order.id,
            provider_id=None,
            provider_type=ProviderType.MANUAL.value,
            courier_name=courier_name,
            tracking_id=tracking_id or None,
            note=note,
            status=ShipmentStatus.PENDING.value,
            cod_amount=default_cod_amount(order) if cod_amount is None else as_decimal(cod_amount),
            created_at=now,
            updated_at=now,
        )
        self.session.add(shipment)
        await self.session.commit()
        log.info("manual shipment %s created for order %s (%s)", shipment.id, order_id, courier_name)
        return shipment

    # ---------- status ----------

    async def check_shipment_status(self, shipment_id: str) -> DeliveryShipment:
        shipment = await self.get_shipment(shipment_id)
        if shipment is None:
            raise ShipmentNotFound(shipment_id)
        if shipment.is_manual:
            log.debug("shipment %s is manual; nothing to poll", shipment_id)
            return shipment

        provider = await self.get_provider(shipment.provider_id)
        if provider is None:
            raise ProviderNotFound(shipment.provider_id)

        adapter = self._provider_factory(provider)
        seen_version = shipment.version
        async with adapter:
            result = await adapter.check_status(shipment)

        return await self.record_courier_status(shipment, result, expected_version=seen_version)

    async def record_courier_status(
        self,
        shipment: DeliveryShipment,
        result: StatusResult,
        *,
        expected_version: Optional[int] = None,
    ) -> DeliveryShipment:
        """
        Compare-and-set write of a courier status onto the shipment.

        If someone else wrote a newer version since ``expected_version`` was
        read, our result is dropped and the current row is returned.
        """
        shipment_id = shipment.id
        provider_type = shipment.provider_type
        expected = shipment.version if expected_version is None else expected_version
        now = self._clock()

        values: Dict[Any, Any] = {
            DeliveryShipment.status: result.status,
            DeliveryShipment.raw_status: result.raw_status,
            DeliveryShipment.meta: dict(result.metadata or {}),
            DeliveryShipment.last_checked: now,
            DeliveryShipment.updated_at: now,
            DeliveryShipment.version: expected + 1,
            DeliveryShipment.check_failures: 0,
            DeliveryShipment.next_check_at: None,
        }
        stmt = (
            update(DeliveryShipment)
            .where(DeliveryShipment.id == shipment_id, DeliveryShipment.version == expected)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        await self.session.commit()

        current = await self.get_shipment(shipment_id)
        if current is None:
            raise ShipmentNotFound(shipment_id)

        if res.rowcount == 0:
            STALE_STATUS_DISCARDED.labels(provider_type).inc()
            log.warning(
                "STALE_STATUS_DISCARDED shipment=%s expected_version=%s current_version=%s dropped=%s",
                shipment_id, expected, current.version, result.status,
            )
        else:
            log.info("shipment %s status -> %s (raw=%r)", shipment_id, result.status, result.raw_status)
        return current

    async def record_check_failure(
        self, shipment_id: str, *, base_delay: int, max_delay: int
    ) -> Optional[DeliveryShipment]:
        """
        Push a shipment whose status check failed back in the poll queue.

        The delay doubles per consecutive failure (capped at ``max_delay``);
        ``last_checked`` is left alone so it still means "last good answer".
        """
        shipment = await self.get_shipment(shipment_id)
        if shipment is None:
            return None

        failures = (shipment.check_failures or 0) + 1
        delay = min(max_delay, base_delay * 2 ** (failures - 1))
        next_check_at = self._clock() + timedelta(seconds=delay)
        await self.session.execute(
            update(DeliveryShipment)
            .where(DeliveryShipment.id == shipment_id)
            .values({DeliveryShipment.check_failures: failures, DeliveryShipment.next_check_at: next_check_at})
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        log.info(
            "shipment %s check failed %d time(s) in a row, next check after %s",
            shipment_id, failures, next_check_at.isoformat(),
        )
        return await self.get_shipment(shipment_id)

    # ---------- delete ----------

    async def delete_shipment(self, shipment_id: str) -> bool:
        """Local row only; the courier-side consignment is not cancelled."""
        res = await self.session.execute(
            delete(DeliveryShipment).where(DeliveryShipment.id == shipment_id)
        )
        await self.session.commit()
        deleted = bool(res.rowcount)
        if deleted:
            log.info("shipment %s deleted", shipment_id)
        return deleted
