# tests/services/test_shipment_tracker_reconcile.py
from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from courierhub.models import Order
from courierhub.services.shipment_tracker import OrderStatusChange, ShipmentTracker
from tests.helpers.delivery import seed_order, seed_provider, seed_shipment

pytestmark = pytest.mark.asyncio

T1 = datetime(2026, 4, 1, 9, 30, tzinfo=timezone.utc)


async def _order_status(async_session_maker, order_id: str) -> str:
    async with async_session_maker() as s:
        return (await s.get(Order, order_id)).status


async def test_in_transit_ships_a_confirmed_order(session, async_session_maker):
    order = await seed_order(session, status="confirmed")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="in_transit")
    tracker = ShipmentTracker(session, clock=lambda: T1)

    change = await tracker.update_order_status_from_shipment(shipment.id, "in_transit")

    assert change == OrderStatusChange(order_id=order.id, previous_status="confirmed", new_status="shipped")
    assert await _order_status(async_session_maker, order.id) == "shipped"


async def test_repeated_notification_is_a_no_op(session, async_session_maker):
    order = await seed_order(session, status="confirmed")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="in_transit")
    tracker = ShipmentTracker(session)

    assert await tracker.update_order_status_from_shipment(shipment.id, "in_transit") is not None
    assert await tracker.update_order_status_from_shipment(shipment.id, "in_transit") is None
    assert await _order_status(async_session_maker, order.id) == "shipped"


async def test_pending_order_ignores_in_transit(session, async_session_maker):
    order = await seed_order(session, status="pending")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="in_transit")

    assert await ShipmentTracker(session).update_order_status_from_shipment(shipment.id, "in_transit") is None
    assert await _order_status(async_session_maker, order.id) == "pending"


async def test_failed_shipment_rolls_shipped_order_back(session, async_session_maker):
    order = await seed_order(session, status="shipped")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="failed")

    change = await ShipmentTracker(session).update_order_status_from_shipment(shipment.id, "failed")

    assert change.new_status == "confirmed"
    assert await _order_status(async_session_maker, order.id) == "confirmed"


async def test_late_failure_does_not_undo_delivery(session, async_session_maker):
    order = await seed_order(session, status="delivered")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="failed")

    assert await ShipmentTracker(session).update_order_status_from_shipment(shipment.id, "failed") is None
    assert await _order_status(async_session_maker, order.id) == "delivered"


async def test_stale_event_for_older_shipment_status(session, async_session_maker, caplog):
    order = await seed_order(session, status="shipped")
    provider = await seed_provider(session)
    # shipment has already moved on to delivered
    shipment = await seed_shipment(session, order, provider, status="delivered")

    with caplog.at_level(logging.INFO, logger="courierhub.services.shipment_tracker"):
        assert await ShipmentTracker(session).update_order_status_from_shipment(shipment.id, "failed") is None
    assert "RECONCILE_SKIPPED" in caplog.text
    assert await _order_status(async_session_maker, order.id) == "shipped"


async def test_only_the_changed_shipment_is_considered(session, async_session_maker):
    order = await seed_order(session, status="confirmed")
    provider = await seed_provider(session)
    await seed_shipment(session, order, provider, status="cancelled", external_id="OLD")
    current = await seed_shipment(session, order, provider, status="in_transit", external_id="NEW")

    change = await ShipmentTracker(session).update_order_status_from_shipment(current.id, "in_transit")
    assert change.new_status == "shipped"


async def test_missing_shipment_or_order(session):
    order = await seed_order(session)
    provider = await seed_provider(session)
    orphan = await seed_shipment(session, order, provider, status="delivered", order_id="ORD-GONE")
    tracker = ShipmentTracker(session)

    assert await tracker.update_order_status_from_shipment("SHP-NOPE", "delivered") is None
    assert await tracker.update_order_status_from_shipment(orphan.id, "delivered") is None
    assert await tracker.notify_status_change("SHP-NOPE", "pending", "delivered") is None
    assert await tracker.notify_status_change(orphan.id, "pending", "delivered") is None


async def test_database_error_is_logged_not_raised(session, monkeypatch, caplog):
    async def broken_get(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "get", broken_get)
    with caplog.at_level(logging.ERROR, logger="courierhub.services.shipment_tracker"):
        assert await ShipmentTracker(session).update_order_status_from_shipment("SHP-1", "delivered") is None
    assert "Error updating order status from shipment SHP-1" in caplog.text


async def test_concurrent_order_change_is_reapplied(session, async_session_maker, monkeypatch):
    order = await seed_order(session, status="confirmed")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="delivered")

    real_get = session.get
    raced = []

    async def racing_get(model, ident, **kwargs):
        obj = await real_get(model, ident, **kwargs)
        if model is Order and not raced:
            raced.append(ident)
            # someone ships the order between our read and our write
            async with async_session_maker() as other:
                await other.execute(update(Order).where(Order.id == ident).values(status="shipped"))
                await other.commit()
        return obj

    monkeypatch.setattr(session, "get", racing_get)
    change = await ShipmentTracker(session).update_order_status_from_shipment(shipment.id, "delivered")

    assert change == OrderStatusChange(order_id=order.id, previous_status="shipped", new_status="delivered")
    assert await _order_status(async_session_maker, order.id) == "delivered"


async def test_concurrent_cancel_wins(session, async_session_maker, monkeypatch):
    order = await seed_order(session, status="confirmed")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="in_transit")
    order_id = order.id

    real_get = session.get
    raced = []

    async def racing_get(model, ident, **kwargs):
        obj = await real_get(model, ident, **kwargs)
        if model is Order and not raced:
            raced.append(ident)
            async with async_session_maker() as other:
                await other.execute(update(Order).where(Order.id == ident).values(status="cancelled"))
                await other.commit()
        return obj

    monkeypatch.setattr(session, "get", racing_get)
    assert await ShipmentTracker(session).update_order_status_from_shipment(shipment.id, "in_transit") is None
    assert await _order_status(async_session_maker, order_id) == "cancelled"


async def test_notification_payload(session):
    order = await seed_order(session, customer_phone="01911111111", customer_email="a@b.c")
    provider = await seed_provider(session)
    shipment = await seed_shipment(session, order, provider, status="delivered")

    note = await ShipmentTracker(session, clock=lambda: T1).notify_status_change(
        shipment.id, "in_transit", "delivered"
    )

    assert note.as_dict() == {
        "shipment_id": shipment.id,
        "order_id": order.id,
        "customer_phone": "01911111111",
        "customer_email": "a@b.c",
        "previous_status": "in_transit",
        "new_status": "delivered",
        "timestamp": T1.isoformat(),
    }
