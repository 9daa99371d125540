# tests/adapters/test_pathao_adapter.py
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from courierhub.adapters.base import ExternalLocationIds, ShipmentOptions
from courierhub.adapters.credentials import PathaoConfig, PathaoCredentials
from courierhub.adapters.pathao import PathaoAdapter
from courierhub.models import DeliveryShipment, Order
from courierhub.services.delivery_errors import (
    ConfigurationError,
    InvalidShipmentRequest,
    ProviderRejected,
    TransientTransportError,
)
from tests.helpers.delivery import Recorder, mock_client

pytestmark = pytest.mark.asyncio

TOKEN = "POST /aladdin/api/v1/issue-token"
ORDERS = "POST /aladdin/api/v1/orders"
STORES = "GET /aladdin/api/v1/stores"


def _token_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"token_type": "Bearer", "expires_in": 432000, "access_token": "tok-1"})


def _order() -> Order:
    return Order(
        id="ORD-1",
        status="confirmed",
        customer_name="Rahim",
        customer_phone="01700000000",
        shipping_address="House 1, Road 2",
        notes="call first",
        total_amount=Decimal("1000"),
        shipping_charge=Decimal("60"),
        discount_amount=Decimal("100"),
    )


def _adapter(recorder: Recorder, settings, *, store_id="77", clock=None) -> PathaoAdapter:
    kwargs = {"clock": clock} if clock else {}
    return PathaoAdapter(
        PathaoCredentials(client_id="cid", client_secret="cs", username="u@x", password="pw"),
        PathaoConfig(store_id=store_id),
        client=mock_client(recorder),
        settings=settings,
        **kwargs,
    )


def _options(**kw) -> ShipmentOptions:
    kw.setdefault("locations", ExternalLocationIds(city=1, zone=52, area=None))
    kw.setdefault("cod_amount", Decimal("960.00"))
    return ShipmentOptions(**kw)


async def test_create_shipment_payload_and_result(settings):
    def create(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tok-1"
        return httpx.Response(
            200,
            json={
                "message": "Order Created Successfully",
                "type": "success",
                "code": 200,
                "data": {
                    "consignment_id": "DL121224VS8TTJ",
                    "merchant_order_id": "ORD-1",
                    "order_status": "Pending",
                    "delivery_fee": 80,
                },
            },
        )

    rec = Recorder({TOKEN: _token_ok, ORDERS: create})
    adapter = _adapter(rec, settings)

    result = await adapter.create_shipment(_order(), _options())

    assert result.tracking_id == "DL121224VS8TTJ"
    assert result.external_id == "DL121224VS8TTJ"
    assert result.status == "pending"
    assert result.raw_status == "Pending"
    assert result.raw_response["delivery_fee"] == 80

    sent = json.loads(rec.requests[-1].content)
    assert sent["store_id"] == 77
    assert sent["merchant_order_id"] == "ORD-1"
    assert sent["recipient_city"] == 1
    assert sent["recipient_zone"] == 52
    assert "recipient_area" not in sent
    assert sent["amount_to_collect"] == 960
    assert sent["delivery_type"] == 48
    assert sent["item_type"] == 2
    assert sent["item_weight"] == 0.5
    assert sent["special_instruction"] == "call first"


async def test_token_is_reused_across_calls(settings):
    def info(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 200, "data": {"order_status": "Pending", "order_status_slug": "Pending"}})

    rec = Recorder({TOKEN: _token_ok, "GET /aladdin/api/v1/orders/C1/info": info})
    adapter = _adapter(rec, settings)
    shipment = DeliveryShipment(id="S1", external_id="C1", tracking_id="C1")

    await adapter.check_status(shipment)
    await adapter.check_status(shipment)

    assert rec.paths().count(TOKEN) == 1


async def test_token_is_reissued_after_expiry(settings):
    now = [datetime(2026, 1, 1, tzinfo=timezone.utc)]

    def token(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"expires_in": 7200, "access_token": "tok"})

    def info(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 200, "data": {"order_status_slug": "Delivered"}})

    rec = Recorder({TOKEN: token, "GET /aladdin/api/v1/orders/C1/info": info})
    adapter = _adapter(rec, settings, clock=lambda: now[0])
    shipment = DeliveryShipment(id="S1", external_id="C1")

    await adapter.check_status(shipment)
    # 7200s lifetime minus 3600s safety margin
    now[0] += timedelta(seconds=3599)
    await adapter.check_status(shipment)
    assert rec.paths().count(TOKEN) == 1

    now[0] += timedelta(seconds=2)
    await adapter.check_status(shipment)
    assert rec.paths().count(TOKEN) == 2


async def test_401_refreshes_token_once(settings):
    tokens = iter(["old", "new"])

    def token(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"expires_in": 432000, "access_token": next(tokens)})

    def info(request: httpx.Request) -> httpx.Response:
        if request.headers["Authorization"] == "Bearer old":
            return httpx.Response(401, json={"message": "Unauthenticated."})
        return httpx.Response(200, json={"code": 200, "data": {"order_status_slug": "Picked"}})

    rec = Recorder({TOKEN: token, "GET /aladdin/api/v1/orders/C1/info": info})
    result = await _adapter(rec, settings).check_status(DeliveryShipment(id="S1", external_id="C1"))

    assert result.status == "picked_up"
    assert rec.paths().count(TOKEN) == 2


async def test_rejection_carries_courier_message(settings):
    def create(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={
                "message": "Please fix the given errors",
                "type": "error",
                "code": 422,
                "errors": {"recipient_phone": ["The recipient phone format is invalid."]},
            },
        )

    rec = Recorder({TOKEN: _token_ok, ORDERS: create})
    with pytest.raises(ProviderRejected) as ei:
        await _adapter(rec, settings).create_shipment(_order(), _options())

    assert "Please fix the given errors" in ei.value.message
    assert "The recipient phone format is invalid." in ei.value.message
    assert ei.value.provider_type == "pathao"
    assert ei.value.response["code"] == 422


async def test_create_is_not_retried_on_5xx(settings):
    rec = Recorder({TOKEN: _token_ok, ORDERS: lambda r: httpx.Response(502, text="bad gateway")})
    with pytest.raises(TransientTransportError):
        await _adapter(rec, settings).create_shipment(_order(), _options())
    assert rec.paths().count(ORDERS) == 1


async def test_missing_location_ids_fail_before_network(settings):
    rec = Recorder({TOKEN: _token_ok})
    with pytest.raises(InvalidShipmentRequest) as ei:
        await _adapter(rec, settings).create_shipment(
            _order(), _options(locations=ExternalLocationIds(city=1))
        )
    assert "zone" in ei.value.message
    assert rec.requests == []


async def test_missing_store_id_is_a_configuration_error(settings):
    rec = Recorder({TOKEN: _token_ok})
    with pytest.raises(ConfigurationError):
        await _adapter(rec, settings, store_id=None).create_shipment(_order(), _options())
    assert rec.requests == []


async def test_not_found_yet_maps_to_pending(settings):
    def info(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Order not found", "code": 404})

    rec = Recorder({TOKEN: _token_ok, "GET /aladdin/api/v1/orders/NEW1/info": info})
    result = await _adapter(rec, settings).check_status(DeliveryShipment(id="S1", external_id="NEW1"))

    assert result.status == "pending"
    assert result.raw_status == "not_found"


async def test_check_status_unmapped_keeps_raw(settings):
    def info(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 200, "data": {"order_status_slug": "Awaiting_Pickup"}})

    rec = Recorder({TOKEN: _token_ok, "GET /aladdin/api/v1/orders/C9/info": info})
    result = await _adapter(rec, settings).check_status(DeliveryShipment(id="S1", tracking_id="C9"))

    assert result.status == "pending"
    assert result.raw_status == "Awaiting_Pickup"


async def test_connection_ok_with_store(settings):
    def stores(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 200, "data": {"data": [{"store_id": 77, "store_name": "Main"}]}})

    rec = Recorder({TOKEN: _token_ok, STORES: stores})
    result = await _adapter(rec, settings).test_connection()
    assert result.success is True


async def test_connection_unknown_store(settings):
    def stores(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 200, "data": {"data": [{"store_id": 1}]}})

    rec = Recorder({TOKEN: _token_ok, STORES: stores})
    result = await _adapter(rec, settings).test_connection()
    assert result.success is False
    assert "77" in result.message


async def test_connection_bad_credentials_does_not_raise(settings):
    def token(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "The user credentials were incorrect.", "error": "invalid_grant"})

    rec = Recorder({TOKEN: token})
    result = await _adapter(rec, settings).test_connection()
    assert result.success is False
    assert "The user credentials were incorrect." in result.message


async def test_connection_timeout_does_not_raise(settings):
    def token(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    rec = Recorder({TOKEN: token})
    result = await _adapter(rec, settings).test_connection()
    assert result.success is False
    # one retry configured in the test settings
    assert rec.paths().count(TOKEN) == 2
