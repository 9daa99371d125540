# courierhub/adapters/steadfast.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from courierhub.adapters.base import (
    ConnectionResult,
    CourierAdapter,
    ShipmentOptions,
    ShipmentResult,
    StatusResult,
    default_cod_amount,
    money_for_json,
)
from courierhub.adapters.credentials import SteadfastConfig, SteadfastCredentials
from courierhub.adapters.http import CourierHttp, extract_error_message, response_json
from courierhub.adapters.status_map import map_courier_status
from courierhub.core.config import AppSettings, get_settings
from courierhub.models.enums import ShipmentStatus
from courierhub.services.delivery_errors import DeliveryError, InvalidShipmentRequest, ProviderRejected

log = logging.getLogger(__name__)


def full_address(order) -> str:
    parts = (order.shipping_address, order.area_name, order.zone_name, order.city_name)
    return ", ".join(p.strip() for p in parts if p and p.strip())


class SteadfastAdapter(CourierAdapter):
    """Steadfast (packzy) API: static Api-Key / Secret-Key headers, free-text address."""

    provider_type = "steadfast"
    display_name = "Steadfast"

    def __init__(
        self,
        credentials: SteadfastCredentials,
        config: SteadfastConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[AppSettings] = None,
    ):
        settings = settings or get_settings()
        self.credentials = credentials
        self.config = config
        self._http = CourierHttp(self.provider_type, credentials.base_url, client=client, settings=settings)

    def _headers(self) -> Dict[str, str]:
        return {
            "Api-Key": self.credentials.api_key,
            "Secret-Key": self.credentials.secret_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def test_connection(self) -> ConnectionResult:
        try:
            resp = await self._http.request("GET", "/get_balance", op="get_balance", headers=self._headers())
        except DeliveryError as exc:
            return ConnectionResult(False, f"Connection failed: {exc.message}")
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return ConnectionResult(False, f"Connection failed: {exc}")

        if resp.is_success:
            return ConnectionResult(True, "Connection successful")
        msg = extract_error_message(response_json(resp), f"HTTP {resp.status_code} {resp.reason_phrase}".strip())
        return ConnectionResult(False, f"Connection failed: {msg}")

    async def create_shipment(self, order, options: ShipmentOptions) -> ShipmentResult:
        cod = options.cod_amount if options.cod_amount is not None else default_cod_amount(order)
        payload: Dict[str, Any] = {
            "invoice": order.id,
            "recipient_name": order.customer_name,
            "recipient_phone": order.customer_phone,
            "recipient_address": full_address(order),
            "cod_amount": money_for_json(cod),
        }
        note = options.note or order.notes
        if note:
            payload["note"] = note

        resp = await self._http.request(
            "POST", "/create_order", op="create_shipment", headers=self._headers(), json=payload, retry=False
        )
        body = response_json(resp)
        consignment = body.get("consignment") if isinstance(body, dict) else None

        if not resp.is_success or not isinstance(consignment, dict) or body.get("status") not in (200, "200", None):
            msg = extract_error_message(body, f"HTTP {resp.status_code} {resp.reason_phrase}".strip())
            raise ProviderRejected(msg, provider_type=self.provider_type, response=body)

        consignment_id = consignment.get("consignment_id")
        tracking_code = consignment.get("tracking_code")
        raw_status = consignment.get("status") or ShipmentStatus.PENDING.value
        log.info(
            "steadfast order created: order=%s consignment=%s tracking=%s",
            order.id, consignment_id, tracking_code,
        )
        return ShipmentResult(
            external_id=str(consignment_id) if consignment_id is not None else None,
            tracking_id=str(tracking_code) if tracking_code else None,
            status=map_courier_status(self.provider_type, raw_status),
            raw_status=raw_status,
            message=str(body.get("message") or ""),
            raw_response=consignment,
        )

    async def check_status(self, shipment) -> StatusResult:
        if shipment.external_id:
            ref = str(shipment.external_id)
            path = f"/status_by_cid/{quote(ref, safe='')}"
        elif shipment.tracking_id:
            ref = str(shipment.tracking_id)
            path = f"/status_by_trackingcode/{quote(ref, safe='')}"
        else:
            raise InvalidShipmentRequest(f"Shipment {shipment.id} has no Steadfast consignment id or tracking code")

        resp = await self._http.request("GET", path, op="check_status", headers=self._headers())
        body = response_json(resp)
        body_status = body.get("status") if isinstance(body, dict) else None

        if resp.status_code == 404 or body_status in (404, "404"):
            return StatusResult(
                status=ShipmentStatus.PENDING.value,
                raw_status="not_found",
                metadata={"reference": ref, "message": extract_error_message(body, "not found")},
            )

        raw_status = body.get("delivery_status") if isinstance(body, dict) else None
        if not resp.is_success or not raw_status:
            msg = extract_error_message(body, f"HTTP {resp.status_code} {resp.reason_phrase}".strip())
            raise ProviderRejected(
                f"Failed to check status: {msg}", provider_type=self.provider_type, response=body
            )

        return StatusResult(
            status=map_courier_status(self.provider_type, raw_status),
            raw_status=str(raw_status),
            metadata=body,
        )
