# courierhub/adapters/pathao.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from courierhub.adapters.base import (
    ConnectionResult,
    CourierAdapter,
    ExternalLocationIds,
    ShipmentOptions,
    ShipmentResult,
    StatusResult,
    default_cod_amount,
    money_for_json,
)
from courierhub.adapters.credentials import PathaoConfig, PathaoCredentials
from courierhub.adapters.http import CourierHttp, extract_error_message, response_json
from courierhub.adapters.status_map import map_courier_status
from courierhub.core.clock import Clock, utcnow
from courierhub.core.config import AppSettings, get_settings
from courierhub.models.enums import ShipmentStatus
from courierhub.services.delivery_errors import (
    ConfigurationError,
    DeliveryError,
    InvalidShipmentRequest,
    ProviderRejected,
)

log = logging.getLogger(__name__)

_TOKEN_PATH = "/aladdin/api/v1/issue-token"
_ORDERS_PATH = "/aladdin/api/v1/orders"
_STORES_PATH = "/aladdin/api/v1/stores"


class PathaoAdapter(CourierAdapter):
    """
    Pathao merchant API (Aladdin).

    - OAuth password grant; the bearer token is cached on this instance until
      ``expires_in - PATHAO_TOKEN_SAFETY_SECONDS``
    - a 401 on an authorised call drops the cached token and retries once
    - orders need the courier's numeric city / zone ids (area is optional)
    """

    provider_type = "pathao"
    display_name = "Pathao"

    def __init__(
        self,
        credentials: PathaoCredentials,
        config: PathaoConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[AppSettings] = None,
        clock: Clock = utcnow,
    ):
        settings = settings or get_settings()
        self.credentials = credentials
        self.config = config
        self._http = CourierHttp(self.provider_type, credentials.base_url, client=client, settings=settings)
        self._token_safety = settings.PATHAO_TOKEN_SAFETY_SECONDS
        self._clock = clock
        self._access_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

    # ---------- auth ----------

    def _token_valid(self) -> bool:
        return bool(
            self._access_token and self._token_expiry and self._token_expiry > self._clock()
        )

    async def _get_access_token(self, *, force_refresh: bool = False) -> str:
        if not force_refresh and self._token_valid():
            return self._access_token  # type: ignore[return-value]

        resp = await self._http.request(
            "POST",
            _TOKEN_PATH,
            op="issue_token",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            json={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "grant_type": "password",
                "username": self.credentials.username,
                "password": self.credentials.password,
            },
        )
        body = response_json(resp)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not resp.is_success or not token:
            msg = extract_error_message(body, f"HTTP {resp.status_code} {resp.reason_phrase}".strip())
            raise ProviderRejected(
                f"Failed to get access token: {msg}", provider_type=self.provider_type, response=body
            )

        try:
            expires_in = int(body.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        lifetime = expires_in - self._token_safety if expires_in > self._token_safety else expires_in // 2

        self._access_token = str(token)
        self._token_expiry = self._clock() + timedelta(seconds=lifetime)
        log.debug("pathao token issued, usable for %ss", lifetime)
        return self._access_token

    async def _authorized(
        self, method: str, path: str, *, op: str, json: Any = None, retry: bool = True
    ) -> httpx.Response:
        token = await self._get_access_token()
        resp = await self._http.request(method, path, op=op, headers=self._auth_headers(token), json=json, retry=retry)
        if resp.status_code == 401:
            log.info("pathao %s got 401, refreshing token once", op)
            token = await self._get_access_token(force_refresh=True)
            resp = await self._http.request(method, path, op=op, headers=self._auth_headers(token), json=json, retry=retry)
        return resp

    @staticmethod
    def _auth_headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ---------- operations ----------

    async def test_connection(self) -> ConnectionResult:
        try:
            await self._get_access_token()
            if self.config.store_id:
                resp = await self._authorized("GET", _STORES_PATH, op="list_stores")
                body = response_json(resp)
                if not resp.is_success:
                    msg = extract_error_message(body, f"HTTP {resp.status_code}")
                    return ConnectionResult(False, f"Failed to validate store ID: {msg}")

                data = body.get("data") if isinstance(body, dict) else None
                stores = data.get("data") if isinstance(data, dict) else data
                store_ids = {
                    str(s.get("store_id")) for s in (stores or []) if isinstance(s, dict)
                }
                if self.config.store_id not in store_ids:
                    return ConnectionResult(
                        False, f"Store ID {self.config.store_id} not found in your account."
                    )
            return ConnectionResult(True, "Connection successful")
        except DeliveryError as exc:
            return ConnectionResult(False, f"Connection failed: {exc.message}")
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return ConnectionResult(False, f"Connection failed: {exc}")

    async def create_shipment(self, order, options: ShipmentOptions) -> ShipmentResult:
        if not self.config.store_id:
            raise ConfigurationError("Pathao store_id is not configured for this provider")

        loc = options.locations or ExternalLocationIds()
        missing = [name for name in ("city", "zone") if getattr(loc, name) in (None, "")]
        if missing:
            raise InvalidShipmentRequest(
                f"Order {order.id} has no Pathao {' / '.join(missing)} id; map its delivery location first"
            )

        cod = options.cod_amount if options.cod_amount is not None else default_cod_amount(order)
        payload: Dict[str, Any] = {
            "store_id": int(self.config.store_id) if self.config.store_id.isdigit() else self.config.store_id,
            "merchant_order_id": order.id,
            "recipient_name": order.customer_name,
            "recipient_phone": order.customer_phone,
            "recipient_address": order.shipping_address,
            "recipient_city": loc.city,
            "recipient_zone": loc.zone,
            "delivery_type": options.delivery_type or self.config.default_delivery_type,
            "item_type": options.item_type or self.config.default_item_type,
            "item_quantity": options.item_count or 1,
            "item_weight": options.item_weight or self.config.default_item_weight,
            "amount_to_collect": money_for_json(cod),
        }
        if loc.area not in (None, ""):
            payload["recipient_area"] = loc.area
        note = options.note or order.notes
        if note:
            payload["special_instruction"] = note

        # not retried: a lost response could mean the order exists remotely
        resp = await self._authorized("POST", _ORDERS_PATH, op="create_shipment", json=payload, retry=False)
        body = response_json(resp)
        data = body.get("data") if isinstance(body, dict) else None

        if not resp.is_success or not isinstance(data, dict) or not data.get("consignment_id"):
            msg = extract_error_message(body, f"HTTP {resp.status_code} {resp.reason_phrase}".strip())
            raise ProviderRejected(msg, provider_type=self.provider_type, response=body)

        consignment_id = str(data["consignment_id"])
        raw_status = data.get("order_status") or ShipmentStatus.PENDING.value
        log.info("pathao order created: order=%s consignment=%s", order.id, consignment_id)
        return ShipmentResult(
            external_id=consignment_id,
            tracking_id=consignment_id,
            status=map_courier_status(self.provider_type, raw_status),
            raw_status=raw_status,
            message=str(body.get("message") or ""),
            raw_response=data,
        )

    async def check_status(self, shipment) -> StatusResult:
        ref = shipment.external_id or shipment.tracking_id
        if not ref:
            raise InvalidShipmentRequest(f"Shipment {shipment.id} has no Pathao consignment id")

        resp = await self._authorized("GET", f"{_ORDERS_PATH}/{quote(str(ref), safe='')}/info", op="check_status")
        body = response_json(resp)
        msg = extract_error_message(body, f"HTTP {resp.status_code} {resp.reason_phrase}".strip())

        if resp.status_code == 404 or (
            resp.status_code in (400, 422) and "not found" in msg.lower()
        ):
            return StatusResult(
                status=ShipmentStatus.PENDING.value,
                raw_status="not_found",
                metadata={"consignment_id": ref, "message": msg},
            )

        data = body.get("data") if isinstance(body, dict) else None
        if not resp.is_success or not isinstance(data, dict):
            raise ProviderRejected(
                f"Failed to check status: {msg}", provider_type=self.provider_type, response=body
            )

        raw_status = str(data.get("order_status_slug") or data.get("order_status") or "")
        return StatusResult(
            status=map_courier_status(self.provider_type, raw_status),
            raw_status=raw_status,
            metadata=data,
        )
