# courierhub/services/courier_push.py
"""
Courier status pushes (webhooks).

Both couriers can call us back on every status change. A push is applied the
same way as a polled status: compare-and-set onto the shipment, then order
reconciliation and notification when the status actually changed.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from courierhub.adapters.base import StatusResult
from courierhub.adapters.registry import decode_provider_config, get_variant
from courierhub.adapters.status_map import map_courier_status
from courierhub.core.clock import Clock, utcnow
from courierhub.obs.metrics import WEBHOOK_EVENTS
from courierhub.services.delivery_errors import ConfigurationError, InvalidShipmentRequest
from courierhub.services.delivery_service import DeliveryService
from courierhub.services.shipment_refresh import RefreshOutcome, ShipmentRefresher

log = logging.getLogger(__name__)

# provider type -> (header, value prefix)
_SECRET_HEADERS = {
    "pathao": ("X-PATHAO-Signature", ""),
    "steadfast": ("Authorization", "Bearer "),
}


@dataclass(frozen=True)
class CourierPush:
    provider_type: str
    external_id: Optional[str]
    tracking_id: Optional[str]
    raw_status: str

    @property
    def event_key(self) -> str:
        """One key per (courier, consignment, raw status), e.g. pathao_12345_delivered."""
        return f"{self.provider_type}_{self.external_id or self.tracking_id}_{self.raw_status}"


@dataclass
class PushOutcome:
    accepted: bool
    message: str
    shipment_id: Optional[str] = None
    status: Optional[str] = None
    refresh: Optional[RefreshOutcome] = None
    event_key: Optional[str] = None


def _as_ref(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value).strip() or None


def parse_push(provider_type: str, payload: Dict[str, Any]) -> CourierPush:
    key = (provider_type or "").strip().lower()
    get_variant(key)  # UnknownProviderType for anything we cannot ship with

    if key == "pathao":
        external_id = _as_ref(payload.get("consignment_id"))
        tracking_id = external_id
        raw_status = payload.get("order_status_slug") or payload.get("order_status")
    else:
        external_id = _as_ref(payload.get("consignment_id"))
        tracking_id = _as_ref(payload.get("tracking_code"))
        raw_status = payload.get("status") or payload.get("delivery_status")

    if not (external_id or tracking_id):
        raise InvalidShipmentRequest(f"{key} push has no consignment id / tracking code")
    if not raw_status:
        raise InvalidShipmentRequest(f"{key} push has no status")

    return CourierPush(key, external_id, tracking_id, str(raw_status))


class CourierPushHandler:
    def __init__(self, service: DeliveryService, refresher: ShipmentRefresher, *, clock: Clock = utcnow):
        self.service = service
        self.refresher = refresher
        self._clock = clock

    async def _configured_secrets(self, provider_type: str) -> List[str]:
        secrets: List[str] = []
        for provider in await self.service.list_providers(active_only=True):
            if (provider.type or "").strip().lower() != provider_type:
                continue
            try:
                config = decode_provider_config(provider)
            except ConfigurationError as exc:
                log.warning("provider %s config unreadable, secret ignored: %s", provider.id, exc.message)
                continue
            secret = getattr(config, "webhook_secret", None)
            if secret:
                secrets.append(secret)
        return secrets

    async def verify_secret(self, provider_type: str, headers: Mapping[str, str]) -> bool:
        """True when no secret is configured for this courier, or the request carries one of them."""
        key = (provider_type or "").strip().lower()
        secrets = await self._configured_secrets(key)
        if not secrets:
            return True

        header, prefix = _SECRET_HEADERS.get(key, ("Authorization", "Bearer "))
        presented = headers.get(header) or ""
        if prefix and presented.startswith(prefix):
            presented = presented[len(prefix):]
        presented = presented.strip()
        return bool(presented) and any(
            hmac.compare_digest(presented.encode(), s.encode()) for s in secrets
        )

    async def handle(self, provider_type: str, payload: Dict[str, Any]) -> PushOutcome:
        push = parse_push(provider_type, payload)
        event_key = push.event_key

        shipment = await self.service.find_shipment_by_courier_ref(
            push.provider_type, external_id=push.external_id, tracking_id=push.tracking_id
        )
        if shipment is None:
            WEBHOOK_EVENTS.labels(push.provider_type, "ignored").inc()
            log.warning(
                "WEBHOOK_EVENT key=%s provider=%s outcome=ignored external_id=%s tracking_id=%s",
                event_key, push.provider_type, push.external_id, push.tracking_id,
            )
            return PushOutcome(accepted=False, message="Shipment not found, ignored", event_key=event_key)

        shipment_id = shipment.id
        order_id = shipment.order_id
        previous_status = shipment.status
        meta = dict(shipment.meta or {})
        meta["last_push_payload"] = payload
        meta["last_push_at"] = self._clock().isoformat()

        result = StatusResult(
            status=map_courier_status(push.provider_type, push.raw_status),
            raw_status=push.raw_status,
            metadata=meta,
        )
        updated = await self.service.record_courier_status(shipment, result)
        outcome = await self.refresher.reconcile(updated, previous_status)

        WEBHOOK_EVENTS.labels(push.provider_type, "processed").inc()
        log.info(
            "WEBHOOK_EVENT key=%s provider=%s outcome=processed shipment=%s order=%s raw=%r %s -> %s",
            event_key, push.provider_type, shipment_id, order_id, push.raw_status,
            previous_status, outcome.shipment.status,
        )
        return PushOutcome(
            accepted=True,
            message="Status updated" if outcome.status_changed else "No status change",
            shipment_id=shipment_id,
            status=outcome.shipment.status,
            refresh=outcome,
            event_key=event_key,
        )
