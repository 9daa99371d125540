# courierhub/obs/metrics.py
from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# outcome: ok / client_error / transient
COURIER_CALLS = Counter(
    "courier_calls_total", "Outbound courier API calls", ["provider", "op", "outcome"]
)
COURIER_LATENCY = Histogram(
    "courier_call_duration_seconds", "Courier API call duration seconds", ["provider", "op"]
)
ORDER_RECONCILIATIONS = Counter(
    "order_reconciliations_total",
    "Order status changes driven by shipment status",
    ["from_status", "to_status"],
)
ORPHANED_SHIPMENTS = Counter(
    "orphaned_remote_shipments_total",
    "Courier shipments created remotely but not persisted locally",
    ["provider"],
)
STALE_STATUS_DISCARDED = Counter(
    "stale_shipment_status_discarded_total",
    "Status-check results dropped because a newer write won",
    ["provider"],
)
# outcome: processed / ignored
WEBHOOK_EVENTS = Counter(
    "courier_webhook_events_total",
    "Courier status pushes received",
    ["provider", "outcome"],
)

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
