# courierhub/api/routers/courier_webhooks.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from courierhub.api.deps import get_push_handler
from courierhub.services.courier_push import CourierPushHandler
from courierhub.services.delivery_errors import (
    DeliveryError,
    InvalidShipmentRequest,
    UnknownProviderType,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider_type}")
async def courier_webhook(
    provider_type: str,
    request: Request,
    handler: CourierPushHandler = Depends(get_push_handler),
):
    """
    Courier status callback.

    - 400: body is not a JSON object / unknown courier / missing id or status
    - 401: a webhook secret is configured and the request does not carry it
    - 200: everything else, including pushes for shipments we do not know and
      processing errors, so couriers do not keep retrying
    """
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"success": False, "error": "invalid JSON body"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"success": False, "error": "payload must be a JSON object"}, status_code=400)

    if not await handler.verify_secret(provider_type, request.headers):
        log.warning("rejected %s webhook: bad or missing secret", provider_type)
        return JSONResponse({"success": False, "error": "unauthorized"}, status_code=401)

    try:
        outcome = await handler.handle(provider_type, payload)
    except (InvalidShipmentRequest, UnknownProviderType) as exc:
        return JSONResponse({"success": False, "error": exc.message}, status_code=400)
    except (DeliveryError, SQLAlchemyError) as exc:
        log.error("error processing %s webhook: %s", provider_type, getattr(exc, "message", exc))
        return JSONResponse({"success": True, "message": "Error processing, will retry"})

    return JSONResponse(
        {
            "success": True,
            "message": outcome.message,
            "shipment_id": outcome.shipment_id,
            "status": outcome.status,
        }
    )
