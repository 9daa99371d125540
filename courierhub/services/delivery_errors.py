# courierhub/services/delivery_errors.py
from __future__ import annotations

from typing import Any, Optional


class DeliveryError(Exception):
    """Base of every typed failure raised by the delivery core."""

    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------- configuration (fails before any network call, never retried) ----------


class ConfigurationError(DeliveryError):
    http_status = 400


class UnknownProviderType(ConfigurationError):
    def __init__(self, provider_type: Optional[str]):
        super().__init__(f"Unsupported provider type: {provider_type!r}")
        self.provider_type = provider_type


class MalformedCredentials(ConfigurationError):
    def __init__(self, provider_type: str, detail: str):
        super().__init__(f"Invalid {provider_type} provider settings: {detail}")
        self.provider_type = provider_type
        self.detail = detail


class ProviderInactive(ConfigurationError):
    http_status = 409

    def __init__(self, provider_id: str):
        super().__init__(f"Provider {provider_id} is not active")
        self.provider_id = provider_id


# ---------- courier side ----------


class ProviderRejected(DeliveryError):
    """The courier answered and said no. ``message`` is the courier's own text."""

    http_status = 422

    def __init__(self, message: str, *, provider_type: str, response: Any = None):
        super().__init__(message)
        self.provider_type = provider_type
        self.response = response


class TransientTransportError(DeliveryError):
    """Timeout, connection reset, 5xx, rate limit. Safe to retry later."""

    http_status = 503

    def __init__(self, message: str, *, provider_type: str):
        super().__init__(message)
        self.provider_type = provider_type


class InvalidShipmentRequest(DeliveryError):
    """Local validation of a shipment / push payload failed."""

    http_status = 422


# ---------- lookups ----------


class NotFound(DeliveryError):
    http_status = 404


class OrderNotFound(NotFound):
    def __init__(self, order_id: str):
        super().__init__(f"Order with ID {order_id} not found")
        self.order_id = order_id


class ProviderNotFound(NotFound):
    def __init__(self, provider_id: str):
        super().__init__(f"Provider with ID {provider_id} not found")
        self.provider_id = provider_id


class ShipmentNotFound(NotFound):
    def __init__(self, shipment_id: str):
        super().__init__(f"Shipment with ID {shipment_id} not found")
        self.shipment_id = shipment_id


# ---------- persistence ----------


class ShipmentPersistenceError(DeliveryError):
    """
    The courier created the shipment but the local row could not be written.
    ``result`` keeps the courier's tracking / external ids.
    """

    http_status = 502

    def __init__(self, message: str, *, order_id: str, provider_type: str, result: Any):
        super().__init__(message)
        self.order_id = order_id
        self.provider_type = provider_type
        self.result = result
