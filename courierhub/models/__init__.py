# courierhub/models/__init__.py
from courierhub.models.delivery_location import DeliveryLocation
from courierhub.models.delivery_provider import DeliveryProvider
from courierhub.models.delivery_shipment import DeliveryShipment
from courierhub.models.order import Order

__all__ = ["DeliveryLocation", "DeliveryProvider", "DeliveryShipment", "Order"]
