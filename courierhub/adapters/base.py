# courierhub/adapters/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from courierhub.adapters.http import CourierHttp
    from courierhub.models.delivery_shipment import DeliveryShipment
    from courierhub.models.order import Order

LocationRef = Union[str, int]


@dataclass
class ExternalLocationIds:
    """Courier-side ids for the order's city / zone / area."""

    city: Optional[LocationRef] = None
    zone: Optional[LocationRef] = None
    area: Optional[LocationRef] = None


@dataclass
class ShipmentOptions:
    """
    Provider-agnostic knobs for one shipment request.

    cod_amount=None means "derive from the order totals".
    """

    cod_amount: Optional[Decimal] = None
    delivery_type: Optional[int] = None
    item_type: Optional[int] = None
    item_weight: Optional[float] = None
    item_count: Optional[int] = None
    note: Optional[str] = None
    locations: Optional[ExternalLocationIds] = None


@dataclass(frozen=True)
class ConnectionResult:
    success: bool
    message: str


@dataclass
class ShipmentResult:
    external_id: Optional[str]
    tracking_id: Optional[str]
    status: str
    raw_status: Optional[str]
    message: str = ""
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    status: str
    raw_status: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def as_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def default_cod_amount(order: "Order") -> Decimal:
    """total + shipping - discount: what the courier collects when the caller did not say."""
    return (
        as_decimal(order.total_amount)
        + as_decimal(order.shipping_charge)
        - as_decimal(order.discount_amount)
    )


def money_for_json(value: Any) -> Union[int, float]:
    """Decimal -> int when integral (couriers prefer whole taka), float otherwise."""
    amount = as_decimal(value)
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


class CourierAdapter(ABC):
    """
    One implementation per courier type.

    - adapters are built per provider record by the factory and hold no state
      shared with other instances (Pathao caches its own bearer token)
    - network failures surface as TransientTransportError, explicit courier
      refusals as ProviderRejected
    - ``async with adapter:`` closes an HTTP client the adapter created itself
    """

    provider_type: str = ""
    display_name: str = ""

    _http: Optional["CourierHttp"] = None

    @abstractmethod
    async def test_connection(self) -> ConnectionResult:
        """Cheapest authenticated call; never raises."""
        ...

    @abstractmethod
    async def create_shipment(self, order: "Order", options: ShipmentOptions) -> ShipmentResult:
        ...

    @abstractmethod
    async def check_status(self, shipment: "DeliveryShipment") -> StatusResult:
        """Courier "not found yet" maps to pending instead of raising."""
        ...

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()

    async def __aenter__(self) -> "CourierAdapter":
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.aclose()
