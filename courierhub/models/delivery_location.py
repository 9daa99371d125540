# courierhub/models/delivery_location.py
from __future__ import annotations

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from courierhub.db.base import Base
from courierhub.models.types import JSONType


class DeliveryLocation(Base):
    """
    Internal city / zone / area master data.

    external_ids maps a courier type to that courier's own location id,
    e.g. {"pathao": 1, "steadfast": "DHK"}.
    """

    __tablename__ = "delivery_locations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # city / zone / area
    parent_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("delivery_locations.id"), nullable=True
    )
    external_ids: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<DeliveryLocation id={self.id!r} kind={self.kind} name={self.name!r}>"
