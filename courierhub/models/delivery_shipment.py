# courierhub/models/delivery_shipment.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from courierhub.core.clock import utcnow
from courierhub.db.base import Base
from courierhub.models.types import JSONType


class DeliveryShipment(Base):
    """
    One attempt to ship an order, through a courier or manually.

    - provider_id NULL  -> manual shipment, never polled
    - provider_type is always set ("manual" for manual shipments)
    - status is canonical; raw_status keeps whatever the courier last said
    - version is bumped on every status write and used as the
      compare-and-set token between concurrent refreshes
    - check_failures / next_check_at keep a shipment the courier keeps
      failing on out of the poller until its backoff has passed
    """

    __tablename__ = "delivery_shipments"
    __table_args__ = (
        Index("ix_delivery_shipments_order_id", "order_id"),
        Index("ix_delivery_shipments_external_id", "external_id"),
        Index("ix_delivery_shipments_tracking_id", "tracking_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    provider_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("delivery_providers.id"), nullable=True
    )
    provider_type: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")

    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tracking_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    courier_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    raw_status: Mapped[str | None] = mapped_column(String(128), nullable=True)
    meta: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    cod_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # poller backoff after failed checks; reset by the next successful status write
    check_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_check_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_manual(self) -> bool:
        return self.provider_id is None

    def __repr__(self) -> str:
        return (
            f"<DeliveryShipment id={self.id!r} order_id={self.order_id!r} "
            f"provider={self.provider_type} tracking_id={self.tracking_id!r} status={self.status}>"
        )
