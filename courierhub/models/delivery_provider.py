# courierhub/models/delivery_provider.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from courierhub.core.clock import utcnow
from courierhub.db.base import Base


class DeliveryProvider(Base):
    """
    Courier account configured by an admin.

    - ``credentials`` / ``config`` are JSON strings, decoded lazily by the
      provider factory (never validated at rest)
    - read-only for the delivery core
    """

    __tablename__ = "delivery_providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    credentials: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    config: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        # credentials are secret: never part of the repr
        return f"<DeliveryProvider id={self.id!r} name={self.name!r} type={self.type} active={self.is_active}>"
