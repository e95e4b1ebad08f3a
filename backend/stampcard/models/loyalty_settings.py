"""LoyaltySettings: Per-location reward threshold and visit caps.

At most one row per location. Locations without a row use the defaults
from `stampcard.config.settings`.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stampcard.database import Base


class LoyaltySettings(Base):
    __tablename__ = "loyalty_settings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id"), unique=True, nullable=False, index=True
    )
    stamps_required: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_description: Mapped[str] = mapped_column(Text, nullable=False)
    reward_value: Mapped[float] = mapped_column(
        Numeric(10, 2, asdecimal=False), default=0.0
    )
    max_stamps_per_visit: Mapped[int] = mapped_column(Integer, nullable=False)
    # Stored and exposed; not applied to balances
    stamp_expiry_days: Mapped[int | None] = mapped_column(Integer)
    minimum_purchase_amount: Mapped[float | None] = mapped_column(
        Numeric(10, 2, asdecimal=False)
    )

    updated_by: Mapped[str | None] = mapped_column(String(36))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
