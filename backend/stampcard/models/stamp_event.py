"""StampEvent: Append-only record of stamps earned on a visit."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stampcard.database import Base


class StampEvent(Base):
    __tablename__ = "stamp_events"
    __table_args__ = (CheckConstraint("stamps_earned > 0", name="ck_stamp_events_positive"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id"), nullable=False, index=True
    )
    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id"), nullable=False, index=True
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id"), nullable=False, index=True
    )
    stamps_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_amount: Mapped[float | None] = mapped_column(Numeric(10, 2, asdecimal=False))
    notes: Mapped[str | None] = mapped_column(Text)
    staff_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
