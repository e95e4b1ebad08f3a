"""Customer: A loyalty card holder, owned by exactly one tenant.

Customers are never physically deleted; `status` moves between
active / inactive / blocked. The QR token is globally unique and never
changes after registration.

`ledger_version` is bumped by every stamp or reward write for the
customer. Redemption only commits when the version it read is still
current, which serialises concurrent ledger writes per customer.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stampcard.database import Base


class CustomerStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id"), nullable=False, index=True
    )
    # Home location (where the card was issued)
    location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id"), index=True
    )

    # ── Contact ────────────────────────────────────────────────
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    phone: Mapped[str | None] = mapped_column(String(30), index=True)

    qr_code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=CustomerStatus.ACTIVE.value, nullable=False
    )
    ledger_version: Mapped[int] = mapped_column(
        Integer, default=1, server_default="1", nullable=False
    )

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
