"""StaffGrant: A user's capabilities at one location, or tenant-wide.

Two shapes share the table:
  - location_id set            → location grant carrying exactly its flags
  - location_id NULL + role    → tenant admin grant, all capabilities at
    == tenant_admin              every location of the tenant
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stampcard.database import Base


class GrantRole(str, enum.Enum):
    TENANT_ADMIN = "tenant_admin"
    MANAGER = "manager"
    STAFF = "staff"


class GrantStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class StaffGrant(Base):
    __tablename__ = "staff_grants"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id"), nullable=False, index=True
    )
    location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id"), index=True
    )
    role: Mapped[str] = mapped_column(
        String(20), default=GrantRole.STAFF.value, nullable=False
    )

    # ── Capabilities ───────────────────────────────────────────
    can_register_customers: Mapped[bool] = mapped_column(Boolean, default=False)
    can_add_stamps: Mapped[bool] = mapped_column(Boolean, default=False)
    can_redeem_rewards: Mapped[bool] = mapped_column(Boolean, default=False)
    can_view_customer_data: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(
        String(20), default=GrantStatus.ACTIVE.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="grants")
