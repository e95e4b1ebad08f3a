"""Aggregate model imports for Alembic auto-detection."""

# Tenancy / identity
from stampcard.models.tenant import Tenant, TenantStatus  # noqa: F401
from stampcard.models.location import Location  # noqa: F401
from stampcard.models.user import User  # noqa: F401
from stampcard.models.staff_grant import GrantRole, GrantStatus, StaffGrant  # noqa: F401

# Loyalty
from stampcard.models.customer import Customer, CustomerStatus  # noqa: F401
from stampcard.models.loyalty_settings import LoyaltySettings  # noqa: F401
from stampcard.models.stamp_event import StampEvent  # noqa: F401
from stampcard.models.reward_event import RewardEvent  # noqa: F401

# Audit
from stampcard.models.activity_log import ActivityLog  # noqa: F401
