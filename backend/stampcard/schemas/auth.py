"""Session schemas: who the bearer is and where they may act."""

from pydantic import BaseModel


class GrantOut(BaseModel):
    tenant_id: str
    location_id: str | None
    role: str
    can_register_customers: bool
    can_add_stamps: bool
    can_redeem_rewards: bool
    can_view_customer_data: bool

    model_config = {"from_attributes": True}


class StaffOut(BaseModel):
    id: str
    email: str
    full_name: str
    grants: list[GrantOut]


class LogoutResponse(BaseModel):
    success: bool = True
    revoked: bool
