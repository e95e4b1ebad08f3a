"""Pydantic schemas for staff grant administration."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class StaffGrantCreate(BaseModel):
    email: EmailStr
    full_name: str | None = Field(None, max_length=255)
    role: str = Field("staff", pattern="^(tenant_admin|manager|staff)$")
    location_id: str | None = None
    can_register_customers: bool = False
    can_add_stamps: bool = False
    can_redeem_rewards: bool = False
    can_view_customer_data: bool = False


class StaffGrantUpdate(BaseModel):
    role: str | None = Field(None, pattern="^(manager|staff)$")
    status: str | None = Field(None, pattern="^(active|inactive)$")
    can_register_customers: bool | None = None
    can_add_stamps: bool | None = None
    can_redeem_rewards: bool | None = None
    can_view_customer_data: bool | None = None


class StaffGrantOut(BaseModel):
    id: str
    user_id: str
    email: str
    full_name: str
    tenant_id: str
    location_id: str | None
    location_name: str | None
    role: str
    status: str
    can_register_customers: bool
    can_add_stamps: bool
    can_redeem_rewards: bool
    can_view_customer_data: bool
    created_at: datetime
