"""Pydantic schemas for customers and their ledger summaries."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class CustomerData(BaseModel):
    """Contact details supplied at registration. All three are required by
    the service; they are optional here so a missing one is reported with
    the service's own message."""
    name: str | None = Field(None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=30)


class CustomerUpdate(BaseModel):
    location_id: str
    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, min_length=1, max_length=30)
    status: str | None = Field(None, pattern="^(active|inactive|blocked)$")


class CustomerOut(BaseModel):
    id: str
    tenant_id: str
    location_id: str | None
    name: str
    email: str | None
    phone: str | None
    qr_code: str
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CustomerWithTotals(CustomerOut):
    total_stamps: int
    total_rewards: int
    available_rewards: int
    stamps_for_next_reward: int


class StampEventOut(BaseModel):
    id: str
    customer_id: str
    location_id: str
    tenant_id: str
    stamps_earned: int
    purchase_amount: float | None
    notes: str | None
    staff_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class RewardEventOut(BaseModel):
    id: str
    customer_id: str
    location_id: str
    tenant_id: str
    reward_type: str
    description: str | None
    reward_value: float
    stamps_used: int
    staff_id: str
    status: str
    redeemed_at: datetime

    model_config = {"from_attributes": True}


class CustomerHistory(BaseModel):
    success: bool = True
    customer: CustomerWithTotals
    stamp_events: list[StampEventOut]
    reward_events: list[RewardEventOut]
