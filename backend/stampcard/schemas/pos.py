"""Request and response bodies for the POS endpoints."""

from pydantic import BaseModel, Field

from stampcard.schemas.customer import (
    CustomerData,
    CustomerOut,
    CustomerWithTotals,
    RewardEventOut,
    StampEventOut,
)


# ── Requests ────────────────────────────────────────────────

class RegisterCustomerRequest(BaseModel):
    location_id: str
    qr_code: str | None = None
    customer_data: CustomerData | None = None


class AddStampRequest(BaseModel):
    customer_id: str
    location_id: str
    # Range is checked against the location's per-visit cap
    stamps_earned: int = 1
    amount: float | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=1000)


class RedeemRewardRequest(BaseModel):
    customer_id: str
    location_id: str
    reward_type: str = Field(..., min_length=1, max_length=100)
    stamps_to_redeem: int
    description: str | None = Field(None, max_length=1000)


class CustomerLookupRequest(BaseModel):
    location_id: str
    qr_code: str | None = None
    phone: str | None = None
    email: str | None = None
    name: str | None = None


# ── Responses ───────────────────────────────────────────────

class RegisterCustomerResponse(BaseModel):
    success: bool = True
    created: bool
    customer: CustomerOut


class StampSummary(BaseModel):
    total_stamps: int
    available_rewards: int
    stamps_for_next_reward: int


class AddStampResponse(BaseModel):
    success: bool = True
    stamp_record: StampEventOut
    customer_summary: StampSummary


class RedemptionSummary(BaseModel):
    remaining_stamps: int
    available_rewards: int
    stamps_for_next_reward: int


class RedeemRewardResponse(BaseModel):
    success: bool = True
    reward_record: RewardEventOut
    customer_summary: RedemptionSummary


class CustomerLookupResponse(BaseModel):
    success: bool = True
    customers: list[CustomerWithTotals]


class CustomerUpdateResponse(BaseModel):
    success: bool = True
    customer: CustomerOut
