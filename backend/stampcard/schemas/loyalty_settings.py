"""Pydantic schemas for per-location loyalty settings."""

from datetime import datetime

from pydantic import BaseModel, Field


class LoyaltySettingsUpdate(BaseModel):
    stamps_required: int | None = Field(None, ge=1, le=100)
    reward_description: str | None = Field(None, min_length=1, max_length=500)
    reward_value: float | None = Field(None, ge=0)
    max_stamps_per_visit: int | None = Field(None, ge=1, le=100)
    stamp_expiry_days: int | None = Field(None, ge=1)
    minimum_purchase_amount: float | None = Field(None, ge=0)


class LoyaltySettingsOut(BaseModel):
    location_id: str
    stamps_required: int
    reward_description: str
    reward_value: float
    max_stamps_per_visit: int
    stamp_expiry_days: int | None = None
    minimum_purchase_amount: float | None = None
    is_default: bool
    updated_by: str | None = None
    updated_at: datetime | None = None
