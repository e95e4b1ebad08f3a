"""Pydantic schemas for tenant location administration."""

from datetime import datetime

from pydantic import BaseModel, Field


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: str | None = Field(None, max_length=500)
    city: str | None = Field(None, max_length=100)


class LocationUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    address: str | None = Field(None, max_length=500)
    city: str | None = Field(None, max_length=100)
    is_active: bool | None = None


class LocationOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    address: str | None
    city: str | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class LocationSummary(LocationOut):
    customer_count: int = 0
