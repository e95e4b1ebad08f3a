"""Report summary response shapes."""

from datetime import datetime

from pydantic import BaseModel


class ReportMetrics(BaseModel):
    total_customers: int
    new_customers: int
    active_customers: int
    stamps_issued: int
    stamp_events: int
    rewards_redeemed: int
    stamps_redeemed: int
    growth_rate: float
    redemption_rate: float
    avg_stamps_per_customer: float


class LocationBreakdown(BaseModel):
    location_id: str
    location_name: str
    total_customers: int
    new_customers: int
    stamps_issued: int
    rewards_redeemed: int


class MonthlyBucket(BaseModel):
    month: str  # YYYY-MM
    new_customers: int
    stamps_issued: int
    rewards_redeemed: int


class ReportSummary(BaseModel):
    success: bool = True
    scope: str  # "location" | "tenant"
    tenant_id: str
    location_id: str | None = None
    time_range: str
    start_date: datetime
    end_date: datetime
    metrics: ReportMetrics
    locations: list[LocationBreakdown]
    monthly: list[MonthlyBucket]
