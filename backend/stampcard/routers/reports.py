"""Reporting router.

Endpoints:
    GET /api/reports/summary   Counts, ratios, per-location and monthly breakdowns
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.deps import get_current_user
from stampcard.database import get_db
from stampcard.models.user import User
from stampcard.schemas.reports import ReportSummary
from stampcard.services.reporting import report_summary

router = APIRouter()


@router.get("/summary", response_model=ReportSummary)
async def get_summary(
    time_range: str = Query("30d", pattern="^(30d|90d|6m|1y|custom)$"),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    location_id: str | None = None,
    tenant_id: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Dashboard summary for one location, or a whole tenant for tenant admins."""
    summary = await report_summary(
        db,
        user,
        time_range=time_range,
        start_date=start_date,
        end_date=end_date,
        location_id=location_id,
        tenant_id=tenant_id,
    )
    return ReportSummary.model_validate(summary)
