"""Aggregate Reporting service.

Read-only dashboard numbers over a time window, scoped either to one
location (staff with `can_view_customer_data`) or to a whole tenant
(tenant admins). All ratios are percentages or averages rounded to two
decimals and are 0 when their denominator is 0.

Summaries are cached in Redis for 60 seconds per tenant and parameters,
and dropped whenever a registration, award or redemption is written for
that tenant. Preset windows end on a whole minute so repeated dashboard
loads share a cache entry.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import authorize, authorize_tenant_admin
from stampcard.middleware.exceptions import (
    CrossTenantViolationError,
    InvalidLocationError,
    ValidationFailedError,
)
from stampcard.models.customer import Customer
from stampcard.models.location import Location
from stampcard.models.reward_event import RewardEvent
from stampcard.models.stamp_event import StampEvent
from stampcard.models.user import User
from stampcard.utils.cache import cached

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "30d": 30,
    "90d": 90,
    "6m": 180,
    "1y": 365,
}


def _as_naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; offset-aware bounds are converted first."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def resolve_window(
    time_range: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Translate a range name (or custom bounds) into [start, end]."""
    if time_range == "custom":
        if start_date is None or end_date is None:
            raise ValidationFailedError("Custom range requires start_date and end_date")
        start = _as_naive_utc(start_date)
        end = _as_naive_utc(end_date)
        if end <= start:
            raise ValidationFailedError("end_date must be after start_date")
        return start, end

    days = TIME_RANGES.get(time_range)
    if days is None:
        raise ValidationFailedError(
            f"Unknown time_range: {time_range}",
            context={"allowed": sorted(TIME_RANGES) + ["custom"]},
        )
    # Round up to the next minute so events from this minute are included
    end = (now or datetime.utcnow()).replace(second=0, microsecond=0) + timedelta(minutes=1)
    return end - timedelta(days=days), end


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * scale, 2)


def month_keys(start: datetime, end: datetime) -> list[str]:
    keys = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


# ── Entry point ─────────────────────────────────────────────

async def report_summary(
    db: AsyncSession,
    actor: User,
    *,
    time_range: str = "30d",
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    location_id: str | None = None,
    tenant_id: str | None = None,
) -> dict:
    """Authorize the requested scope and return the (possibly cached) summary."""
    if location_id:
        if await db.get(Location, location_id) is None:
            raise InvalidLocationError(location_id)
        perm_set = await authorize(db, actor.id, location_id, "can_view_customer_data")
        if tenant_id and tenant_id != perm_set.tenant_id:
            raise CrossTenantViolationError("Location does not belong to the requested tenant")
        scope, tenant_id = "location", perm_set.tenant_id
    elif tenant_id:
        await authorize_tenant_admin(db, actor.id, tenant_id)
        scope = "tenant"
    else:
        raise ValidationFailedError("Provide location_id or tenant_id")

    start, end = resolve_window(time_range, start_date, end_date)

    return await build_summary(
        db,
        scope=scope,
        tenant_id=tenant_id,
        location_id=location_id,
        time_range=time_range,
        start=start,
        end=end,
    )


@cached(ttl=60, prefix="reports")
async def build_summary(
    db: AsyncSession,
    *,
    scope: str,
    tenant_id: str,
    location_id: str | None,
    time_range: str,
    start: datetime,
    end: datetime,
) -> dict:
    def customer_scope(stmt):
        stmt = stmt.where(Customer.tenant_id == tenant_id)
        if location_id:
            stmt = stmt.where(Customer.location_id == location_id)
        return stmt

    def stamp_scope(stmt):
        stmt = stmt.where(StampEvent.tenant_id == tenant_id)
        if location_id:
            stmt = stmt.where(StampEvent.location_id == location_id)
        return stmt

    def reward_scope(stmt):
        stmt = stmt.where(RewardEvent.tenant_id == tenant_id)
        if location_id:
            stmt = stmt.where(RewardEvent.location_id == location_id)
        return stmt

    async def scalar(stmt) -> int:
        return int((await db.execute(stmt)).scalar() or 0)

    previous_start = start - (end - start)

    # ── Customers ──────────────────────────────────────────────
    total_customers = await scalar(
        customer_scope(select(func.count(Customer.id))).where(Customer.created_at <= end)
    )
    new_customers = await scalar(
        customer_scope(select(func.count(Customer.id))).where(
            Customer.created_at >= start, Customer.created_at <= end
        )
    )
    previous_new = await scalar(
        customer_scope(select(func.count(Customer.id))).where(
            Customer.created_at >= previous_start, Customer.created_at < start
        )
    )
    active_customers = await scalar(
        stamp_scope(select(func.count(distinct(StampEvent.customer_id)))).where(
            StampEvent.created_at >= start, StampEvent.created_at <= end
        )
    )

    # ── Ledger ─────────────────────────────────────────────────
    stamps_issued = await scalar(
        stamp_scope(select(func.coalesce(func.sum(StampEvent.stamps_earned), 0))).where(
            StampEvent.created_at >= start, StampEvent.created_at <= end
        )
    )
    stamp_events = await scalar(
        stamp_scope(select(func.count(StampEvent.id))).where(
            StampEvent.created_at >= start, StampEvent.created_at <= end
        )
    )
    rewards_redeemed = await scalar(
        reward_scope(select(func.count(RewardEvent.id))).where(
            RewardEvent.redeemed_at >= start, RewardEvent.redeemed_at <= end
        )
    )
    stamps_redeemed = await scalar(
        reward_scope(select(func.coalesce(func.sum(RewardEvent.stamps_used), 0))).where(
            RewardEvent.redeemed_at >= start, RewardEvent.redeemed_at <= end
        )
    )

    metrics = {
        "total_customers": total_customers,
        "new_customers": new_customers,
        "active_customers": active_customers,
        "stamps_issued": stamps_issued,
        "stamp_events": stamp_events,
        "rewards_redeemed": rewards_redeemed,
        "stamps_redeemed": stamps_redeemed,
        "growth_rate": safe_ratio(new_customers - previous_new, previous_new, 100),
        "redemption_rate": safe_ratio(stamps_redeemed, stamps_issued, 100),
        "avg_stamps_per_customer": safe_ratio(stamps_issued, total_customers),
    }

    # ── Per-location breakdown ─────────────────────────────────
    loc_stmt = select(Location.id, Location.name).where(Location.tenant_id == tenant_id)
    if location_id:
        loc_stmt = loc_stmt.where(Location.id == location_id)
    locations = (await db.execute(loc_stmt.order_by(Location.name))).all()

    def grouped(rows) -> dict:
        return {key: int(value or 0) for key, value in rows}

    customers_by_loc = grouped((await db.execute(
        customer_scope(select(Customer.location_id, func.count(Customer.id)))
        .where(Customer.created_at <= end)
        .group_by(Customer.location_id)
    )).all())
    new_by_loc = grouped((await db.execute(
        customer_scope(select(Customer.location_id, func.count(Customer.id)))
        .where(Customer.created_at >= start, Customer.created_at <= end)
        .group_by(Customer.location_id)
    )).all())
    stamps_by_loc = grouped((await db.execute(
        stamp_scope(select(StampEvent.location_id, func.sum(StampEvent.stamps_earned)))
        .where(StampEvent.created_at >= start, StampEvent.created_at <= end)
        .group_by(StampEvent.location_id)
    )).all())
    rewards_by_loc = grouped((await db.execute(
        reward_scope(select(RewardEvent.location_id, func.count(RewardEvent.id)))
        .where(RewardEvent.redeemed_at >= start, RewardEvent.redeemed_at <= end)
        .group_by(RewardEvent.location_id)
    )).all())

    breakdown = [
        {
            "location_id": loc_id,
            "location_name": loc_name,
            "total_customers": customers_by_loc.get(loc_id, 0),
            "new_customers": new_by_loc.get(loc_id, 0),
            "stamps_issued": stamps_by_loc.get(loc_id, 0),
            "rewards_redeemed": rewards_by_loc.get(loc_id, 0),
        }
        for loc_id, loc_name in locations
    ]

    # ── Monthly buckets ────────────────────────────────────────
    buckets = {
        key: {"month": key, "new_customers": 0, "stamps_issued": 0, "rewards_redeemed": 0}
        for key in month_keys(start, end)
    }

    customer_dates = (await db.execute(
        customer_scope(select(Customer.created_at)).where(
            Customer.created_at >= start, Customer.created_at <= end
        )
    )).scalars().all()
    for created_at in customer_dates:
        buckets[created_at.strftime("%Y-%m")]["new_customers"] += 1

    stamp_rows = (await db.execute(
        stamp_scope(select(StampEvent.created_at, StampEvent.stamps_earned)).where(
            StampEvent.created_at >= start, StampEvent.created_at <= end
        )
    )).all()
    for created_at, earned in stamp_rows:
        buckets[created_at.strftime("%Y-%m")]["stamps_issued"] += earned

    reward_dates = (await db.execute(
        reward_scope(select(RewardEvent.redeemed_at)).where(
            RewardEvent.redeemed_at >= start, RewardEvent.redeemed_at <= end
        )
    )).scalars().all()
    for redeemed_at in reward_dates:
        buckets[redeemed_at.strftime("%Y-%m")]["rewards_redeemed"] += 1

    logger.debug(f"Built {scope} report for tenant {tenant_id} ({time_range})")

    return {
        "success": True,
        "scope": scope,
        "tenant_id": tenant_id,
        "location_id": location_id,
        "time_range": time_range,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "metrics": metrics,
        "locations": breakdown,
        "monthly": list(buckets.values()),
    }
