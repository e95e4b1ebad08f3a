"""Location administration for tenant admins.

A location is created together with its loyalty settings row, so the
threshold a till sees never depends on whether anyone has opened the
settings page yet. Locations are never physically deleted: customers and
ledger events keep pointing at them, and deactivating one is enough to
make `resolve` deny every capability there.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import authorize_tenant_admin
from stampcard.middleware.exceptions import (
    DuplicateRecordError,
    InvalidLocationError,
    ValidationFailedError,
)
from stampcard.models.customer import Customer
from stampcard.models.location import Location
from stampcard.models.user import User
from stampcard.services.loyalty_settings import new_settings_row
from stampcard.utils.activity import log_activity

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "address", "city", "is_active")


def _clean(value):
    return value.strip() if isinstance(value, str) else value


async def _ensure_unique_name(
    db: AsyncSession, tenant_id: str, name: str, exclude_id: str | None = None
) -> None:
    stmt = select(Location.id).where(
        Location.tenant_id == tenant_id,
        func.lower(Location.name) == name.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Location.id != exclude_id)
    clash = (await db.execute(stmt)).scalars().first()
    if clash is not None:
        raise DuplicateRecordError(
            f"Location '{name}' already exists",
            context={"existing_location_id": clash},
        )


async def get_location_in_tenant(db: AsyncSession, tenant_id: str, location_id: str) -> Location:
    location = await db.get(Location, location_id)
    if location is None or location.tenant_id != tenant_id:
        raise InvalidLocationError(location_id)
    return location


async def list_locations(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    include_inactive: bool = True,
) -> list[dict]:
    """Locations of the tenant with their customer counts."""
    await authorize_tenant_admin(db, actor.id, tenant_id)

    stmt = select(Location).where(Location.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(Location.is_active.is_(True))
    locations = (await db.execute(stmt.order_by(Location.name))).scalars().all()

    counts = dict((await db.execute(
        select(Customer.location_id, func.count(Customer.id))
        .where(Customer.tenant_id == tenant_id)
        .group_by(Customer.location_id)
    )).all())

    return [
        {
            "id": loc.id,
            "tenant_id": loc.tenant_id,
            "name": loc.name,
            "address": loc.address,
            "city": loc.city,
            "is_active": loc.is_active,
            "created_at": loc.created_at,
            "customer_count": counts.get(loc.id, 0),
        }
        for loc in locations
    ]


async def create_location(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    data: dict,
) -> Location:
    await authorize_tenant_admin(db, actor.id, tenant_id)

    name = _clean(data.get("name"))
    if not name:
        raise ValidationFailedError("name is required")
    await _ensure_unique_name(db, tenant_id, name)

    location = Location(
        tenant_id=tenant_id,
        name=name,
        address=_clean(data.get("address")) or None,
        city=_clean(data.get("city")) or None,
    )
    db.add(location)
    await db.flush()
    db.add(new_settings_row(location.id))
    await db.flush()

    await log_activity(
        db, actor, "location_created",
        tenant_id=tenant_id,
        location_id=location.id,
        entity_type="location",
        entity_id=location.id,
        entity_code=location.name,
        summary=f"Created location {location.name}",
    )
    logger.info(f"Created location {location.id} ({location.name}) for tenant {tenant_id}")
    return location


async def update_location(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    location_id: str,
    changes: dict,
) -> Location:
    """Rename, re-address, or (re)activate a location."""
    await authorize_tenant_admin(db, actor.id, tenant_id)
    location = await get_location_in_tenant(db, tenant_id, location_id)

    changes = {k: _clean(v) for k, v in changes.items() if k in EDITABLE_FIELDS}
    if not changes:
        raise ValidationFailedError(
            "No valid fields to update",
            context={"allowed_fields": list(EDITABLE_FIELDS)},
        )
    if "name" in changes:
        if not changes["name"]:
            raise ValidationFailedError("name cannot be empty")
        await _ensure_unique_name(db, tenant_id, changes["name"], exclude_id=location.id)
    if "is_active" in changes and changes["is_active"] is None:
        raise ValidationFailedError("is_active cannot be null")

    diff = {}
    for field_name, value in changes.items():
        if getattr(location, field_name) != value:
            diff[field_name] = {"from": getattr(location, field_name), "to": value}
            setattr(location, field_name, value)
    await db.flush()

    if diff:
        await log_activity(
            db, actor, "location_updated",
            tenant_id=tenant_id,
            location_id=location.id,
            entity_type="location",
            entity_id=location.id,
            entity_code=location.name,
            summary=f"Updated location {location.name}",
            details=diff,
        )
    return location


async def deactivate_location(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    location_id: str,
) -> Location:
    await authorize_tenant_admin(db, actor.id, tenant_id)
    location = await get_location_in_tenant(db, tenant_id, location_id)

    if location.is_active:
        location.is_active = False
        await db.flush()
        await log_activity(
            db, actor, "location_deactivated",
            tenant_id=tenant_id,
            location_id=location.id,
            entity_type="location",
            entity_id=location.id,
            entity_code=location.name,
            summary=f"Deactivated location {location.name}",
        )
        logger.info(f"Deactivated location {location.id}")
    return location
