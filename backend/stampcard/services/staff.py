"""Staff grant administration for tenant admins.

A grant is either a location grant (role `manager` or `staff`, one
location, explicit capability flags) or a tenant admin grant (no location,
every capability everywhere in the tenant). Grants are never deleted:
revoking one sets its status to inactive, and `resolve` stops honouring it
on the very next request since capabilities are never cached in tokens.

Staff users are matched by email across tenants; granting access to an
unknown email creates the user.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import CAPABILITIES, authorize_tenant_admin
from stampcard.middleware.exceptions import (
    DuplicateRecordError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from stampcard.models.location import Location
from stampcard.models.staff_grant import GrantRole, GrantStatus, StaffGrant
from stampcard.models.user import User
from stampcard.services.locations import get_location_in_tenant
from stampcard.utils.activity import log_activity

logger = logging.getLogger(__name__)

LOCATION_ROLES = (GrantRole.MANAGER.value, GrantRole.STAFF.value)
ROLES = (GrantRole.TENANT_ADMIN.value, *LOCATION_ROLES)
STATUSES = tuple(s.value for s in GrantStatus)


def _flags(data: dict) -> dict:
    return {cap: bool(data.get(cap, False)) for cap in CAPABILITIES}


def _grant_out(grant: StaffGrant, user: User, location: Location | None) -> dict:
    return {
        "id": grant.id,
        "user_id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "tenant_id": grant.tenant_id,
        "location_id": grant.location_id,
        "location_name": location.name if location else None,
        "role": grant.role,
        "status": grant.status,
        "created_at": grant.created_at,
        **{cap: bool(getattr(grant, cap)) for cap in CAPABILITIES},
    }


async def _load_grant(db: AsyncSession, tenant_id: str, grant_id: str) -> StaffGrant:
    grant = await db.get(StaffGrant, grant_id)
    if grant is None or grant.tenant_id != tenant_id:
        raise ResourceNotFoundError("Staff grant", grant_id)
    return grant


def _refuse_self_lockout(actor: User, grant: StaffGrant) -> None:
    if grant.user_id == actor.id and grant.role == GrantRole.TENANT_ADMIN.value:
        raise ValidationFailedError("Cannot revoke your own tenant admin access")


async def _log(
    db: AsyncSession,
    actor: User,
    action: str,
    grant: StaffGrant,
    user: User,
    summary: str,
    details: dict | None = None,
):
    await log_activity(
        db, actor, action,
        tenant_id=grant.tenant_id,
        location_id=grant.location_id,
        entity_type="staff_grant",
        entity_id=grant.id,
        entity_code=user.email,
        summary=summary,
        details=details,
    )


async def _find_or_create_user(db: AsyncSession, email: str, full_name: str | None) -> User:
    user = (
        await db.execute(select(User).where(User.email == email))
    ).scalar_one_or_none()
    if user is not None:
        return user
    if not full_name:
        raise ValidationFailedError(
            "full_name is required for a new staff user",
            context={"missing_fields": ["full_name"]},
        )
    user = User(email=email, full_name=full_name)
    db.add(user)
    await db.flush()
    logger.info(f"Created staff user {user.id} ({email})")
    return user


# ── Reads ───────────────────────────────────────────────────

async def list_staff(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    include_inactive: bool = False,
) -> list[dict]:
    await authorize_tenant_admin(db, actor.id, tenant_id)

    stmt = (
        select(StaffGrant, User, Location)
        .join(User, User.id == StaffGrant.user_id)
        .outerjoin(Location, Location.id == StaffGrant.location_id)
        .where(StaffGrant.tenant_id == tenant_id)
        .order_by(User.full_name, StaffGrant.created_at)
    )
    if not include_inactive:
        stmt = stmt.where(StaffGrant.status == GrantStatus.ACTIVE.value)

    rows = (await db.execute(stmt)).all()
    return [_grant_out(grant, user, location) for grant, user, location in rows]


# ── Writes ──────────────────────────────────────────────────

async def grant_access(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    data: dict,
) -> dict:
    """Give a staff member a location grant or tenant admin rights.

    An inactive grant for the same user and scope is reactivated with the
    new role and flags instead of adding a second row.
    """
    await authorize_tenant_admin(db, actor.id, tenant_id)

    email = (data.get("email") or "").strip().lower()
    if not email:
        raise ValidationFailedError("email is required")
    role = data.get("role") or GrantRole.STAFF.value
    if role not in ROLES:
        raise ValidationFailedError(
            f"Invalid role: {role}", context={"allowed_roles": list(ROLES)}
        )

    location = None
    location_id = data.get("location_id")
    if role == GrantRole.TENANT_ADMIN.value:
        if location_id:
            raise ValidationFailedError("Tenant admin grants are not tied to a location")
        flags = {cap: False for cap in CAPABILITIES}
    else:
        if not location_id:
            raise ValidationFailedError(f"location_id is required for role {role}")
        location = await get_location_in_tenant(db, tenant_id, location_id)
        flags = _flags(data)

    user = await _find_or_create_user(db, email, (data.get("full_name") or "").strip())

    scope = StaffGrant.location_id == location_id if location_id else StaffGrant.location_id.is_(None)
    existing = (
        await db.execute(
            select(StaffGrant).where(
                StaffGrant.user_id == user.id,
                StaffGrant.tenant_id == tenant_id,
                scope,
            )
        )
    ).scalars().first()

    if existing is not None and existing.status == GrantStatus.ACTIVE.value:
        raise DuplicateRecordError(
            "Staff member already has access here",
            context={"existing_grant_id": existing.id},
        )

    grant = existing or StaffGrant(user_id=user.id, tenant_id=tenant_id, location_id=location_id)
    grant.role = role
    grant.status = GrantStatus.ACTIVE.value
    for cap, value in flags.items():
        setattr(grant, cap, value)
    if existing is None:
        db.add(grant)
    await db.flush()

    where = location.name if location else "all locations"
    await _log(
        db, actor, "staff_granted", grant, user,
        summary=f"Granted {role} access to {user.email} at {where}",
        details={"role": role, **flags, "reactivated": existing is not None},
    )
    logger.info(f"Grant {grant.id}: {user.email} is {role} at {where} (tenant {tenant_id})")
    return _grant_out(grant, user, location)


async def update_grant(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    grant_id: str,
    changes: dict,
) -> dict:
    """Change capability flags, switch between manager and staff, or set the status."""
    await authorize_tenant_admin(db, actor.id, tenant_id)
    grant = await _load_grant(db, tenant_id, grant_id)
    user = await db.get(User, grant.user_id)
    location = await db.get(Location, grant.location_id) if grant.location_id else None

    role = changes.get("role")
    if role is not None:
        if grant.role == GrantRole.TENANT_ADMIN.value or role not in LOCATION_ROLES:
            raise ValidationFailedError(
                "Only location grants can change role, between manager and staff",
                context={"allowed_roles": list(LOCATION_ROLES)},
            )
    status = changes.get("status")
    if status is not None and status not in STATUSES:
        raise ValidationFailedError(
            f"Invalid status: {status}", context={"allowed_statuses": list(STATUSES)}
        )
    if status == GrantStatus.INACTIVE.value:
        _refuse_self_lockout(actor, grant)

    updates = {cap: bool(changes[cap]) for cap in CAPABILITIES if changes.get(cap) is not None}
    if updates and grant.role == GrantRole.TENANT_ADMIN.value:
        raise ValidationFailedError("Tenant admin grants carry every capability implicitly")
    if role is not None:
        updates["role"] = role
    if status is not None:
        updates["status"] = status
    if not updates:
        raise ValidationFailedError("No valid fields to update")

    diff = {}
    for field_name, value in updates.items():
        if getattr(grant, field_name) != value:
            diff[field_name] = {"from": getattr(grant, field_name), "to": value}
            setattr(grant, field_name, value)
    await db.flush()

    if diff:
        await _log(
            db, actor, "staff_grant_updated", grant, user,
            summary=f"Updated access of {user.email}",
            details=diff,
        )
    return _grant_out(grant, user, location)


async def revoke_grant(
    db: AsyncSession,
    actor: User,
    tenant_id: str,
    grant_id: str,
) -> dict:
    await authorize_tenant_admin(db, actor.id, tenant_id)
    grant = await _load_grant(db, tenant_id, grant_id)
    _refuse_self_lockout(actor, grant)
    user = await db.get(User, grant.user_id)
    location = await db.get(Location, grant.location_id) if grant.location_id else None

    if grant.status != GrantStatus.INACTIVE.value:
        grant.status = GrantStatus.INACTIVE.value
        await db.flush()
        await _log(
            db, actor, "staff_grant_revoked", grant, user,
            summary=f"Revoked {grant.role} access of {user.email}",
        )
        logger.info(f"Revoked grant {grant.id} of {user.email}")
    return _grant_out(grant, user, location)

