"""Location-scoped permission resolution for StampCard.

Design:
  - Capabilities are granted per location through `StaffGrant` rows.
  - A grant with no location and role `tenant_admin` implicitly carries
    every capability at every location of its tenant.
  - `resolve(db, actor_id, location_id)` answers "what may this actor do
    here?" with a `PermissionSet`. Denial is a value, not an error.
  - `require_capability(perm_set, capability)` is the single gate every
    privileged operation passes through.

Capability names:
  can_register_customers, can_add_stamps,
  can_redeem_rewards, can_view_customer_data
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.middleware.exceptions import PermissionDeniedError, ResourceNotFoundError
from stampcard.models.location import Location
from stampcard.models.staff_grant import GrantRole, GrantStatus, StaffGrant
from stampcard.models.tenant import Tenant, TenantStatus
from stampcard.tenancy import set_current_tenant

# ── All known capabilities ──────────────────────────────────

CAPABILITIES: tuple[str, ...] = (
    "can_register_customers",
    "can_add_stamps",
    "can_redeem_rewards",
    "can_view_customer_data",
)

KIND_LOCATION_GRANT = "location_grant"
KIND_TENANT_ADMIN = "tenant_admin"
KIND_DENIED = "denied"


@dataclass(frozen=True)
class PermissionSet:
    kind: str
    flags: dict[str, bool] = field(default_factory=dict)
    location: Location | None = None

    @property
    def tenant_id(self) -> str | None:
        return self.location.tenant_id if self.location is not None else None

    @property
    def is_denied(self) -> bool:
        return self.kind == KIND_DENIED

    @property
    def is_tenant_admin(self) -> bool:
        return self.kind == KIND_TENANT_ADMIN

    def has(self, capability: str) -> bool:
        return self.flags.get(capability, False)


def _denied(location: Location | None = None) -> PermissionSet:
    return PermissionSet(
        kind=KIND_DENIED,
        flags={cap: False for cap in CAPABILITIES},
        location=location,
    )


# ── Resolution ──────────────────────────────────────────────

async def resolve(
    db: AsyncSession,
    actor_id: str,
    location_id: str,
) -> PermissionSet:
    """Compute the actor's capabilities at a location.

    1. Inactive or unknown location → denied.
    2. Location's tenant missing or not active → denied.
    3. Active grant for (actor, location) → its own flags.
    4. Active tenant-level admin grant for the location's tenant → all flags.
    5. Otherwise denied.
    """
    location = await db.get(Location, location_id)
    if location is None or not location.is_active:
        return _denied()

    tenant = await db.get(Tenant, location.tenant_id)
    if tenant is None or tenant.status != TenantStatus.ACTIVE.value:
        return _denied(location)

    result = await db.execute(
        select(StaffGrant).where(
            StaffGrant.user_id == actor_id,
            StaffGrant.location_id == location.id,
            StaffGrant.status == GrantStatus.ACTIVE.value,
        )
    )
    grant = result.scalars().first()
    if grant is not None:
        return PermissionSet(
            kind=KIND_LOCATION_GRANT,
            flags={cap: bool(getattr(grant, cap)) for cap in CAPABILITIES},
            location=location,
        )

    if await resolve_tenant_admin(db, actor_id, location.tenant_id):
        return PermissionSet(
            kind=KIND_TENANT_ADMIN,
            flags={cap: True for cap in CAPABILITIES},
            location=location,
        )

    return _denied(location)


async def resolve_tenant_admin(
    db: AsyncSession,
    actor_id: str,
    tenant_id: str,
) -> bool:
    """True when the actor holds an active tenant-wide admin grant."""
    result = await db.execute(
        select(StaffGrant.id)
        .join(Tenant, Tenant.id == StaffGrant.tenant_id)
        .where(
            StaffGrant.user_id == actor_id,
            StaffGrant.tenant_id == tenant_id,
            StaffGrant.location_id.is_(None),
            StaffGrant.role == GrantRole.TENANT_ADMIN.value,
            StaffGrant.status == GrantStatus.ACTIVE.value,
            Tenant.status == TenantStatus.ACTIVE.value,
        )
    )
    return result.first() is not None


def require_capability(perm_set: PermissionSet, capability: str) -> None:
    """Raise PermissionDeniedError unless the capability is present."""
    if capability not in CAPABILITIES:
        raise ValueError(f"Unknown capability: {capability}")
    if not perm_set.has(capability):
        raise PermissionDeniedError(
            f"Missing permission: {capability}",
            context={"required_permission": capability},
        )


def require_tenant_admin(perm_set: PermissionSet) -> None:
    if not perm_set.is_tenant_admin:
        raise PermissionDeniedError(
            "Tenant admin access required",
            context={"required_permission": KIND_TENANT_ADMIN},
        )


async def authorize(
    db: AsyncSession,
    actor_id: str,
    location_id: str,
    capability: str,
) -> PermissionSet:
    """Resolve, scope the request to the location's tenant, and gate on one capability."""
    perm_set = await resolve(db, actor_id, location_id)
    if not perm_set.is_denied:
        set_current_tenant(perm_set.tenant_id)
    require_capability(perm_set, capability)
    return perm_set


async def authorize_tenant_admin(
    db: AsyncSession,
    actor_id: str,
    tenant_id: str,
) -> Tenant:
    """Gate tenant-wide operations and scope the request to the tenant."""
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise ResourceNotFoundError("Tenant", tenant_id)
    if not await resolve_tenant_admin(db, actor_id, tenant_id):
        raise PermissionDeniedError(
            "Tenant admin access required",
            context={"required_permission": KIND_TENANT_ADMIN},
        )
    set_current_tenant(tenant_id)
    return tenant
