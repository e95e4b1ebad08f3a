"""Per-location loyalty configuration.

Stamp Ledger and Reward Redemption read the effective settings of the
acting location on every write: the stored row if there is one, otherwise
the defaults from `stampcard.config.settings`. Only tenant admins may
change them.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import require_tenant_admin, resolve
from stampcard.config import settings
from stampcard.middleware.exceptions import (
    InvalidLocationError,
    PermissionDeniedError,
    ValidationFailedError,
)
from stampcard.models.location import Location
from stampcard.models.loyalty_settings import LoyaltySettings
from stampcard.models.user import User
from stampcard.tenancy import set_current_tenant
from stampcard.utils.activity import log_activity

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "stamps_required",
    "reward_description",
    "reward_value",
    "max_stamps_per_visit",
    "stamp_expiry_days",
    "minimum_purchase_amount",
)
NULLABLE_FIELDS = ("stamp_expiry_days", "minimum_purchase_amount")


@dataclass
class EffectiveSettings:
    location_id: str
    stamps_required: int
    reward_description: str
    reward_value: float
    max_stamps_per_visit: int
    stamp_expiry_days: int | None = None
    minimum_purchase_amount: float | None = None
    is_default: bool = False
    updated_by: str | None = None
    updated_at: datetime | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def default_settings(location_id: str) -> EffectiveSettings:
    return EffectiveSettings(
        location_id=location_id,
        stamps_required=settings.default_stamps_required,
        reward_description=settings.default_reward_description,
        reward_value=settings.default_reward_value,
        max_stamps_per_visit=settings.default_max_stamps_per_visit,
        is_default=True,
    )


def new_settings_row(location_id: str) -> LoyaltySettings:
    """A settings row carrying the configured defaults, written when a location is created."""
    base = default_settings(location_id)
    return LoyaltySettings(
        location_id=location_id,
        stamps_required=base.stamps_required,
        reward_description=base.reward_description,
        reward_value=base.reward_value,
        max_stamps_per_visit=base.max_stamps_per_visit,
    )


async def get_effective_settings(db: AsyncSession, location_id: str) -> EffectiveSettings:
    result = await db.execute(
        select(LoyaltySettings).where(LoyaltySettings.location_id == location_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return default_settings(location_id)

    return EffectiveSettings(
        location_id=row.location_id,
        stamps_required=row.stamps_required,
        reward_description=row.reward_description,
        reward_value=float(row.reward_value or 0),
        max_stamps_per_visit=row.max_stamps_per_visit,
        stamp_expiry_days=row.stamp_expiry_days,
        minimum_purchase_amount=(
            float(row.minimum_purchase_amount)
            if row.minimum_purchase_amount is not None
            else None
        ),
        is_default=False,
        updated_by=row.updated_by,
        updated_at=row.updated_at,
    )


def validate_settings(values: dict) -> None:
    """Range checks shared by the API schema and direct service callers."""
    stamps_required = values.get("stamps_required")
    if stamps_required is not None and not 1 <= stamps_required <= 100:
        raise ValidationFailedError("stamps_required must be between 1 and 100")

    max_per_visit = values.get("max_stamps_per_visit")
    if max_per_visit is not None and not 1 <= max_per_visit <= 100:
        raise ValidationFailedError("max_stamps_per_visit must be between 1 and 100")

    reward_value = values.get("reward_value")
    if reward_value is not None and reward_value < 0:
        raise ValidationFailedError("reward_value cannot be negative")

    expiry = values.get("stamp_expiry_days")
    if expiry is not None and expiry < 1:
        raise ValidationFailedError("stamp_expiry_days must be at least 1")

    minimum = values.get("minimum_purchase_amount")
    if minimum is not None and minimum < 0:
        raise ValidationFailedError("minimum_purchase_amount cannot be negative")

    description = values.get("reward_description")
    if description is not None and not description.strip():
        raise ValidationFailedError("reward_description cannot be empty")


async def read_location_settings(
    db: AsyncSession,
    actor: User,
    location_id: str,
) -> EffectiveSettings:
    """Any actor with a non-denied permission set at the location may read."""
    if await db.get(Location, location_id) is None:
        raise InvalidLocationError(location_id)

    perm_set = await resolve(db, actor.id, location_id)
    if perm_set.is_denied:
        raise PermissionDeniedError("No access to this location")
    set_current_tenant(perm_set.tenant_id)

    return await get_effective_settings(db, location_id)


async def update_location_settings(
    db: AsyncSession,
    actor: User,
    location_id: str,
    changes: dict,
) -> EffectiveSettings:
    """Create or update the settings row of a location. Tenant admins only."""
    location = await db.get(Location, location_id)
    if location is None:
        raise InvalidLocationError(location_id)

    perm_set = await resolve(db, actor.id, location_id)
    require_tenant_admin(perm_set)
    set_current_tenant(perm_set.tenant_id)

    # Only the optional limits may be cleared with null
    changes = {
        k: v for k, v in changes.items()
        if k in EDITABLE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
    }
    validate_settings(changes)

    result = await db.execute(
        select(LoyaltySettings).where(LoyaltySettings.location_id == location_id)
    )
    row = result.scalar_one_or_none()

    if row is None:
        row = new_settings_row(location_id)
        db.add(row)

    changed = {}
    for field_name, value in changes.items():
        if getattr(row, field_name) != value:
            changed[field_name] = value
            setattr(row, field_name, value)
    row.updated_by = actor.id
    row.updated_at = datetime.utcnow()
    await db.flush()

    await log_activity(
        db, actor, "loyalty_settings_updated",
        entity_type="loyalty_settings",
        entity_id=row.id,
        entity_code=location.name,
        tenant_id=location.tenant_id,
        location_id=location_id,
        summary=f"Updated loyalty settings for {location.name}",
        details={"changes": changed},
    )
    logger.info(
        f"Loyalty settings updated for location {location_id}: {sorted(changed)}"
    )

    return await get_effective_settings(db, location_id)
