"""Audit trail helper.

Every directory, ledger, settings and admin write records one ActivityLog
row in the same transaction as the write itself, so the trail can never
claim a change that was rolled back:

    await log_activity(
        db, actor, "stamps_added",
        customer=customer, location_id=location_id,
        summary="Added 2 stamp(s)", details={"stamps_earned": 2},
    )

Passing `customer` fills in the tenant and the entity fields.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.models.activity_log import ActivityLog
from stampcard.models.customer import Customer
from stampcard.models.user import User

ACTIONS = frozenset({
    "registered",
    "registration_scan",
    "updated",
    "status_changed",
    "stamps_added",
    "reward_redeemed",
    "loyalty_settings_updated",
    "location_created",
    "location_updated",
    "location_deactivated",
    "staff_granted",
    "staff_grant_updated",
    "staff_grant_revoked",
})


async def log_activity(
    db: AsyncSession,
    actor: User,
    action: str,
    *,
    customer: Customer | None = None,
    tenant_id: str | None = None,
    location_id: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    if action not in ACTIONS:
        raise ValueError(f"Unknown activity action: {action}")

    if customer is not None:
        tenant_id = tenant_id or customer.tenant_id
        entity_type = entity_type or "customer"
        entity_id = entity_id or customer.id
        entity_code = entity_code or customer.qr_code

    entry = ActivityLog(
        tenant_id=tenant_id,
        location_id=location_id,
        user_id=actor.id,
        user_name=actor.full_name,
        action=action,
        entity_type=entity_type or "unknown",
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
    return entry
