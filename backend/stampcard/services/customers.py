"""Customer Directory service.

Handles the POS-facing customer operations:
  - find-or-register by QR token (scan at the till, or sign-up)
  - lookup by QR token / phone / email / name, annotated with totals
  - contact edits and status transitions
  - per-customer event history

Every operation is scoped to the tenant of the acting location; customers
of other tenants are never visible or writable.
"""

import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import PermissionSet, authorize
from stampcard.config import settings
from stampcard.middleware.exceptions import (
    InvalidLocationError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from stampcard.models.customer import Customer, CustomerStatus
from stampcard.models.location import Location
from stampcard.models.reward_event import RewardEvent
from stampcard.models.stamp_event import StampEvent
from stampcard.models.user import User
from stampcard.services.balance import customer_totals
from stampcard.services.loyalty_settings import get_effective_settings
from stampcard.tenancy import ensure_same_tenant
from stampcard.utils.activity import log_activity
from stampcard.utils.cache import invalidate_after_commit
from stampcard.utils.numbering import generate_unique_qr_token

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _not_active(customer: Customer, tenant_id: str) -> PermissionDeniedError:
    # A caller from another tenant learns nothing about the customer
    if customer.tenant_id != tenant_id:
        return PermissionDeniedError("Customer is not available")
    return PermissionDeniedError(
        f"Customer is {customer.status}",
        context={"customer_status": customer.status},
    )


# ── Shared customer loading ─────────────────────────────────

async def get_customer_in_scope(
    db: AsyncSession,
    customer_id: str,
    perm_set: PermissionSet,
    *,
    require_active: bool = False,
    for_update: bool = False,
) -> Customer:
    """Load a customer and check it may be acted on from this location.

    Order: exists → (active) → same tenant as the acting location.
    `for_update` locks the row where the backend supports it and always
    refreshes the identity-map copy so `ledger_version` is current.
    """
    stmt = select(Customer).where(Customer.id == customer_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    customer = (await db.execute(stmt)).scalar_one_or_none()

    if customer is None:
        raise ResourceNotFoundError("Customer", customer_id)
    if require_active and customer.status != CustomerStatus.ACTIVE.value:
        raise _not_active(customer, perm_set.tenant_id)
    ensure_same_tenant(perm_set.tenant_id, customer.tenant_id)
    return customer


async def customer_with_totals(
    db: AsyncSession,
    customer: Customer,
    stamps_required: int,
) -> dict:
    data = {
        "id": customer.id,
        "tenant_id": customer.tenant_id,
        "location_id": customer.location_id,
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "qr_code": customer.qr_code,
        "status": customer.status,
        "created_at": customer.created_at,
        "updated_at": customer.updated_at,
    }
    data.update(await customer_totals(db, customer.id, stamps_required))
    return data


# ── Find or register ────────────────────────────────────────

async def find_or_register(
    db: AsyncSession,
    actor: User,
    location_id: str,
    qr_code: str | None = None,
    customer_data: dict | None = None,
) -> tuple[Customer, bool]:
    """Return the customer holding `qr_code`, or register a new one.

    Returns:
        (customer, created)

    Raises:
        InvalidLocationError, PermissionDeniedError, CrossTenantViolationError,
        ResourceNotFoundError, ValidationFailedError
    """
    location = await db.get(Location, location_id)
    if location is None:
        raise InvalidLocationError(location_id)

    perm_set = await authorize(db, actor.id, location_id, "can_register_customers")

    qr_code = _clean(qr_code)
    if qr_code:
        result = await db.execute(select(Customer).where(Customer.qr_code == qr_code))
        existing = result.scalar_one_or_none()
        if existing is not None:
            if existing.status == CustomerStatus.BLOCKED.value:
                raise _not_active(existing, perm_set.tenant_id)
            ensure_same_tenant(perm_set.tenant_id, existing.tenant_id)

            await log_activity(
                db, actor, "registration_scan",
                customer=existing,
                location_id=location.id,
                summary=f"Scanned existing card at {location.name}",
            )
            return existing, False

        if not customer_data:
            raise ResourceNotFoundError("Customer", qr_code)

    customer_data = customer_data or {}
    name = _clean(customer_data.get("name"))
    email = _clean(customer_data.get("email"))
    phone = _clean(customer_data.get("phone"))
    if email:
        email = email.lower()

    missing = [k for k, v in (("name", name), ("email", email), ("phone", phone)) if not v]
    if missing:
        raise ValidationFailedError(
            f"Missing required customer fields: {', '.join(missing)}",
            context={"missing_fields": missing},
        )

    duplicate = (
        await db.execute(
            select(Customer).where(
                Customer.tenant_id == location.tenant_id,
                or_(Customer.email == email, Customer.phone == phone),
            )
        )
    ).scalars().first()
    if duplicate is not None:
        raise ValidationFailedError(
            "Customer already exists with this email or phone",
            context={"existing_customer_id": duplicate.id},
        )

    customer = Customer(
        tenant_id=location.tenant_id,
        location_id=location.id,
        name=name,
        email=email,
        phone=phone,
        qr_code=await generate_unique_qr_token(db),
        status=CustomerStatus.ACTIVE.value,
        created_by=actor.id,
    )
    db.add(customer)
    await db.flush()

    await log_activity(
        db, actor, "registered",
        customer=customer,
        location_id=location.id,
        summary=f"Registered customer at {location.name}",
    )
    invalidate_after_commit(db, "reports:*")
    logger.info(f"Registered customer {customer.id} at location {location.id}")

    return customer, True


# ── Lookup ──────────────────────────────────────────────────

async def lookup(
    db: AsyncSession,
    actor: User,
    location_id: str,
    qr_code: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    name: str | None = None,
) -> list[dict]:
    """Find customers of the location's tenant by one contact criterion.

    Precedence when several are given: qr_code > phone > email > name.
    Blocked customers are left out; inactive ones are returned with their
    status so staff can reactivate them.
    Results are annotated with ledger totals computed against the acting
    location's reward threshold. Read only.
    """
    perm_set = await authorize(db, actor.id, location_id, "can_view_customer_data")

    qr_code, phone, email, name = _clean(qr_code), _clean(phone), _clean(email), _clean(name)

    stmt = select(Customer).where(
        Customer.tenant_id == perm_set.tenant_id,
        Customer.status != CustomerStatus.BLOCKED.value,
    )
    if qr_code:
        stmt = stmt.where(Customer.qr_code == qr_code)
    elif phone:
        stmt = stmt.where(Customer.phone == phone)
    elif email:
        stmt = stmt.where(Customer.email == email.lower())
    elif name:
        stmt = stmt.where(Customer.name.ilike(f"%{name}%"))
    else:
        raise ValidationFailedError(
            "Provide one of qr_code, phone, email or name to search"
        )

    stmt = stmt.order_by(Customer.name, Customer.id).limit(settings.lookup_result_limit)
    customers = (await db.execute(stmt)).scalars().all()
    if not customers:
        raise ResourceNotFoundError("Customer")

    loyalty = await get_effective_settings(db, location_id)
    return [
        await customer_with_totals(db, customer, loyalty.stamps_required)
        for customer in customers
    ]


# ── Edits ───────────────────────────────────────────────────

async def update_customer(
    db: AsyncSession,
    actor: User,
    customer_id: str,
    location_id: str,
    changes: dict,
) -> Customer:
    """Edit contact details or move the customer between statuses.

    The QR token is immutable and not accepted here.
    """
    perm_set = await authorize(db, actor.id, location_id, "can_register_customers")
    customer = await get_customer_in_scope(db, customer_id, perm_set)

    updates = {}
    for field_name in ("name", "email", "phone"):
        if field_name in changes:
            value = _clean(changes[field_name])
            if value is None:
                raise ValidationFailedError(f"{field_name} cannot be empty")
            if field_name == "email":
                value = value.lower()
            if value != getattr(customer, field_name):
                updates[field_name] = value

    contact_filters = []
    if "email" in updates:
        contact_filters.append(Customer.email == updates["email"])
    if "phone" in updates:
        contact_filters.append(Customer.phone == updates["phone"])
    if contact_filters:
        clash = (
            await db.execute(
                select(Customer.id).where(
                    Customer.tenant_id == customer.tenant_id,
                    Customer.id != customer.id,
                    or_(*contact_filters),
                )
            )
        ).scalars().first()
        if clash is not None:
            raise ValidationFailedError(
                "Another customer already uses this email or phone",
                context={"existing_customer_id": clash},
            )

    old_status = customer.status
    new_status = changes.get("status")
    if new_status is not None and new_status not in {s.value for s in CustomerStatus}:
        raise ValidationFailedError(f"Unknown customer status: {new_status}")

    for field_name, value in updates.items():
        setattr(customer, field_name, value)
    if new_status is not None and new_status != old_status:
        customer.status = new_status
    await db.flush()

    if updates:
        await log_activity(
            db, actor, "updated",
            customer=customer,
            location_id=location_id,
            summary="Updated customer contact details",
            details={"fields": sorted(updates)},
        )
    if new_status is not None and new_status != old_status:
        await log_activity(
            db, actor, "status_changed",
            customer=customer,
            location_id=location_id,
            summary=f"Status changed from {old_status} to {new_status}",
            details={"from": old_status, "to": new_status},
        )

    return customer


# ── History / QR ────────────────────────────────────────────

async def customer_history(
    db: AsyncSession,
    actor: User,
    customer_id: str,
    location_id: str,
) -> dict:
    """Chronological stamp and reward events plus the current summary."""
    perm_set = await authorize(db, actor.id, location_id, "can_view_customer_data")
    customer = await get_customer_in_scope(db, customer_id, perm_set)

    stamp_events = (
        await db.execute(
            select(StampEvent)
            .where(StampEvent.customer_id == customer.id)
            .order_by(StampEvent.created_at, StampEvent.id)
        )
    ).scalars().all()
    reward_events = (
        await db.execute(
            select(RewardEvent)
            .where(RewardEvent.customer_id == customer.id)
            .order_by(RewardEvent.redeemed_at, RewardEvent.id)
        )
    ).scalars().all()

    loyalty = await get_effective_settings(db, location_id)
    return {
        "customer": await customer_with_totals(db, customer, loyalty.stamps_required),
        "stamp_events": list(stamp_events),
        "reward_events": list(reward_events),
    }


async def get_customer_card(
    db: AsyncSession,
    actor: User,
    customer_id: str,
    location_id: str,
) -> Customer:
    perm_set = await authorize(db, actor.id, location_id, "can_view_customer_data")
    return await get_customer_in_scope(db, customer_id, perm_set)
