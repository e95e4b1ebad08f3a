"""Stamp Ledger service.

Appends stamp events and reports the customer's derived balance.

Preconditions for an award, in order (first failure wins):
  1. actor holds `can_add_stamps` at the location
  2. customer exists and is active
  3. customer belongs to the location's tenant
  4. 1 <= stamps <= the location's per-visit cap
  5. purchase amount (when given) meets the location's minimum

Every ledger write bumps `Customer.ledger_version` so a redemption that
read the balance before this award retries against the new balance.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import authorize
from stampcard.middleware.exceptions import ValidationFailedError
from stampcard.models.customer import Customer
from stampcard.models.stamp_event import StampEvent
from stampcard.models.user import User
from stampcard.services.balance import compute_balance, reward_progress
from stampcard.services.customers import get_customer_in_scope
from stampcard.services.loyalty_settings import get_effective_settings
from stampcard.utils.activity import log_activity
from stampcard.utils.cache import invalidate_after_commit

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    stamp_record: StampEvent
    total_stamps: int
    available_rewards: int
    stamps_for_next_reward: int


# ── Version token ───────────────────────────────────────────

async def bump_ledger_version(
    db: AsyncSession,
    customer_id: str,
    expected_version: int | None = None,
) -> bool:
    """Advance the customer's ledger version.

    With `expected_version` the update is conditional and returns False
    when another writer has already moved the version on.
    """
    stmt = update(Customer).where(Customer.id == customer_id)
    if expected_version is None:
        stmt = stmt.values(ledger_version=Customer.ledger_version + 1)
    else:
        stmt = stmt.where(Customer.ledger_version == expected_version).values(
            ledger_version=expected_version + 1
        )
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


# ── Award ───────────────────────────────────────────────────

async def award_stamps(
    db: AsyncSession,
    actor: User,
    customer_id: str,
    location_id: str,
    stamps: int,
    purchase_amount: float | None = None,
    notes: str | None = None,
) -> LedgerResult:
    perm_set = await authorize(db, actor.id, location_id, "can_add_stamps")
    customer = await get_customer_in_scope(
        db, customer_id, perm_set, require_active=True
    )

    loyalty = await get_effective_settings(db, location_id)
    if not 1 <= stamps <= loyalty.max_stamps_per_visit:
        raise ValidationFailedError(
            f"Stamps per visit must be between 1 and {loyalty.max_stamps_per_visit}",
            context={"max_stamps_per_visit": loyalty.max_stamps_per_visit},
        )
    if (
        purchase_amount is not None
        and loyalty.minimum_purchase_amount is not None
        and purchase_amount < loyalty.minimum_purchase_amount
    ):
        raise ValidationFailedError(
            f"Purchase amount is below the minimum of {loyalty.minimum_purchase_amount:.2f}",
            context={"minimum_purchase_amount": loyalty.minimum_purchase_amount},
        )

    await bump_ledger_version(db, customer.id)

    event = StampEvent(
        customer_id=customer.id,
        location_id=location_id,
        tenant_id=customer.tenant_id,
        stamps_earned=stamps,
        purchase_amount=purchase_amount,
        notes=notes,
        staff_id=actor.id,
    )
    db.add(event)
    await db.flush()

    total = await compute_balance(db, customer.id)
    available, to_next = reward_progress(total, loyalty.stamps_required)

    await log_activity(
        db, actor, "stamps_added",
        customer=customer,
        location_id=location_id,
        summary=f"Added {stamps} stamp(s)",
        details={
            "stamp_event_id": event.id,
            "stamps_earned": stamps,
            "purchase_amount": purchase_amount,
            "total_stamps": total,
            "available_rewards": available,
        },
    )
    invalidate_after_commit(db, "reports:*")
    logger.info(
        f"Awarded {stamps} stamps to customer {customer.id} at location {location_id} "
        f"(total={total})"
    )

    return LedgerResult(
        stamp_record=event,
        total_stamps=total,
        available_rewards=available,
        stamps_for_next_reward=to_next,
    )
