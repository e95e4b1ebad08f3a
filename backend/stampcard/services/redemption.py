"""Reward Redemption service.

Consumes exactly one reward threshold of stamps. The balance check and
the insert are tied together by the customer's `ledger_version`:

  1. read the customer row (FOR UPDATE where supported) and its version v
  2. compute the balance and validate the request against it
  3. UPDATE customers SET ledger_version = v + 1
         WHERE id = :id AND ledger_version = v
  4. zero rows → another ledger write got there first; nothing has been
     written yet, so go back to 1 (bounded by `redemption_max_retries`)
  5. one row → insert the reward event and the activity entry

Two concurrent redemptions against a balance that covers only one of them
therefore end with exactly one reward event; the loser re-reads the
reduced balance and fails with InsufficientBalanceError.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.permissions import authorize
from stampcard.config import settings
from stampcard.middleware.exceptions import (
    InsufficientBalanceError,
    LedgerConflictError,
    ValidationFailedError,
)
from stampcard.models.reward_event import RewardEvent
from stampcard.models.user import User
from stampcard.services import balance as balance_service
from stampcard.services.customers import get_customer_in_scope
from stampcard.services.ledger import bump_ledger_version
from stampcard.services.loyalty_settings import get_effective_settings
from stampcard.utils.activity import log_activity
from stampcard.utils.cache import invalidate_after_commit

logger = logging.getLogger(__name__)


@dataclass
class RedemptionResult:
    reward_record: RewardEvent
    remaining_stamps: int
    available_rewards: int
    stamps_for_next_reward: int


async def redeem(
    db: AsyncSession,
    actor: User,
    customer_id: str,
    location_id: str,
    reward_type: str,
    stamps_to_redeem: int,
    description: str | None = None,
) -> RedemptionResult:
    """Redeem one reward for a customer at a location.

    Raises:
        PermissionDeniedError, ResourceNotFoundError, CrossTenantViolationError,
        ValidationFailedError, InsufficientBalanceError, LedgerConflictError
    """
    perm_set = await authorize(db, actor.id, location_id, "can_redeem_rewards")

    attempts = max(settings.redemption_max_retries, 1)
    for attempt in range(1, attempts + 1):
        customer = await get_customer_in_scope(
            db, customer_id, perm_set, require_active=True, for_update=True
        )
        version = customer.ledger_version

        # Threshold in effect right now, regardless of when stamps were earned
        loyalty = await get_effective_settings(db, location_id)
        required = loyalty.stamps_required
        available = await balance_service.compute_balance(db, customer.id)

        if stamps_to_redeem != required:
            raise ValidationFailedError(
                f"Rewards at this location require exactly {required} stamps",
                context={"required_stamps": required},
            )
        if available < stamps_to_redeem:
            raise InsufficientBalanceError(available=available, required=required)

        if await bump_ledger_version(db, customer.id, expected_version=version):
            break

        logger.warning(
            f"Ledger version moved for customer {customer.id} during redemption "
            f"(attempt {attempt}/{attempts})"
        )
    else:
        raise LedgerConflictError(customer_id)

    reward = RewardEvent(
        customer_id=customer.id,
        location_id=location_id,
        tenant_id=customer.tenant_id,
        reward_type=reward_type,
        description=description or loyalty.reward_description,
        reward_value=loyalty.reward_value,
        stamps_used=stamps_to_redeem,
        staff_id=actor.id,
        status="redeemed",
    )
    db.add(reward)
    await db.flush()

    remaining = available - stamps_to_redeem
    rewards_left, to_next = balance_service.reward_progress(remaining, required)

    await log_activity(
        db, actor, "reward_redeemed",
        customer=customer,
        location_id=location_id,
        summary=f"Redeemed {reward_type} for {stamps_to_redeem} stamps",
        details={
            "reward_event_id": reward.id,
            "reward_type": reward_type,
            "stamps_used": stamps_to_redeem,
            "remaining_stamps": remaining,
        },
    )
    invalidate_after_commit(db, "reports:*")
    logger.info(
        f"Redeemed {stamps_to_redeem} stamps for customer {customer.id} at location "
        f"{location_id} (remaining={remaining})"
    )

    return RedemptionResult(
        reward_record=reward,
        remaining_stamps=remaining,
        available_rewards=rewards_left,
        stamps_for_next_reward=to_next,
    )
