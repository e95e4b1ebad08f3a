"""Stamp balance arithmetic.

A customer's balance is never stored; it is always derived from the
append-only event log:

    balance = Σ stamp_events.stamps_earned − Σ reward_events.stamps_used
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.models.reward_event import RewardEvent
from stampcard.models.stamp_event import StampEvent


async def compute_balance(db: AsyncSession, customer_id: str) -> int:
    earned = (
        await db.execute(
            select(func.coalesce(func.sum(StampEvent.stamps_earned), 0)).where(
                StampEvent.customer_id == customer_id
            )
        )
    ).scalar_one()
    used = (
        await db.execute(
            select(func.coalesce(func.sum(RewardEvent.stamps_used), 0)).where(
                RewardEvent.customer_id == customer_id
            )
        )
    ).scalar_one()
    return int(earned) - int(used)


async def count_rewards(db: AsyncSession, customer_id: str) -> int:
    result = await db.execute(
        select(func.count(RewardEvent.id)).where(RewardEvent.customer_id == customer_id)
    )
    return result.scalar_one()


def reward_progress(balance: int, stamps_required: int) -> tuple[int, int]:
    """Return (available_rewards, stamps_for_next_reward).

    stamps_for_next_reward = stamps_required − (balance mod stamps_required),
    so a balance sitting exactly on a multiple reports a full card to go.
    """
    available = balance // stamps_required
    to_next = stamps_required - (balance % stamps_required)
    return available, to_next


async def customer_totals(
    db: AsyncSession,
    customer_id: str,
    stamps_required: int,
) -> dict:
    """Balance, reward count and progress for display alongside a customer."""
    balance = await compute_balance(db, customer_id)
    available, to_next = reward_progress(balance, stamps_required)
    return {
        "total_stamps": balance,
        "total_rewards": await count_rewards(db, customer_id),
        "available_rewards": available,
        "stamps_for_next_reward": to_next,
    }
