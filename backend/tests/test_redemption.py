"""Tests for reward redemption, including the concurrent double-redeem race."""

import asyncio
import logging

import pytest
from sqlalchemy import func, select

from stampcard.config import settings
from stampcard.middleware.exceptions import (
    CrossTenantViolationError,
    InsufficientBalanceError,
    LedgerConflictError,
    PermissionDeniedError,
    StampCardError,
    ValidationFailedError,
)
from stampcard.models import ActivityLog, LoyaltySettings, RewardEvent
from stampcard.services import balance as balance_service
from stampcard.services import redemption as redemption_service
from stampcard.services.redemption import redeem


async def _reward_count(db) -> int:
    return (await db.execute(select(func.count(RewardEvent.id)))).scalar_one()


@pytest.mark.unit
@pytest.mark.asyncio
class TestRedeem:
    async def test_redeem_exact_threshold(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)

        result = await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)

        assert result.remaining_stamps == 0
        assert result.available_rewards == 0
        assert result.stamps_for_next_reward == 10
        record = result.reward_record
        assert record.stamps_used == 10
        assert record.status == "redeemed"
        assert record.reward_value == 8.5
        assert record.description == "Free burger"
        assert record.tenant_id == world.tenant_a.id

        log = (
            await db_session.execute(select(ActivityLog).where(ActivityLog.action == "reward_redeemed"))
        ).scalar_one()
        assert log.details["remaining_stamps"] == 0

    async def test_second_redeem_is_insufficient(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)
        await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)

        assert exc_info.value.context == {"available_stamps": 0, "required_stamps": 10}
        assert await _reward_count(db_session) == 1

    async def test_remaining_balance_after_partial_use(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=25)

        result = await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)

        assert result.remaining_stamps == 15
        assert result.available_rewards == 1
        assert result.stamps_for_next_reward == 5

    @pytest.mark.parametrize("stamps_to_redeem", [5, 20])
    async def test_must_match_threshold(self, db_session, world, make_customer, stamps_to_redeem):
        customer = await make_customer(world.l1, stamps=25)

        with pytest.raises(ValidationFailedError) as exc_info:
            await redeem(
                db_session, world.cashier, customer.id, world.l1.id, "free_burger", stamps_to_redeem
            )

        assert exc_info.value.context == {"required_stamps": 10}
        assert await _reward_count(db_session) == 0

    async def test_threshold_in_effect_at_redemption_applies(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)
        row = (
            await db_session.execute(
                select(LoyaltySettings).where(LoyaltySettings.location_id == world.l1.id)
            )
        ).scalar_one()
        row.stamps_required = 12
        await db_session.flush()

        with pytest.raises(ValidationFailedError):
            await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 12)

        assert exc_info.value.context == {"available_stamps": 10, "required_stamps": 12}

    async def test_requires_redeem_capability(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)

        with pytest.raises(PermissionDeniedError):
            await redeem(db_session, world.viewer, customer.id, world.l1.id, "free_burger", 10)

    async def test_blocked_customer(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10, status="blocked")

        with pytest.raises(PermissionDeniedError):
            await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)

    async def test_cross_tenant(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)

        with pytest.raises(CrossTenantViolationError):
            await redeem(db_session, world.admin_b, customer.id, world.m1.id, "free_pizza", 10)


@pytest.mark.integration
@pytest.mark.asyncio
class TestRedeemRace:
    async def test_stale_balance_is_rechecked(
        self, monkeypatch, caplog, session_factory, world, make_customer
    ):
        """A redemption that commits between our balance read and our write
        forces a retry, and the retry sees the reduced balance."""
        customer = await make_customer(world.l1, stamps=10)
        original = balance_service.compute_balance
        raced = False

        async def compute_then_race(db, customer_id):
            nonlocal raced
            balance = await original(db, customer_id)
            if not raced:
                raced = True
                async with session_factory() as other:
                    await redeem(other, world.cashier, customer_id, world.l1.id, "free_burger", 10)
                    await other.commit()
            return balance

        monkeypatch.setattr(balance_service, "compute_balance", compute_then_race)

        with caplog.at_level(logging.WARNING, logger="stampcard.services.redemption"):
            async with session_factory() as session:
                with pytest.raises(InsufficientBalanceError) as exc_info:
                    await redeem(session, world.cashier, customer.id, world.l1.id, "free_burger", 10)
                await session.rollback()

        assert exc_info.value.context["available_stamps"] == 0
        assert "Ledger version moved" in caplog.text
        async with session_factory() as session:
            assert await _reward_count(session) == 1

    async def test_conflict_after_exhausted_retries(self, monkeypatch, db_session, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)
        attempts = 0

        async def always_stale(db, customer_id, expected_version=None):
            nonlocal attempts
            attempts += 1
            return False

        monkeypatch.setattr(redemption_service, "bump_ledger_version", always_stale)

        with pytest.raises(LedgerConflictError) as exc_info:
            await redeem(db_session, world.cashier, customer.id, world.l1.id, "free_burger", 10)

        assert exc_info.value.status_code == 409
        assert attempts == settings.redemption_max_retries
        assert await _reward_count(db_session) == 0

    async def test_concurrent_redemptions_only_one_wins(self, session_factory, world, make_customer):
        customer = await make_customer(world.l1, stamps=10)

        async def attempt():
            async with session_factory() as session:
                try:
                    result = await redeem(
                        session, world.cashier, customer.id, world.l1.id, "free_burger", 10
                    )
                    await session.commit()
                    return result
                except StampCardError as exc:
                    await session.rollback()
                    return exc

        outcomes = await asyncio.gather(attempt(), attempt())

        successes = [o for o in outcomes if isinstance(o, redemption_service.RedemptionResult)]
        failures = [o for o in outcomes if isinstance(o, StampCardError)]
        assert len(successes) == 1
        assert successes[0].remaining_stamps == 0
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientBalanceError)

        async with session_factory() as session:
            assert await _reward_count(session) == 1
            assert await balance_service.compute_balance(session, customer.id) == 0
