"""Tests for per-location loyalty settings."""

import pytest
from sqlalchemy import select

from stampcard.config import settings
from stampcard.middleware.exceptions import (
    InvalidLocationError,
    PermissionDeniedError,
    ValidationFailedError,
)
from stampcard.models import ActivityLog, LoyaltySettings
from stampcard.services.loyalty_settings import (
    get_effective_settings,
    read_location_settings,
    update_location_settings,
    validate_settings,
)


@pytest.mark.unit
@pytest.mark.asyncio
class TestEffectiveSettings:
    async def test_stored_row(self, db_session, world):
        effective = await get_effective_settings(db_session, world.l1.id)

        assert effective.is_default is False
        assert effective.stamps_required == 10
        assert effective.max_stamps_per_visit == 5
        assert effective.reward_description == "Free burger"
        assert effective.reward_value == 8.5

    async def test_defaults_without_row(self, db_session, world):
        effective = await get_effective_settings(db_session, world.l2.id)

        assert effective.is_default is True
        assert effective.stamps_required == settings.default_stamps_required
        assert effective.max_stamps_per_visit == settings.default_max_stamps_per_visit
        assert effective.reward_description == settings.default_reward_description
        assert effective.minimum_purchase_amount is None

    async def test_staff_can_read(self, db_session, world):
        effective = await read_location_settings(db_session, world.viewer, world.l1.id)
        assert effective.stamps_required == 10

    async def test_outsider_cannot_read(self, db_session, world):
        with pytest.raises(PermissionDeniedError):
            await read_location_settings(db_session, world.outsider, world.l1.id)

    async def test_unknown_location(self, db_session, world):
        with pytest.raises(InvalidLocationError):
            await read_location_settings(db_session, world.admin_a, "missing")


@pytest.mark.unit
@pytest.mark.asyncio
class TestUpdateSettings:
    async def test_admin_creates_row_from_defaults(self, db_session, world):
        effective = await update_location_settings(
            db_session, world.admin_a, world.l2.id, {"stamps_required": 8}
        )

        assert effective.is_default is False
        assert effective.stamps_required == 8
        assert effective.max_stamps_per_visit == settings.default_max_stamps_per_visit
        assert effective.updated_by == world.admin_a.id

        log = (
            await db_session.execute(
                select(ActivityLog).where(ActivityLog.action == "loyalty_settings_updated")
            )
        ).scalar_one()
        assert log.details == {"changes": {"stamps_required": 8}}

    async def test_admin_updates_existing_row(self, db_session, world):
        await update_location_settings(
            db_session, world.admin_a, world.l1.id,
            {"reward_description": "Free milkshake", "minimum_purchase_amount": 5.0},
        )

        rows = (
            await db_session.execute(
                select(LoyaltySettings).where(LoyaltySettings.location_id == world.l1.id)
            )
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].reward_description == "Free milkshake"
        assert rows[0].stamps_required == 10

    async def test_null_clears_optional_limits_only(self, db_session, world):
        await update_location_settings(
            db_session, world.admin_a, world.l1.id, {"minimum_purchase_amount": 5.0}
        )
        effective = await update_location_settings(
            db_session, world.admin_a, world.l1.id,
            {"minimum_purchase_amount": None, "stamps_required": None},
        )

        assert effective.minimum_purchase_amount is None
        assert effective.stamps_required == 10

    async def test_location_staff_cannot_update(self, db_session, world):
        with pytest.raises(PermissionDeniedError):
            await update_location_settings(
                db_session, world.cashier, world.l1.id, {"stamps_required": 5}
            )

    async def test_other_tenant_admin_cannot_update(self, db_session, world):
        with pytest.raises(PermissionDeniedError):
            await update_location_settings(
                db_session, world.admin_b, world.l1.id, {"stamps_required": 5}
            )

    async def test_out_of_range_rejected(self, db_session, world):
        with pytest.raises(ValidationFailedError):
            await update_location_settings(
                db_session, world.admin_a, world.l1.id, {"stamps_required": 0}
            )


@pytest.mark.unit
class TestValidateSettings:
    @pytest.mark.parametrize(
        "values",
        [
            {"stamps_required": 101},
            {"max_stamps_per_visit": 0},
            {"reward_value": -1},
            {"stamp_expiry_days": 0},
            {"minimum_purchase_amount": -0.01},
            {"reward_description": "   "},
        ],
    )
    def test_rejects(self, values):
        with pytest.raises(ValidationFailedError):
            validate_settings(values)

    def test_accepts_partial_update(self):
        validate_settings({"stamps_required": 12, "stamp_expiry_days": None})
