"""Tests for the customer directory: find-or-register, lookup, edits, history."""

import re

import pytest
from sqlalchemy import func, select

from stampcard.middleware.exceptions import (
    CrossTenantViolationError,
    InvalidLocationError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from stampcard.models import ActivityLog, Customer
from stampcard.services import customers as customer_service
from stampcard.services.ledger import award_stamps

QR_PATTERN = re.compile(r"^QR-\d{14}-[A-Z0-9]{10}$")

NEW_GUEST = {"name": "Rita Costa", "email": "Rita.Costa@Mail.com", "phone": "+351 911 000 111"}


async def _activity(db, action: str) -> list[ActivityLog]:
    result = await db.execute(select(ActivityLog).where(ActivityLog.action == action))
    return list(result.scalars().all())


@pytest.mark.unit
@pytest.mark.asyncio
class TestFindOrRegister:
    async def test_registers_new_customer(self, db_session, world):
        customer, created = await customer_service.find_or_register(
            db_session, world.cashier, world.l1.id, customer_data=NEW_GUEST
        )

        assert created is True
        assert QR_PATTERN.match(customer.qr_code)
        assert customer.tenant_id == world.tenant_a.id
        assert customer.location_id == world.l1.id
        assert customer.status == "active"
        assert customer.email == "rita.costa@mail.com"
        assert customer.created_by == world.cashier.id

        logs = await _activity(db_session, "registered")
        assert len(logs) == 1
        assert logs[0].entity_id == customer.id
        assert logs[0].tenant_id == world.tenant_a.id

    async def test_scan_returns_existing_customer_unchanged(self, db_session, world, make_customer):
        existing = await make_customer(world.l1, status="inactive")

        customer, created = await customer_service.find_or_register(
            db_session, world.cashier, world.l1.id,
            qr_code=existing.qr_code, customer_data=NEW_GUEST,
        )

        assert created is False
        assert customer.id == existing.id
        # Scanning never reactivates
        assert customer.status == "inactive"
        count = (await db_session.execute(select(func.count(Customer.id)))).scalar_one()
        assert count == 1
        assert len(await _activity(db_session, "registration_scan")) == 1

    async def test_scan_from_sibling_location_of_same_tenant(self, db_session, world, make_customer):
        existing = await make_customer(world.l1)

        customer, created = await customer_service.find_or_register(
            db_session, world.manager_l2, world.l2.id, qr_code=existing.qr_code
        )

        assert created is False
        assert customer.id == existing.id

    async def test_unknown_qr_without_data_is_not_found(self, db_session, world):
        with pytest.raises(ResourceNotFoundError):
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id, qr_code="QR-20260101000000-NOPE000000"
            )

    async def test_blocked_customer_is_forbidden(self, db_session, world, make_customer):
        blocked = await make_customer(world.l1, status="blocked")

        with pytest.raises(PermissionDeniedError):
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id, qr_code=blocked.qr_code
            )

    async def test_blocked_status_is_hidden_from_other_tenants(
        self, db_session, world, make_customer
    ):
        own = await make_customer(world.l1, status="blocked")
        foreign = await make_customer(world.m1, status="blocked")

        with pytest.raises(PermissionDeniedError) as own_exc:
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id, qr_code=own.qr_code
            )
        assert own_exc.value.context == {"customer_status": "blocked"}

        with pytest.raises(PermissionDeniedError) as foreign_exc:
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id, qr_code=foreign.qr_code
            )
        assert foreign_exc.value.context == {}
        assert "blocked" not in foreign_exc.value.message

    async def test_stamping_a_foreign_blocked_customer_reveals_nothing(
        self, db_session, world, make_customer
    ):
        foreign = await make_customer(world.m1, status="blocked")

        with pytest.raises(PermissionDeniedError) as exc_info:
            await award_stamps(db_session, world.cashier, foreign.id, world.l1.id, 1)
        assert exc_info.value.context == {}

    async def test_foreign_tenant_card_is_rejected(self, db_session, world, make_customer):
        foreign = await make_customer(world.m1)

        with pytest.raises(CrossTenantViolationError):
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id, qr_code=foreign.qr_code
            )

    async def test_missing_contact_fields(self, db_session, world):
        with pytest.raises(ValidationFailedError) as exc_info:
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id,
                customer_data={"name": "Rita Costa", "email": "rita@mail.com", "phone": "  "},
            )
        assert exc_info.value.context["missing_fields"] == ["phone"]

    async def test_no_qr_and_no_data_is_a_validation_error(self, db_session, world):
        with pytest.raises(ValidationFailedError):
            await customer_service.find_or_register(db_session, world.cashier, world.l1.id)

    async def test_duplicate_contact_in_same_tenant(self, db_session, world, make_customer):
        existing = await make_customer(world.l2, email="rita.costa@mail.com")

        with pytest.raises(ValidationFailedError) as exc_info:
            await customer_service.find_or_register(
                db_session, world.cashier, world.l1.id, customer_data=NEW_GUEST
            )
        assert exc_info.value.context["existing_customer_id"] == existing.id

    async def test_same_contact_allowed_in_other_tenant(self, db_session, world, make_customer):
        await make_customer(world.m1, email="rita.costa@mail.com", phone=NEW_GUEST["phone"])

        customer, created = await customer_service.find_or_register(
            db_session, world.cashier, world.l1.id, customer_data=NEW_GUEST
        )
        assert created is True
        assert customer.tenant_id == world.tenant_a.id

    async def test_unknown_location(self, db_session, world):
        with pytest.raises(InvalidLocationError):
            await customer_service.find_or_register(
                db_session, world.cashier, "missing-location", customer_data=NEW_GUEST
            )

    async def test_requires_register_capability(self, db_session, world):
        with pytest.raises(PermissionDeniedError):
            await customer_service.find_or_register(
                db_session, world.viewer, world.l1.id, customer_data=NEW_GUEST
            )


@pytest.mark.unit
@pytest.mark.asyncio
class TestLookup:
    async def test_lookup_by_phone_annotates_totals(self, db_session, world, make_customer, add_reward):
        customer = await make_customer(world.l1, phone="+351 900", stamps=23)
        await add_reward(customer, world.l1, 10)

        results = await customer_service.lookup(
            db_session, world.viewer, world.l1.id, phone="+351 900"
        )

        assert len(results) == 1
        found = results[0]
        assert found["id"] == customer.id
        assert found["total_stamps"] == 13
        assert found["total_rewards"] == 1
        assert found["available_rewards"] == 1
        assert found["stamps_for_next_reward"] == 7

    async def test_lookup_is_scoped_to_the_location_tenant(self, db_session, world, make_customer):
        ours = await make_customer(world.l2, phone="+351 555")
        await make_customer(world.m1, phone="+351 555")

        results = await customer_service.lookup(
            db_session, world.cashier, world.l1.id, phone="+351 555"
        )

        assert [r["id"] for r in results] == [ours.id]

    async def test_qr_takes_precedence_over_phone(self, db_session, world, make_customer):
        by_qr = await make_customer(world.l1, phone="+351 111")
        await make_customer(world.l1, phone="+351 222")

        results = await customer_service.lookup(
            db_session, world.cashier, world.l1.id, qr_code=by_qr.qr_code, phone="+351 222"
        )
        assert [r["id"] for r in results] == [by_qr.id]

    async def test_lookup_by_email_is_case_insensitive(self, db_session, world, make_customer):
        customer = await make_customer(world.l1, email="joao@mail.com")

        results = await customer_service.lookup(
            db_session, world.cashier, world.l1.id, email="JOAO@mail.com"
        )
        assert results[0]["id"] == customer.id

    async def test_lookup_by_partial_name(self, db_session, world, make_customer):
        await make_customer(world.l1, name="Beatriz Santos")
        await make_customer(world.l1, name="Bruno Santos")
        await make_customer(world.l1, name="Carla Dias")

        results = await customer_service.lookup(
            db_session, world.cashier, world.l1.id, name="santos"
        )
        assert [r["name"] for r in results] == ["Beatriz Santos", "Bruno Santos"]

    async def test_lookup_is_repeatable(self, db_session, world, make_customer):
        await make_customer(world.l1, phone="+351 777", stamps=4)

        first = await customer_service.lookup(db_session, world.cashier, world.l1.id, phone="+351 777")
        second = await customer_service.lookup(db_session, world.cashier, world.l1.id, phone="+351 777")

        assert first == second

    async def test_lookup_skips_blocked_but_keeps_inactive(self, db_session, world, make_customer):
        await make_customer(world.l1, name="Diana Blocked", status="blocked")
        dormant = await make_customer(world.l1, name="Diana Dormant", status="inactive")

        results = await customer_service.lookup(
            db_session, world.cashier, world.l1.id, name="diana"
        )

        assert [r["id"] for r in results] == [dormant.id]
        assert results[0]["status"] == "inactive"

    async def test_lookup_of_only_blocked_match_is_not_found(self, db_session, world, make_customer):
        blocked = await make_customer(world.l1, status="blocked")

        with pytest.raises(ResourceNotFoundError):
            await customer_service.lookup(
                db_session, world.cashier, world.l1.id, qr_code=blocked.qr_code
            )

    async def test_no_match_is_not_found(self, db_session, world):
        with pytest.raises(ResourceNotFoundError):
            await customer_service.lookup(db_session, world.cashier, world.l1.id, phone="+000")

    async def test_requires_a_criterion(self, db_session, world):
        with pytest.raises(ValidationFailedError):
            await customer_service.lookup(db_session, world.cashier, world.l1.id)

    async def test_requires_view_capability(self, db_session, world):
        with pytest.raises(PermissionDeniedError):
            await customer_service.lookup(db_session, world.outsider, world.l1.id, phone="+351")


@pytest.mark.unit
@pytest.mark.asyncio
class TestUpdateAndHistory:
    async def test_update_contact_and_status(self, db_session, world, make_customer):
        customer = await make_customer(world.l1)

        updated = await customer_service.update_customer(
            db_session, world.cashier, customer.id, world.l1.id,
            {"phone": "+351 123 456", "status": "blocked"},
        )

        assert updated.phone == "+351 123 456"
        assert updated.status == "blocked"
        assert updated.qr_code == customer.qr_code
        assert len(await _activity(db_session, "updated")) == 1
        status_logs = await _activity(db_session, "status_changed")
        assert status_logs[0].details == {"from": "active", "to": "blocked"}

    async def test_update_rejects_contact_clash(self, db_session, world, make_customer):
        first = await make_customer(world.l1, email="first@mail.com")
        second = await make_customer(world.l1)

        with pytest.raises(ValidationFailedError) as exc_info:
            await customer_service.update_customer(
                db_session, world.cashier, second.id, world.l1.id, {"email": "first@mail.com"}
            )
        assert exc_info.value.context["existing_customer_id"] == first.id

    async def test_update_from_foreign_tenant(self, db_session, world, make_customer):
        customer = await make_customer(world.l1)

        with pytest.raises(CrossTenantViolationError):
            await customer_service.update_customer(
                db_session, world.admin_b, customer.id, world.m1.id, {"name": "Hijack"}
            )

    async def test_history_lists_events_in_order(self, db_session, world, make_customer):
        customer = await make_customer(world.l1)
        await award_stamps(db_session, world.cashier, customer.id, world.l1.id, 2)
        await award_stamps(db_session, world.cashier, customer.id, world.l1.id, 3)

        history = await customer_service.customer_history(
            db_session, world.viewer, customer.id, world.l1.id
        )

        assert [e.stamps_earned for e in history["stamp_events"]] == [2, 3]
        assert history["reward_events"] == []
        assert history["customer"]["total_stamps"] == 5
        assert history["customer"]["stamps_for_next_reward"] == 5
