"""Pytest configuration and fixtures for StampCard tests.

Tests run against a file-backed SQLite database (aiosqlite) created fresh
for every test, so separate sessions see each other's commits the way
concurrent requests would. Redis-backed features are switched off through
settings before the application is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_ENABLED"] = "false"
os.environ["TOKEN_REVOCATION_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import fnmatch
import uuid
from datetime import datetime
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from stampcard.auth.jwt import create_access_token
from stampcard.database import Base, get_db
from stampcard.main import app
from stampcard.models import (
    Customer,
    GrantRole,
    Location,
    LoyaltySettings,
    RewardEvent,
    StaffGrant,
    StampEvent,
    Tenant,
    User,
)
from stampcard.tenancy import clear_tenant_context
from stampcard.utils.cache import discard_pending_invalidations, run_pending_invalidations
from stampcard.utils.numbering import generate_qr_token


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stampcard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for calling services directly; tests commit when they need to."""
    async with session_factory() as session:
        yield session
        await session.rollback()
    clear_tenant_context()


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get their own session, like production."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                discard_pending_invalidations(session)
                raise
            await run_pending_invalidations(session)

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

def _grant(user, tenant, location=None, *, role=GrantRole.STAFF.value, **flags) -> StaffGrant:
    return StaffGrant(
        user_id=user.id,
        tenant_id=tenant.id,
        location_id=location.id if location else None,
        role=role,
        can_register_customers=flags.get("register", False),
        can_add_stamps=flags.get("stamps", False),
        can_redeem_rewards=flags.get("redeem", False),
        can_view_customer_data=flags.get("view", False),
    )


@pytest_asyncio.fixture
async def world(session_factory) -> SimpleNamespace:
    """Two tenants, three locations and a cast of staff.

    Tenant A ("Burger Barn"): locations L1 (threshold 10, cap 5) and L2 (defaults)
    Tenant B ("Pizza Planet"): location M1

    Users:
      cashier      full location grant at L1 only
      viewer       L1 grant with view only
      manager_l2   full location grant at L2
      admin_a      tenant admin of A
      admin_b      tenant admin of B
      outsider     no grants at all
    """
    async with session_factory() as session:
        tenant_a = Tenant(name="Burger Barn", slug="burger-barn")
        tenant_b = Tenant(name="Pizza Planet", slug="pizza-planet")
        session.add_all([tenant_a, tenant_b])
        await session.flush()

        l1 = Location(tenant_id=tenant_a.id, name="Barn Downtown", city="Lisbon")
        l2 = Location(tenant_id=tenant_a.id, name="Barn Airport", city="Lisbon")
        m1 = Location(tenant_id=tenant_b.id, name="Planet Central", city="Porto")
        session.add_all([l1, l2, m1])
        await session.flush()

        session.add(LoyaltySettings(
            location_id=l1.id,
            stamps_required=10,
            reward_description="Free burger",
            reward_value=8.5,
            max_stamps_per_visit=5,
        ))

        users = {
            key: User(email=f"{key}@burgerbarn.io", full_name=key.replace("_", " ").title())
            for key in ("cashier", "viewer", "manager_l2", "admin_a", "admin_b", "outsider")
        }
        session.add_all(users.values())
        await session.flush()

        everything = dict(register=True, stamps=True, redeem=True, view=True)
        session.add_all([
            _grant(users["cashier"], tenant_a, l1, **everything),
            _grant(users["viewer"], tenant_a, l1, view=True),
            _grant(users["manager_l2"], tenant_a, l2, role=GrantRole.MANAGER.value, **everything),
            _grant(users["admin_a"], tenant_a, role=GrantRole.TENANT_ADMIN.value),
            _grant(users["admin_b"], tenant_b, role=GrantRole.TENANT_ADMIN.value),
        ])
        await session.commit()

    return SimpleNamespace(
        tenant_a=tenant_a, tenant_b=tenant_b,
        l1=l1, l2=l2, m1=m1,
        **users,
    )


def auth_headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def headers(world):
    """Lookup of ready-made auth headers by user key, e.g. headers["cashier"]."""
    return {
        key: auth_headers_for(getattr(world, key))
        for key in ("cashier", "viewer", "manager_l2", "admin_a", "admin_b", "outsider")
    }


# ── Factories ────────────────────────────────────────────────────

@pytest.fixture
def make_customer(session_factory):
    """Insert a committed customer, optionally with an opening stamp balance."""

    async def _make(
        location,
        *,
        name: str = "Ana Silva",
        email: str | None = None,
        phone: str | None = None,
        status: str = "active",
        stamps: int = 0,
        created_at: datetime | None = None,
    ) -> Customer:
        suffix = uuid.uuid4().hex[:8]
        async with session_factory() as session:
            customer = Customer(
                tenant_id=location.tenant_id,
                location_id=location.id,
                name=name,
                email=email or f"guest-{suffix}@mail.com",
                phone=phone or f"+351-{suffix}",
                qr_code=generate_qr_token(),
                status=status,
                created_at=created_at or datetime.utcnow(),
            )
            session.add(customer)
            await session.flush()
            if stamps:
                session.add(StampEvent(
                    customer_id=customer.id,
                    location_id=location.id,
                    tenant_id=location.tenant_id,
                    stamps_earned=stamps,
                    staff_id="seed",
                    created_at=created_at or datetime.utcnow(),
                ))
            await session.commit()
        return customer

    return _make


@pytest.fixture
def add_stamps(session_factory):
    """Append a stamp event directly, bypassing the per-visit cap."""

    async def _add(customer, location, stamps: int, *, created_at: datetime | None = None):
        async with session_factory() as session:
            session.add(StampEvent(
                customer_id=customer.id,
                location_id=location.id,
                tenant_id=location.tenant_id,
                stamps_earned=stamps,
                staff_id="seed",
                created_at=created_at or datetime.utcnow(),
            ))
            await session.commit()

    return _add


@pytest.fixture
def add_reward(session_factory):
    async def _add(customer, location, stamps_used: int, *, redeemed_at: datetime | None = None):
        async with session_factory() as session:
            session.add(RewardEvent(
                customer_id=customer.id,
                location_id=location.id,
                tenant_id=location.tenant_id,
                reward_type="free_item",
                reward_value=0,
                stamps_used=stamps_used,
                staff_id="seed",
                redeemed_at=redeemed_at or datetime.utcnow(),
            ))
            await session.commit()

    return _add


# ── Redis ────────────────────────────────────────────────────────

class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls we make.

    Expiry is recorded but never enforced; tests do not outlive a TTL.
    """

    def __init__(self):
        self.store: dict = {}
        self.ttls: dict = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis unavailable")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value):
        self._check()
        self.store[key] = value

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl

    async def exists(self, key):
        self._check()
        return int(key in self.store)

    async def mget(self, *keys):
        self._check()
        return [self.store.get(key) for key in keys]

    async def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def expire(self, key, ttl):
        self.ttls[key] = ttl

    async def zremrangebyscore(self, key, low, high):
        self._check()
        zset = self.store.setdefault(key, {})
        for member, score in list(zset.items()):
            if low <= score <= high:
                del zset[member]

    async def zcard(self, key):
        self._check()
        return len(self.store.get(key, {}))

    async def zadd(self, key, mapping):
        self._check()
        self.store.setdefault(key, {}).update(mapping)

    async def zrange(self, key, start, end, withscores=False):
        items = sorted(self.store.get(key, {}).items(), key=lambda kv: kv[1])
        items = items[start:end + 1] if end >= 0 else items[start:]
        return items if withscores else [member for member, _ in items]


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    """Route every Redis call through a FakeRedis instance."""
    fake = FakeRedis()

    async def _get_redis():
        return fake

    for module in (
        "stampcard.utils.cache",
        "stampcard.auth.revocation",
        "stampcard.middleware.rate_limit",
        "stampcard.routers.health",
    ):
        monkeypatch.setattr(f"{module}.get_redis", _get_redis)
    return fake


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP-level tests through the ASGI app")
    config.addinivalue_line("markers", "integration: Multi-session / concurrency tests")
    config.addinivalue_line("markers", "cache: Redis-backed caching, revocation and rate limiting")
