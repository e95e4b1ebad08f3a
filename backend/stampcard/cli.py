"""Management CLI.

Usage:
    python -m stampcard.cli create-tables          # Create all tables (dev / first boot)
    python -m stampcard.cli create-tenant <slug> <name>     # Add a tenant
    python -m stampcard.cli create-location <tenant_id> <name> [city]  # Add a location with default settings
    python -m stampcard.cli grant-admin <tenant_id> <email> [full_name]  # Make a user tenant admin
    python -m stampcard.cli issue-token <user_id>  # Mint an access token for a staff user
    python -m stampcard.cli list-tenants           # Show tenants and their locations
    python -m stampcard.cli revoke-sessions <user_id>  # Reject every token issued so far
"""

import asyncio
import sys

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from stampcard.auth.jwt import create_access_token
from stampcard.auth.revocation import TokenRevocation
from stampcard.config import settings
from stampcard.database import Base
from stampcard.models import GrantRole, GrantStatus, Location, StaffGrant, Tenant, User
from stampcard.services.loyalty_settings import new_settings_row
from stampcard.utils.cache import close_redis


def create_tables():
    engine = create_engine(settings.database_url_sync)
    Base.metadata.create_all(engine)
    print(f"Created {len(Base.metadata.tables)} table(s).")


def create_tenant(slug: str, name: str):
    engine = create_engine(settings.database_url_sync)
    with Session(engine) as session:
        if session.execute(select(Tenant.id).where(Tenant.slug == slug)).first():
            print(f"Tenant slug '{slug}' is already taken")
            sys.exit(1)
        tenant = Tenant(slug=slug, name=name)
        session.add(tenant)
        session.commit()
        print(f"Created tenant {tenant.name} ({tenant.id})")


def create_location(tenant_id: str, name: str, city: str | None = None):
    engine = create_engine(settings.database_url_sync)
    with Session(engine) as session:
        if session.get(Tenant, tenant_id) is None:
            print(f"No tenant with id {tenant_id}")
            sys.exit(1)
        clash = session.execute(
            select(Location.id).where(
                Location.tenant_id == tenant_id,
                func.lower(Location.name) == name.lower(),
            )
        ).first()
        if clash:
            print(f"Location '{name}' already exists ({clash.id})")
            sys.exit(1)
        location = Location(tenant_id=tenant_id, name=name, city=city)
        session.add(location)
        session.flush()
        session.add(new_settings_row(location.id))
        session.commit()
        print(f"Created location {location.name} ({location.id})")


def grant_admin(tenant_id: str, email: str, full_name: str | None = None):
    email = email.strip().lower()
    engine = create_engine(settings.database_url_sync)
    with Session(engine) as session:
        if session.get(Tenant, tenant_id) is None:
            print(f"No tenant with id {tenant_id}")
            sys.exit(1)
        user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            if not full_name:
                print(f"No user with email {email}; pass a full name to create one")
                sys.exit(1)
            user = User(email=email, full_name=full_name)
            session.add(user)
            session.flush()

        grant = session.execute(
            select(StaffGrant).where(
                StaffGrant.user_id == user.id,
                StaffGrant.tenant_id == tenant_id,
                StaffGrant.location_id.is_(None),
            )
        ).scalars().first()
        if grant is None:
            grant = StaffGrant(user_id=user.id, tenant_id=tenant_id)
            session.add(grant)
        grant.role = GrantRole.TENANT_ADMIN.value
        grant.status = GrantStatus.ACTIVE.value
        session.commit()
        print(f"{user.email} ({user.id}) is tenant admin of {tenant_id}")


def issue_token(user_id: str):
    engine = create_engine(settings.database_url_sync)
    with engine.connect() as conn:
        user = conn.execute(
            select(User.id, User.full_name, User.is_active).where(User.id == user_id)
        ).first()
    if user is None:
        print(f"No user with id {user_id}")
        sys.exit(1)
    if not user.is_active:
        print(f"User {user.full_name} is inactive")
        sys.exit(1)
    print(create_access_token(user.id))


def list_tenants():
    engine = create_engine(settings.database_url_sync)
    with engine.connect() as conn:
        tenants = conn.execute(
            select(Tenant.id, Tenant.name, Tenant.status).order_by(Tenant.name)
        ).all()
        for tenant in tenants:
            locations = conn.execute(
                select(Location.name).where(Location.tenant_id == tenant.id).order_by(Location.name)
            ).scalars().all()
            print(f"  {tenant.name} [{tenant.status}] {tenant.id}")
            for name in locations:
                print(f"      - {name}")
    print(f"\n{len(tenants)} tenant(s)")


def revoke_sessions(user_id: str):
    if not settings.token_revocation_enabled:
        print("Token revocation is disabled (TOKEN_REVOCATION_ENABLED=false)")
        sys.exit(1)

    async def _revoke():
        try:
            return await TokenRevocation.revoke_staff_sessions(user_id)
        finally:
            await close_redis()

    if not asyncio.run(_revoke()):
        print("Could not reach Redis; nothing was revoked")
        sys.exit(1)
    print(f"Revoked all sessions of {user_id}")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        create_tables()
    elif cmd == "create-tenant" and len(sys.argv) > 3:
        create_tenant(sys.argv[2], sys.argv[3])
    elif cmd == "create-location" and len(sys.argv) > 3:
        create_location(sys.argv[2], sys.argv[3], sys.argv[4] if len(sys.argv) > 4 else None)
    elif cmd == "grant-admin" and len(sys.argv) > 3:
        grant_admin(sys.argv[2], sys.argv[3], sys.argv[4] if len(sys.argv) > 4 else None)
    elif cmd == "issue-token" and len(sys.argv) > 2:
        issue_token(sys.argv[2])
    elif cmd == "list-tenants":
        list_tenants()
    elif cmd == "revoke-sessions" and len(sys.argv) > 2:
        revoke_sessions(sys.argv[2])
    else:
        print(
            "Usage: python -m stampcard.cli [create-tables|create-tenant <slug> <name>|"
            "create-location <tenant_id> <name> [city]|grant-admin <tenant_id> <email> [full_name]|"
            "issue-token <user_id>|list-tenants|revoke-sessions <user_id>]"
        )
