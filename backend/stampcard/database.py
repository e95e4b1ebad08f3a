"""Database engine, session factory, and declarative base.

Every table carries its own `tenant_id` column; isolation is enforced by
the services (tenant of the acting location must match the target row)
rather than by Postgres schemas.

Session dependency for FastAPI:
  - get_db()  → one AsyncSession per request, committed on success and
                rolled back on any exception; queued cache
                invalidations run once the commit succeeds
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from stampcard.config import settings
from stampcard.utils.cache import discard_pending_invalidations, run_pending_invalidations


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests, local dev) does not accept pool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {"echo": settings.debug, "pool_size": 20, "max_overflow": 10}


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Declarative base for every StampCard table."""
    pass


async def get_db() -> AsyncSession:
    """Yield a request-scoped session; commit on success, roll back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending_invalidations(session)
            raise
        await run_pending_invalidations(session)
