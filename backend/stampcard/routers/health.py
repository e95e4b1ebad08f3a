"""Health endpoints for load balancers and monitoring.

/health is a liveness check and touches nothing. /health/ready checks the
database and, when any Redis-backed feature is switched on, Redis.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from stampcard.config import settings
from stampcard.database import engine
from stampcard.utils.cache import get_redis

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _uses_redis() -> bool:
    return settings.cache_enabled or settings.token_revocation_enabled or settings.rate_limit_enabled


async def _check_database() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        logger.error(f"Readiness: database check failed: {e}")
        return f"error: {str(e)[:100]}"


async def _check_redis() -> str:
    if not _uses_redis():
        return "disabled"
    try:
        await (await get_redis()).ping()
        return "ok"
    except Exception as e:
        logger.error(f"Readiness: redis check failed: {e}")
        return f"error: {str(e)[:100]}"


@router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "StampCard",
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check():
    """200 when every dependency answers, 503 otherwise."""
    checks = {
        "service": "ok",
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    healthy = all(value in ("ok", "disabled") for value in checks.values())

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "StampCard",
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
