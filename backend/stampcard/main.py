import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stampcard.config import settings
from stampcard.database import engine
from stampcard.middleware.exceptions import register_exception_handlers
from stampcard.middleware.rate_limit import RateLimitMiddleware
from stampcard.middleware.security import SecurityHeadersMiddleware
from stampcard.middleware.tenant import TenantContextMiddleware
from stampcard.routers import auth, health, locations, loyalty_settings, pos, reports, staff
from stampcard.utils.cache import close_redis

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("stampcard")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"StampCard starting ({settings.environment})")
    yield
    await close_redis()
    await engine.dispose()
    logger.info("StampCard stopped")


app = FastAPI(
    title="StampCard",
    description="Multi-tenant loyalty stamp cards and rewards for restaurant chains",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (innermost first) ─────────────────────────────
# Starlette wraps each added middleware around the ones before it, so the
# last one added sees the request first and the response last.

# Auth/tenant context (innermost - processes request data)
app.add_middleware(TenantContextMiddleware)

# Rate limiting
if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        default_limit=settings.rate_limit_per_minute,
        default_window=60,
        exempt_paths=["/health", "/health/ready", "/docs", "/openapi.json"],
    )

# CORS (wraps early 401/429 responses too)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security headers (outermost - applies to every response)
app.add_middleware(SecurityHeadersMiddleware)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(pos.router, prefix="/api/pos", tags=["pos"])
app.include_router(loyalty_settings.router, prefix="/api/locations", tags=["loyalty-settings"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
app.include_router(locations.router, prefix="/api/tenants", tags=["locations"])
app.include_router(staff.router, prefix="/api/tenants", tags=["staff"])
