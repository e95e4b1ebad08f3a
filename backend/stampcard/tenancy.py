"""Request-scoped tenant context.

Tenancy is row-level: every tenant-owned table has a `tenant_id` column.
The tenant of a request is not known from the token (a user may hold
grants in several tenants); it is resolved from the location the request
acts on and stashed here so that cache keys and log lines are scoped to it.

Key components:
  - _tenant_ctx              ContextVar holding the tenant id for the current request
  - set / get / clear helpers for the ContextVar
  - ensure_same_tenant()     raises CrossTenantViolationError on mismatch
"""

from contextvars import ContextVar

from stampcard.middleware.exceptions import CrossTenantViolationError

# ── Request-scoped tenant context ───────────────────────────

_tenant_ctx: ContextVar[str | None] = ContextVar("_tenant_ctx", default=None)


def set_current_tenant(tenant_id: str) -> None:
    _tenant_ctx.set(tenant_id)


def get_current_tenant() -> str | None:
    return _tenant_ctx.get()


def clear_tenant_context() -> None:
    _tenant_ctx.set(None)


# ── Isolation checks ────────────────────────────────────────

def ensure_same_tenant(location_tenant_id: str, target_tenant_id: str) -> None:
    """Reject any write or read that would cross a tenant boundary."""
    if location_tenant_id != target_tenant_id:
        raise CrossTenantViolationError(
            "Customer does not belong to this location's tenant"
        )
