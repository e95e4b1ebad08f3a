"""Error types and the exception handlers that render them.

Every error body has the shape expected by the POS clients:

    {"error": "<human readable message>", "code": "<ERROR_CODE>", ...context}

Domain exceptions carry an optional `context` dict whose keys are merged
into the body (e.g. `available_stamps` / `required_stamps`) so the till
can show a precise correction prompt.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# ── Domain errors ────────────────────────────────────────────

class StampCardError(Exception):
    """Base class; subclasses fix the HTTP status and the error code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, context: dict | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class UnauthorizedError(StampCardError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class PermissionDeniedError(StampCardError):
    """Capability absent at the location, or the customer is not active."""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Permission denied", context: dict | None = None):
        super().__init__(message, context)


class CrossTenantViolationError(StampCardError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "CROSS_TENANT_VIOLATION"

    def __init__(self, message: str = "Customer belongs to a different tenant"):
        super().__init__(message)


class ResourceNotFoundError(StampCardError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str | None = None):
        suffix = f": {identifier}" if identifier else ""
        super().__init__(f"{resource} not found{suffix}")


class InvalidLocationError(StampCardError):
    """The location id does not resolve to a tenant."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "INVALID_LOCATION"

    def __init__(self, location_id: str):
        super().__init__(f"Location not found: {location_id}")


class ValidationFailedError(StampCardError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"


class DuplicateRecordError(StampCardError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "DUPLICATE_RECORD"


class InsufficientBalanceError(StampCardError):
    """Redemption would drive the stamp balance negative."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INSUFFICIENT_BALANCE"

    def __init__(self, available: int, required: int):
        super().__init__(
            f"Customer has {available} stamps, {required} required to redeem",
            context={"available_stamps": available, "required_stamps": required},
        )


class LedgerConflictError(StampCardError):
    """Concurrent ledger writes kept winning the race for this customer."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "LEDGER_CONFLICT"

    def __init__(self, customer_id: str | None = None):
        super().__init__(
            "The customer's stamp balance changed concurrently. Please retry.",
            context={"customer_id": customer_id} if customer_id else None,
        )


# ── Rendering ────────────────────────────────────────────────

def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    context: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Build the standard error body. Context keys never override error/code."""
    content = {"error": message, "code": error_code}
    for key, value in (context or {}).items():
        content.setdefault(key, value)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _where(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


# Substrings of driver messages for constraints this schema defines,
# checked in order; the first match decides the response.
_INTEGRITY_RULES = (
    ("qr_code", "DUPLICATE_QR_CODE", "This QR code is already assigned to a customer"),
    ("loyalty_settings", "DUPLICATE_RECORD", "Settings for this location already exist"),
    ("stamps_earned", "VALIDATION_ERROR", "Stamp events must award at least one stamp"),
    ("stamps_used", "VALIDATION_ERROR", "Reward events must use at least one stamp"),
    ("unique", "DUPLICATE_RECORD", "A record with this value already exists"),
    ("foreign key", "FOREIGN_KEY_VIOLATION", "Referenced record does not exist"),
)

# Lock contention on the ledger surfaces as an OperationalError from the
# driver; these are retryable, everything else means the database is down.
_CONTENTION_MARKERS = ("database is locked", "deadlock detected", "could not serialize")


# ── Handlers ─────────────────────────────────────────────────

async def stampcard_exception_handler(request: Request, exc: StampCardError) -> JSONResponse:
    logger.warning(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={"error_code": exc.error_code, **_where(request)},
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return create_error_response(
        exc.status_code, exc.message, exc.error_code, exc.context, headers
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_where(request))
    return create_error_response(
        exc.status_code,
        str(exc.detail),
        f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Malformed request bodies and query strings → 400 with a per-field list."""
    errors = [
        {
            "field": " -> ".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation error on {request.url.path}: {[e['field'] for e in errors]}",
        extra=_where(request),
    )
    return create_error_response(
        status.HTTP_400_BAD_REQUEST,
        "Validation error",
        "VALIDATION_ERROR",
        context={"errors": errors},
    )


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Constraint violations that slipped past service checks (usually races)."""
    detail = str(getattr(exc, "orig", exc)).lower()
    logger.error(f"Integrity error on {request.url.path}: {detail}", extra=_where(request))

    for marker, error_code, message in _INTEGRITY_RULES:
        if marker in detail:
            break
    else:
        error_code, message = "INTEGRITY_ERROR", "Database constraint violation"

    code = (
        status.HTTP_400_BAD_REQUEST if error_code == "VALIDATION_ERROR"
        else status.HTTP_409_CONFLICT
    )
    return create_error_response(code, message, error_code)


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    detail = str(getattr(exc, "orig", exc)).lower()

    if any(marker in detail for marker in _CONTENTION_MARKERS):
        logger.warning(f"Lock contention on {request.url.path}: {detail}", extra=_where(request))
        return create_error_response(
            status.HTTP_409_CONFLICT,
            "The customer's stamp balance changed concurrently. Please retry.",
            LedgerConflictError.error_code,
        )

    logger.error(f"Database unavailable on {request.url.path}: {detail}", extra=_where(request))
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.url.path}",
        extra=_where(request),
        exc_info=exc,
    )
    # Internal details stay in the log
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    app.add_exception_handler(StampCardError, stampcard_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
