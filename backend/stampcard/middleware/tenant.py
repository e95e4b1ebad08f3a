"""Auth context middleware, rejects bad bearer tokens before routing.

Flow:
  1. Extract Bearer token from Authorization header
  2. Token present but malformed/expired on a protected route → 401
  3. After the response, clear the request tenant context

The tenant of a request is set later, by the services, once the acting
location has been resolved (see `stampcard.tenancy`).
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from stampcard.auth.jwt import decode_token
from stampcard.middleware.exceptions import create_error_response
from stampcard.tenancy import clear_tenant_context

# Routes that never require auth, don't reject expired tokens here
_PUBLIC_PREFIXES = ("/docs", "/openapi.json", "/redoc", "/health")


class TenantContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        auth_header = request.headers.get("authorization", "")
        path = request.url.path

        clear_tenant_context()
        if auth_header.startswith("Bearer ") and not any(
            path.startswith(p) for p in _PUBLIC_PREFIXES
        ):
            payload = decode_token(auth_header[7:])
            if not payload:
                return create_error_response(
                    status_code=401,
                    message="Token expired or invalid",
                    error_code="UNAUTHORIZED",
                    headers={"WWW-Authenticate": "Bearer"},
                )

        try:
            response = await call_next(request)
        finally:
            clear_tenant_context()

        return response
