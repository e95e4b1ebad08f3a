"""Security headers middleware.

Every response gets the baseline hardening headers. Responses under /api
carry customer contact details and live balances, so they are also marked
uncacheable for shared POS terminals and intermediary proxies. HSTS and CSP
are only sent in production, where the API is served over TLS.
"""

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from stampcard.config import settings

BASELINE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=()",
}

PRODUCTION_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    # JSON and QR SVGs only
    "Content-Security-Policy": "default-src 'none'; img-src 'self' data:; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        headers = dict(BASELINE_HEADERS)
        if settings.environment == "production":
            headers.update(PRODUCTION_HEADERS)
        if request.url.path.startswith("/api/"):
            headers["Cache-Control"] = "no-store"

        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response
