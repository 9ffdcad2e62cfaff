"""
Hardening headers for a JSON-only API.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from core.config import settings

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}

# Only sent outside DEBUG so local http:// clients keep working
PRODUCTION_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        headers = dict(BASE_HEADERS) if settings.DEBUG else {**BASE_HEADERS, **PRODUCTION_HEADERS}
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        # Leaderboards and inboxes are per-user
        response.headers.setdefault("Cache-Control", "no-store")
        return response
