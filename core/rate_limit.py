"""
Fixed-window rate limiting backed by Redis.

Callers are identified by session user, API token digest or client IP, and
counted per route family. Without Redis every request is let through.
"""
import time
import logging
from typing import Optional, Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.cache import get_redis_client
from core.security import decode_access_token, hash_api_token, is_api_token

logger = logging.getLogger(__name__)

# Route prefix -> requests per window. Longest matching prefix wins.
ROUTE_LIMITS = {
    "/v1/auth/login": 10,
    "/v1/auth/register": 10,
    "/v1/weight": 30,  # Shortcuts automations can loop
    "/v1/tokens": 20,
    "/v1/admin": 50,
}

EXEMPT_PATHS = ("/health", "/ping", "/docs", "/openapi.json")


def caller_identity(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        token = header[len("Bearer "):].strip()
        if is_api_token(token):
            return f"token:{hash_api_token(token)[:16]}"
        claims = decode_access_token(token)
        if claims and claims.get("sub"):
            return f"user:{claims['sub']}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def route_family(path: str) -> Optional[str]:
    matches = [prefix for prefix in ROUTE_LIMITS if path.startswith(prefix)]
    return max(matches, key=len) if matches else None


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, default_limit: int = 60, window: int = 60):
        super().__init__(app)
        self.default_limit = default_limit
        self.window = window

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or path in EXEMPT_PATHS or path.startswith("/v1/cron"):
            return await call_next(request)

        family = route_family(path)
        limit = ROUTE_LIMITS[family] if family else self.default_limit
        bucket = f"ratelimit:{caller_identity(request)}:{family or path}"
        allowed, remaining, reset_at = self.hit(bucket, limit)

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(reset_at),
        }
        if not allowed:
            headers["Retry-After"] = str(max(0, reset_at - int(time.time())))
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "Rate limit exceeded", "error_code": "RATE_LIMITED"},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response

    def hit(self, bucket: str, limit: int) -> Tuple[bool, int, int]:
        """Count one request. Returns (allowed, remaining, reset epoch seconds)."""
        now = int(time.time())
        client = get_redis_client()
        if client is None:
            return True, limit, now + self.window

        try:
            pipe = client.pipeline()
            pipe.incr(bucket)
            pipe.ttl(bucket)
            count, ttl = pipe.execute()
            if ttl < 0:
                # First hit in this window
                client.expire(bucket, self.window)
                ttl = self.window
        except RedisError as e:
            logger.error(f"Rate limit check failed, allowing request: {e}")
            return True, limit, now + self.window

        reset_at = now + (ttl if ttl and ttl > 0 else self.window)
        if count > limit:
            return False, 0, reset_at
        return True, limit - count, reset_at
