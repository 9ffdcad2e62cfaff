"""
Challngr API application.

Wires logging, Sentry, middleware and the versioned routers together.
Run with: uvicorn main:app
"""
import logging
import time

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from core.config import settings
from core.database import check_db_connection
from core.exceptions import register_exception_handlers
from core.logging import setup_logging
from core.rate_limit import RateLimitMiddleware
from core.security_headers import SecurityHeadersMiddleware
from routers import admin, auth, competitions, cron, messages, notifications, novu, tokens, weight

setup_logging()
logger = logging.getLogger(__name__)

SCRUBBED_HEADERS = ("authorization", "cookie", "x-api-key")


def scrub_event(event, hint):
    """Strip credentials (session JWTs, fc_ tokens, the cron secret) before upload."""
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in SCRUBBED_HEADERS:
                headers[name] = "[scrubbed]"
    return event


if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            CeleryIntegration(),
        ],
    )
    logger.info(f"Sentry enabled ({settings.ENVIRONMENT})")


def cors_origins() -> list:
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return [settings.SITE_URL]


app = FastAPI(
    title="Challngr API",
    description="Weight-loss and activity competitions for friends and teams",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

register_exception_handlers(app)

# Starlette runs the last-added middleware first
app.add_middleware(
    RateLimitMiddleware,
    default_limit=settings.RATE_LIMIT_PER_MINUTE,
    window=60,
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    context = {"method": request.method, "path": request.url.path}
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            f"Unhandled error on {request.method} {request.url.path}",
            extra={"extra_fields": context},
        )
        raise

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    context.update(status_code=response.status_code, duration_ms=elapsed_ms)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
        extra={"extra_fields": context},
    )
    response.headers["X-Process-Time"] = str(elapsed_ms)
    return response


@app.get("/health")
async def health():
    """Database-backed health check for the load balancer."""
    if check_db_connection():
        return {"status": "healthy", "database": "ok"}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unhealthy", "database": "unavailable"},
    )


@app.get("/ping")
async def ping():
    return {"pong": True}


for module in (auth, tokens, weight, competitions, messages, notifications, novu, admin, cron):
    app.include_router(module.router)
