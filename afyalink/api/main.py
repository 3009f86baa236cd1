from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from afyalink.api.dependencies import get_db
from afyalink.api.exception_handlers import (
    DATABASE_UNAVAILABLE_ERRORS,
    database_unavailable_handler,
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from afyalink.api.middleware import RequestLoggingMiddleware
from afyalink.api.routes.chat import router as chat_router
from afyalink.api.routes.facilities import router as facilities_router
from afyalink.api.routes.mental_health import router as mental_health_router
from afyalink.api.schemas import ErrorResponse, HealthResponse
from afyalink.config import settings
from afyalink.db.session import engine
from afyalink.logging_config import setup_logging
from afyalink.services.errors import AfyaLinkError
from afyalink.services.metrics import metrics
from afyalink.services.rate_limiter import rate_limiter

logger = logging.getLogger("afyalink")

_DESCRIPTION = """\
Backend for a community health app.

* **Health services**: find clinics, hospitals, pharmacies, mental health
  centers and emergency services near a point, filtered by type, services
  and opening hours.
* **Mental health chat**: anonymous or signed-in counseling sessions that
  counselors claim from a triage queue, with an ordered message history
  that clients poll.
* **Support bot**: a short supportive conversation that hands over to the
  counselor queue after a few turns.

### Authentication

Counselor endpoints require an API key in the `X-API-Key` header. Signed-in
users are identified by the `X-User-Id` header set by the auth gateway.

### Rate limiting

Requests under `/api` are rate-limited per client with a sliding window.
Every response includes `X-RateLimit-Limit`, `X-RateLimit-Remaining`,
and `X-RateLimit-Reset` headers.
"""

_OPENAPI_TAGS = [
    {"name": "system", "description": "Health checks and operational endpoints."},
    {
        "name": "health-services",
        "description": "Search the health facility directory by distance and filters.",
    },
    {
        "name": "mental-health",
        "description": "Counseling sessions, messages and the counselor triage queue.",
    },
    {"name": "chat", "description": "Peer-support bot."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)

    if settings.run_migrations:
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config("alembic.ini")
        # Keep the logging configured above.
        alembic_cfg.attributes["configure_logger"] = False
        command.upgrade(alembic_cfg, "head")
    logger.info("AfyaLink API started")
    yield
    await engine.dispose()


app = FastAPI(
    title="AfyaLink API",
    version="0.1.0",
    summary="Health facility search and mental health chat",
    description=_DESCRIPTION,
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

# Exception handlers
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(AfyaLinkError, domain_exception_handler)
for _exc in DATABASE_UNAVAILABLE_ERRORS:
    app.add_exception_handler(_exc, database_unavailable_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging
app.add_middleware(RequestLoggingMiddleware)

app.include_router(facilities_router)
app.include_router(mental_health_router)
app.include_router(chat_router)


@app.get(
    "/health",
    tags=["system"],
    summary="Health check",
    description="Check API and database connectivity. Returns 200 when "
    "healthy, 503 when the database is unreachable.",
    response_model=HealthResponse,
    responses={503: {"model": ErrorResponse, "description": "Database unreachable"}},
)
async def health(session: AsyncSession = Depends(get_db)):
    """Check API and database connectivity."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Health check failed: %s", type(exc).__name__)
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "database": "unreachable"},
        )
    return {
        "status": "ok",
        "database": "connected",
        "rate_limiter": {"active_keys": rate_limiter.active_keys},
        "uptime_seconds": metrics.uptime_seconds(),
    }


@app.get(
    "/metrics",
    tags=["system"],
    summary="Application metrics",
    description="Request counters, latency percentiles, chat and bot "
    "activity, and SMS alert delivery counts.",
)
async def get_metrics():
    """Return application metrics snapshot."""
    snap = metrics.snapshot()
    snap["rate_limiter"] = {"active_keys": rate_limiter.active_keys}
    return snap
