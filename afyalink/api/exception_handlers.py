"""Global exception handlers for structured JSON error responses.

Every non-2xx body has the shape ``{"error": true, "status_code", "detail"}``.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from afyalink.services.errors import AfyaLinkError

logger = logging.getLogger("afyalink.errors")

DATABASE_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, ConnectionRefusedError)


def _error(status_code: int, detail, headers: dict | None = None, **extra) -> JSONResponse:
    content = {"error": True, "status_code": status_code, "detail": detail}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Structured JSON for HTTP exceptions, keeping ``X-RateLimit-*`` headers."""
    headers = {}
    if exc.headers:
        headers = {
            k: v for k, v in exc.headers.items() if k.startswith("X-RateLimit-")
        }
    return _error(exc.status_code, exc.detail, headers=headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 with pydantic's field-level error list as ``detail``."""
    return _error(422, jsonable_errors(exc))


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ``ctx`` may hold exception instances that json.dumps can't encode.
    return [
        {k: (str(v) if k == "ctx" else v) for k, v in err.items()}
        for err in exc.errors()
    ]


async def domain_exception_handler(request: Request, exc: AfyaLinkError) -> JSONResponse:
    """Map service-layer errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method,
                     request.url.path, exc.detail)
        return _error(exc.status_code, "Service temporarily unavailable")
    extra = {"field": exc.field} if exc.field else {}
    return _error(exc.status_code, exc.detail, **extra)


async def database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """Connection-level database failures are retryable: 503, no internals."""
    logger.error(
        "Database unavailable on %s %s: %s", request.method, request.url.path,
        type(exc).__name__,
    )
    return _error(503, "Service temporarily unavailable")


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all: full traceback to the log, generic 500 to the client."""
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return _error(500, "Internal server error")
