"""
api/main.py -- FastAPI application entry point for ETracker.

Exposes the exception engine, the inventory search and the reports over HTTP
so an admin portal (or any other presentation layer) can consume them.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests      -- one log line per request with latency
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the stores, the engine and the report compiler on startup and
disposes the database engines on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.inventory import router as inventory_router
from api.routes.v1.reports import router as reports_router
from core.config import get_settings
from core.engine import ExceptionEngine, ExceptionPolicy
from core.errors import DocumentNotFoundError, StorageError, TrackerError, ValidationError
from core.reports import ReportCompiler
from inventory.audit import AuditTrail
from inventory.store import InventoryStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("etracker.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The engine and compiler hold no state of their own, so one
    instance of each serves every request.
    """
    settings = get_settings()
    logger.info("ETracker API starting up")
    app.state.settings = settings
    app.state.inventory = InventoryStore(settings.inventory_db_url)
    app.state.audit = AuditTrail(settings.audit_db_url)
    app.state.engine = ExceptionEngine(
        app.state.inventory,
        app.state.audit,
        policy=ExceptionPolicy.from_settings(settings),
    )
    app.state.reports = ReportCompiler(app.state.inventory, batch_size=settings.report_batch_size)
    logger.info(
        "Stores initialized (default exception duration %d days)",
        settings.default_exception_duration_days,
    )

    yield

    app.state.inventory.close()
    app.state.audit.close()
    logger.info("ETracker API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ETracker API",
    description="Security enforcement exceptions for server inventory, with an immutable audit trail.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(inventory_router, prefix="/api/v1", tags=["Inventory"])
app.include_router(reports_router, prefix="/api/v1", tags=["Reports"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    """Map domain errors to HTTP statuses.

    DocumentNotFoundError -> 404, ValidationError -> 400, StorageError -> 503.
    Storage failures are logged with their cause; the client only sees a
    generic message.
    """
    if isinstance(exc, DocumentNotFoundError):
        return _error(404, "not_found", str(exc))
    if isinstance(exc, ValidationError):
        return _error(400, "invalid_param", exc.message, detail=exc.field)
    if isinstance(exc, StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.__cause__ or exc)
        return _error(503, "storage_unavailable", "The inventory or audit database is unavailable.")
    logger.exception("Unhandled tracker error on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    response = _error(429, "rate_limited", "Too many requests.", detail=str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a reachability check for each database."""
    components = {"app": "ok"}
    for name, store in (("inventory", request.app.state.inventory), ("audit", request.app.state.audit)):
        try:
            store.ping()
            components[name] = "ok"
        except StorageError:
            components[name] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
