"""
api/main.py -- FastAPI application entry point for linkshelf.

Serves the shared tool catalog and gates every write behind the request
authorizer, the rate limiter and the catalog validator.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests           -- access log line per request
  2. security_headers       -- CSP, X-Frame-Options, nosniff, Referrer-Policy, HSTS
  3. https_redirect         -- FORCE_HTTPS: 301 plain-HTTP requests to https://
  4. origin_guard           -- 403 for cross-origin requests from unlisted origins
  5. SlowAPIMiddleware      -- enforces the login limit from api.limiter
  6. CORSMiddleware         -- adds CORS headers for ALLOWED_ORIGINS
  7. TrustedHostMiddleware  -- rejects requests with unexpected Host headers

Lifespan builds every stateful component (audit log, rate limiter,
authorizer, catalog store) from one Settings instance, stores them on
app.state, and starts the rate-limiter sweep task. Tests replace the
lifespan and call attach_components() with their own Settings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter, use_settings
from api.models import ErrorDetail, ErrorResponse, HealthResponse, RateLimitedResponse
from api.routes.audit import router as audit_router
from api.routes.catalog import router as catalog_router
from api.routes.session import router as session_router
from auth.authorizer import RequestAuthorizer
from catalog.store import CatalogStore, redact_path
from core.audit import AuditLogger
from core.config import Settings, get_settings
from core.errors import RateLimitError
from core.ratelimit import SWEEP_INTERVAL_SECONDS, RateLimiter, RateLimitPolicy

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("linkshelf.api")

VERSION = "0.1.0"

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; "
    "connect-src 'self'; "
    "frame-ancestors 'none'; "
    "base-uri 'self'; "
    "form-action 'self'"
)

# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def attach_components(app: FastAPI, settings: Settings, catalog_store: Optional[CatalogStore] = None) -> None:
    """Build the stateful components from settings and store them on app.state.

    Order matters: the authorizer reads suspicious-IP flags from the rate
    limiter, and both write to the same audit log.
    """
    app.state.settings = settings
    use_settings(settings)
    app.state.audit = AuditLogger()
    app.state.rate_limiter = RateLimiter(audit=app.state.audit)
    app.state.rate_policies = {
        "read": RateLimitPolicy.parse(settings.read_rate_limit),
        "write": RateLimitPolicy.parse(settings.write_rate_limit),
    }
    app.state.authorizer = RequestAuthorizer(settings, app.state.rate_limiter, app.state.audit)
    app.state.catalog_store = catalog_store or CatalogStore(settings.catalog_path, settings.catalog_fallback_paths)


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI) -> None:
    """Drop stale rate-limit entries every 5 minutes.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        removed = app.state.rate_limiter.sweep()
        if removed:
            logger.info("Rate limiter sweep removed %d stale entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup; cancel the sweep task on shutdown."""
    settings = get_settings()
    logger.info("linkshelf API starting up")
    attach_components(app, settings)
    logger.info(
        "Catalog at %s (secret_configured=%s, debug=%s)",
        redact_path(settings.catalog_path),
        settings.secret_configured,
        settings.debug,
    )
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app))

    yield

    app.state.sweep_task.cancel()
    logger.info("linkshelf API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_startup_settings = get_settings()

app = FastAPI(
    title="linkshelf API",
    description="Shared tool catalog with an authorized, validated write path.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _startup_settings.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if _startup_settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both insert at the outside of the
# stack, so the last one registered sees the request first.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_startup_settings.allowed_host_list,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_startup_settings.allowed_origin_list,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


def _settings_for(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or _startup_settings


def _request_scheme(request: Request, settings: Settings) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-Proto", "")
        if forwarded:
            return forwarded.split(",")[0].strip().lower()
    return request.url.scheme


@app.middleware("http")
async def origin_guard(request: Request, call_next):
    """Refuse cross-origin requests whose Origin is not in ALLOWED_ORIGINS.

    Requests without an Origin header (curl, the CLI client) and same-origin
    browser requests pass. CORSMiddleware only decides which headers to send;
    this is what actually stops a disallowed page from reaching a route.
    """
    origin = request.headers.get("Origin")
    if origin:
        settings = _settings_for(request)
        own_origin = f"{_request_scheme(request, settings)}://{request.headers.get('host', '')}"
        if origin != own_origin and origin not in settings.allowed_origin_list:
            logger.warning("Rejected cross-origin request from %s to %s", origin, request.url.path)
            return JSONResponse(
                status_code=403,
                content=ErrorResponse(
                    error=ErrorDetail(code="origin_not_allowed", message="Origin not allowed.")
                ).model_dump(),
            )
    return await call_next(request)


@app.middleware("http")
async def https_redirect(request: Request, call_next):
    """FORCE_HTTPS: redirect plain-HTTP requests. /health stays reachable for load balancer health checks."""
    settings = _settings_for(request)
    if settings.force_https and request.url.path != "/health" and _request_scheme(request, settings) != "https":
        return RedirectResponse(str(request.url.replace(scheme="https")), status_code=301)
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    if _settings_for(request).force_https:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. We capture wall-clock time
# before and after call_next so we can report latency on every response.
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

app.include_router(catalog_router, prefix="/api", tags=["Catalog"])
app.include_router(session_router, prefix="/api", tags=["Session"])
app.include_router(audit_router, prefix="/api", tags=["Audit"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _too_many_requests(retry_after: int, detail: Optional[str] = None) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content=RateLimitedResponse(
            error=ErrorDetail(code="rate_limited", message="Too many requests.", detail=detail),
            retryAfter=retry_after,
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RateLimitError)
async def catalog_rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    """429 from core.ratelimit (catalog and audit endpoints)."""
    return _too_many_requests(exc.retry_after)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 from slowapi (login endpoint).

    slowapi does not put the window on the exception; fall back to 60 seconds.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    return _too_many_requests(retry_after, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str([{"loc": e.get("loc"), "msg": e.get("msg")} for e in exc.errors()]),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        response = JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
            ).model_dump(),
        )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to stderr only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Liveness plus whether the server can authorize writes at all."""
    state = request.app.state
    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        catalog_path=redact_path(state.catalog_store.path),
        secret_configured=state.settings.secret_configured,
    )
