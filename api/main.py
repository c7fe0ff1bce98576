"""
api/main.py -- FastAPI application entry point for Lectoria.

Exposes the library (documents, share links) and the access-control layer
(login, sessions, user management) over HTTP.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost, below the function middlewares):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route request throttles from api.limiter

Two function middlewares are registered after those and so wrap them: request
logging (share tokens cut to a prefix) and the security response headers.

Lifespan handles startup (stores, token issuer/validator, login limiter,
maintenance task) and shutdown (cancel task, dispose engines) symmetrically.
Everything a request needs lives on app.state so tests can swap it out.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.documents import router as documents_router
from api.routes.v1.shares import router as shares_router
from auth.audit import AccessAuditLog
from auth.dependencies import get_current_claims
from auth.errors import AccessError
from auth.models import SessionClaims
from auth.ratelimit import InMemoryRateLimitStore, LoginRateLimiter
from auth.store import UserStore
from auth.tokens import TokenIssuer, TokenValidator
from core.clock import SystemClock
from core.config import get_settings
from library.files import FileStorage
from library.shares import ShareLinkManager
from library.store import DocumentStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lectoria.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background maintenance task
# ---------------------------------------------------------------------------


async def _maintenance_loop(app: FastAPI, interval_seconds: int) -> None:
    """Periodically drop stale lockout entries and deactivate expired links.

    Neither job is needed for correctness: the login limiter discards a stale
    entry on the next check and resolve() treats an expired link as gone.
    The loop keeps the limiter map small and share listings tidy. Both jobs
    touch the database or take locks, so they run in a worker thread.
    CancelledError from task.cancel() unwinds the coroutine at shutdown.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            swept = await asyncio.to_thread(app.state.login_limiter.sweep)
            expired = await asyncio.to_thread(app.state.share_manager.deactivate_expired)
        except SQLAlchemyError:
            logger.exception("Maintenance pass failed")
            continue
        if swept:
            logger.info("Swept %d stale lockout entries", swept)
        logger.debug("Maintenance pass done (expired_links=%d)", expired)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build application-level collaborators for the server's lifetime.

    Startup order matters:
      1. Clock and audit log -- every other collaborator takes them.
      2. Stores -- create their tables on construction.
      3. Token issuer/validator and login limiter -- pure in-process state.
      4. Share manager -- wraps the document store.
      5. Maintenance task last -- references the limiter and share manager.
    """
    settings = get_settings()
    logger.info("Lectoria API starting up")

    clock = SystemClock()
    app.state.clock = clock
    app.state.audit = AccessAuditLog(clock=clock)

    app.state.user_store = UserStore(settings.database_url, settings.db_timeout_seconds)
    app.state.document_store = DocumentStore(settings.database_url, settings.db_timeout_seconds)
    app.state.file_storage = FileStorage(settings.upload_dir, settings.max_upload_bytes)
    if not app.state.user_store.has_users():
        logger.warning("No user accounts exist yet -- create an admin with: python main.py create-user --role admin")

    app.state.token_issuer = TokenIssuer.from_settings(settings, clock)
    app.state.token_validator = TokenValidator.from_settings(settings, clock)
    app.state.login_limiter = LoginRateLimiter(
        InMemoryRateLimitStore(settings.rate_limit_max_entries),
        max_attempts=settings.login_max_attempts,
        window=timedelta(seconds=settings.login_lockout_seconds),
        clock=clock,
    )
    app.state.share_manager = ShareLinkManager(app.state.document_store, app.state.audit, clock)
    logger.info("Auth and library initialized")

    app.state.maintenance_task = asyncio.create_task(
        _maintenance_loop(app, settings.maintenance_interval_seconds)
    )

    yield

    app.state.maintenance_task.cancel()
    app.state.document_store.close()
    app.state.user_store.close()
    logger.info("Lectoria API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lectoria API",
    description="Digital library with owner-controlled, expiring public share links.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack. Starlette makes the last-added middleware the outermost,
# so they are added innermost-first: SlowAPI, CORS, then TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Share tokens travel in the URL path, so /share/<token> and /shares/<token>
# paths are logged with the token cut down to a prefix.
# ---------------------------------------------------------------------------


_SHARE_TOKEN_IN_PATH = re.compile(r"(/shares?/)([^/]+)")


def _loggable_path(path: str) -> str:
    return _SHARE_TOKEN_IN_PATH.sub(lambda m: f"{m.group(1)}{m.group(2)[:8]}...", path)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        _loggable_path(request.url.path),
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Security headers on every response
# ---------------------------------------------------------------------------

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(documents_router, prefix="/api/v1", tags=["Documents"])
app.include_router(shares_router, prefix="/api/v1", tags=["Share Links"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(claims: SessionClaims = Depends(get_current_claims)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Lectoria API")


@app.get("/redoc", include_in_schema=False)
async def redoc(claims: SessionClaims = Depends(get_current_claims)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Lectoria API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    """Render the auth/library error taxonomy (401/403/404/409/429/400)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                detail=exc.detail,
                fields=list(getattr(exc, "fields", []) or []),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a slowapi throttle trips."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the offending fields.

    Submitted values are never echoed back: a rejected body may hold a password.
    """
    fields = sorted({".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]) for err in exc.errors()})
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                fields=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions.

    Registered for Starlette's HTTPException so unmatched routes (404) and
    wrong methods (405) are covered as well as FastAPI's subclass.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The exception goes to the log only, never into the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, _loggable_path(request.url.path))
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined here rather than in a router so it is always reachable. Not
# throttled: load balancers and monitors must not be rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    components = {"app": "ok"}
    try:
        with request.app.state.document_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
