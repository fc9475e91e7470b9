"""
api/main.py -- FastAPI application entry point for Landing Gate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds the identity store and every service from Settings and hangs
them on app.state; routes and the guard dependency read them from there.
Shutdown disposes the store's connection pool.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import HealthResponse, MessageResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.errors import SERVER_ERROR_MESSAGE, AuthError
from auth.guard import AuthGuard
from auth.login import LoginService
from auth.passwords import PasswordHasher
from auth.permissions import ProtectedPathTable
from auth.registration import RegistrationService
from auth.store import IdentityStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("landinggate.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def install_services(app: FastAPI, settings: Settings, store: IdentityStore) -> None:
    """Build every service around store and publish them on app.state.

    Configuration is passed in explicitly -- nothing under auth/ reads
    Settings on its own. Tests call this with an in-memory store.
    """
    tokens = TokenService(secret=settings.secret_key)
    hasher = PasswordHasher(salt=settings.password_salt, rounds=settings.password_hash_rounds)
    table = ProtectedPathTable(settings.protected_paths)

    app.state.identity_store = store
    app.state.token_service = tokens
    app.state.path_table = table
    app.state.auth_guard = AuthGuard(store, tokens, table)
    app.state.registration = RegistrationService(store, tokens, hasher, default_role=settings.default_role)
    app.state.login = LoginService(store, tokens, hasher)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store and services on startup, dispose the pool on shutdown.

    get_settings() raises on a missing SECRET_KEY or PASSWORD_SALT in
    production mode, so a misconfigured process never starts serving.
    """
    settings = get_settings()
    logger.info("Landing Gate API starting up")
    store = IdentityStore(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
    )
    install_services(app, settings, store)
    logger.info(
        "Auth initialized (protected prefixes=%s, default_role=%s)",
        sorted(app.state.path_table.snapshot()),
        settings.default_role,
    )

    yield

    app.state.identity_store.close()
    logger.info("Landing Gate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Landing Gate API",
    description="Registers and logs in users, issues bearer tokens, and gates protected routes by role.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {"message", "code"} body so clients can
# parse errors without choosing a schema by status code.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the access-control error taxonomy onto HTTP statuses.

    ServerError bodies always carry the fixed generic message; the cause was
    logged where it was caught.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=MessageResponse(message=exc.message, code=exc.code).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=MessageResponse(message="Too many requests.", code="rate_limited").model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request shape is wrong (missing or mistyped form fields)."""
    fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
    return JSONResponse(
        status_code=422,
        content=MessageResponse(
            message=f"Request validation failed: {', '.join(fields) or 'body'}",
            code="request_validation_error",
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a dict, use it as the body rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=MessageResponse(message=str(exc.detail), code=f"http_{exc.status_code}").model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=MessageResponse(message=SERVER_ERROR_MESSAGE, code="internal_error").model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit and no guard -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and identity store reachability."""
    store: IdentityStore = request.app.state.identity_store
    db_ok = store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
