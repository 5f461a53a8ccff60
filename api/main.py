"""
api/main.py -- FastAPI application entry point for DigestGate.

Exposes a digest-protected resource and the health endpoint. The digest
protocol itself lives in auth/; this module only wires it into the app.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers, exposes WWW-Authenticate
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (account store, nonce table, gate, purge task) and
shutdown (cancel purge task, close DB connection) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.digest import router as digest_router
from auth.gate import DigestAuthGate, make_opaque
from auth.nonces import NonceManager
from auth.store import DEFAULT_DB_URL, AccountStore
from core.config import Settings, get_settings

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("digestgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_gate(settings: Settings, store: AccountStore) -> DigestAuthGate:
    """Assemble the nonce manager and gate from settings.

    The gate gets store.find_account as a bare callable; it never sees the
    store itself.
    """
    nonce_manager = NonceManager(
        settings.digest_auth_secret,
        ttl_seconds=settings.nonce_ttl_seconds,
        retention_seconds=settings.nonce_retention_seconds,
        cnonce_window=settings.cnonce_window,
        max_nonces=settings.max_nonces,
    )
    return DigestAuthGate(
        realm=settings.digest_realm,
        nonce_manager=nonce_manager,
        find_account=store.find_account,
        algorithm=settings.digest_algorithm,
        opaque=make_opaque(settings.digest_auth_secret, settings.digest_realm),
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Evict nonce records past their retention window every `interval` seconds.

    Eviction only bounds memory; validate() already treats an expired record
    as stale and a missing one as unknown. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and unwinds cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.digest_gate.nonce_manager.purge_expired()
        if removed:
            logger.info("Purged %d expired nonce(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Account store first -- the gate needs its find_account callable.
      2. Gate second -- owns the nonce table.
      3. Purge task last -- references app.state.digest_gate.
    """
    logger.info("DigestGate API starting up (realm=%r)", _settings.digest_realm)
    app.state.account_store = AccountStore(db_url=_settings.auth_db_url or DEFAULT_DB_URL)
    if not app.state.account_store.has_accounts():
        logger.warning("No digest accounts configured -- add one with: python main.py add-account <username>")
    app.state.digest_gate = build_gate(_settings, app.state.account_store)
    logger.info(
        "Digest gate initialized (algorithm=%s, nonce_ttl=%ds)",
        _settings.digest_algorithm,
        _settings.nonce_ttl_seconds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.nonce_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.account_store.close()
    logger.info("DigestGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="DigestGate API",
    description="Resources protected by RFC 2617 HTTP Digest authentication.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    # Browser clients need to read the challenge to answer it.
    expose_headers=["WWW-Authenticate"],
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

app.include_router(digest_router, prefix="/api/v1", tags=["Digest Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    exc.headers must be forwarded: the digest challenge travels in
    WWW-Authenticate on the 401.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
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
# No rate limit and no authentication -- load balancers must reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and the size of the nonce table."""
    gate = getattr(request.app.state, "digest_gate", None)
    return HealthResponse(
        version=_VERSION,
        components={
            "app": "ok",
            "active_nonces": len(gate.nonce_manager) if gate is not None else 0,
        },
    )
