"""
api/main.py -- FastAPI application entry point for AuthShell.

Run with:      uvicorn api.main:app --reload
               python main.py --serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- authlib keeps the OAuth state value here

Lifespan builds one shell per application (store, gateway, user store,
provider, observer, auth service) via wire_shell(), starts the observer and
the stall watchdog, and tears all of it down symmetrically.
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
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.shell import router as shell_router
from auth.local import OutboxMailer
from auth.oauth import build_oauth_registry
from auth.observer import AuthStateObserver
from auth.providers import get_provider
from auth.service import AuthService
from auth.store import UserStore
from core.config import Settings, get_settings
from core.runtime import build_shell

API_VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authshell.api")

# ---------------------------------------------------------------------------
# Shell wiring
# ---------------------------------------------------------------------------


def wire_shell(app: FastAPI, settings: Settings, user_store: UserStore, oauth=None) -> None:
    """Attach a fully wired shell to app.state and start the auth observer.

    Shared by the production lifespan and the test lifespan so both exercise
    the same object graph.
    """
    shell = build_shell(settings)
    mailer = OutboxMailer()
    oauth = oauth if oauth is not None else build_oauth_registry(settings)
    provider = get_provider(settings, user_store, mailer=mailer, oauth=oauth)
    observer = AuthStateObserver(shell.store, provider, settings.require_email_verification)

    app.state.store = shell.store
    app.state.gateway = shell.gateway
    app.state.user_store = user_store
    app.state.mailer = mailer
    app.state.oauth = oauth
    app.state.provider = provider
    app.state.observer = observer
    app.state.auth_service = AuthService(shell.gateway, shell.store, provider)
    observer.start()


async def _watchdog_loop(app: FastAPI, interval: float, timeout: float) -> None:
    """Flag the store STALLED when an intent has been in flight longer than `timeout`.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        app.state.gateway.mark_stalled(timeout)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup before yield, shutdown after, in reverse order."""
    logger.info("AuthShell API starting up (provider=%s)", _settings.auth_provider)
    wire_shell(app, _settings, UserStore(_settings.database_url))
    app.state.watchdog_task = asyncio.create_task(
        _watchdog_loop(app, _settings.watchdog_interval_seconds, _settings.stall_timeout_seconds)
    )

    yield

    app.state.watchdog_task.cancel()
    try:
        await app.state.watchdog_task
    except asyncio.CancelledError:
        logger.info("Stall watchdog stopped")
    app.state.observer.stop()
    app.state.user_store.close()
    logger.info("AuthShell API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthShell API",
    description="Authentication shell: observable state store and policy-gated action gateway.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib stores the OAuth state value in the session between the
# authorization redirect and the callback (CSRF protection).
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key)

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
app.include_router(shell_router, prefix="/api/v1", tags=["Shell"])

# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly. Intent failures are not exceptions; they are rendered by
# api.responses.intent_response().
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After."""
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
    """Structured dict details are passed through as the error field."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: the traceback goes to the log, never to the response body."""
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
# Defined directly in main.py so it is reachable regardless of router state.
# No rate limit -- health checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, database reachability and shell stability."""
    db_ok = request.app.state.user_store.ping()
    stability = request.app.state.store.get_state().stability.value
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error", "shell": stability},
    )
