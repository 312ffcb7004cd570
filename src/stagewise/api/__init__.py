"""FastAPI application factory for stagewise."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stagewise import event_log
from stagewise.adapters.store_factory import DEFAULT_DB_PATH
from stagewise.api.rate_limit import (
    RateLimitMiddleware,
    RateLimiter,
    SharedRateLimitStore,
    rate_limit_response,
)
from stagewise.errors import RateLimitExceeded, StagewiseError
from stagewise.models import now_ms
from stagewise.observability import add_observability_middleware

from stagewise.api.routers import (
    analytics,
    health,
    intake,
    roles,
    settings,
    tasks,
)

log = logging.getLogger("stagewise.api")


def _default_limiter() -> RateLimiter:
    if os.environ.get("STAGEWISE_RATE_LIMIT_STORE", "memory") == "shared":
        return RateLimiter(SharedRateLimitStore(event_log._get_store()))
    return RateLimiter()


def create_app(
    db_path: str | Path = "",
    *,
    rate_limiter: RateLimiter | None = None,
    clock: Callable[[], int] | None = None,
) -> FastAPI:
    """Build and return a configured FastAPI application.

    *clock* (epoch ms) drives every time-dependent endpoint; the rate
    limiter keeps its own clock.
    """
    app = FastAPI(
        title="stagewise",
        description="Stage-duration analytics and SLA escalation for recruitment pipelines",
        version="0.1.0",
    )

    # Store configuration in app state
    resolved_db_path = str(db_path) if db_path else os.environ.get("STAGEWISE_DB_PATH", DEFAULT_DB_PATH)
    app.state.db_path = resolved_db_path
    app.state.clock = clock or now_ms

    # Initialise the event store from runtime env (sqlite/postgres).
    event_log.init(
        db_path=resolved_db_path,
        backend=os.environ.get("STAGEWISE_DB_BACKEND"),
        dsn=os.environ.get("STAGEWISE_PG_DSN"),
    )

    # ---------------------------------------------------------------
    # Exception handlers: every error body is {"error": "..."}
    # ---------------------------------------------------------------

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Extract first meaningful error for concise message
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = ".".join(str(part) for part in first.get("loc", []))
            msg = first.get("msg", "Invalid input")
            detail = f"{loc}: {msg}" if loc else msg
        else:
            detail = "Invalid JSON body"
        return JSONResponse(
            status_code=400,
            content={"error": detail},
        )

    @app.exception_handler(StagewiseError)
    async def stagewise_exception_handler(request: Request, exc: StagewiseError):
        if isinstance(exc, RateLimitExceeded):
            return rate_limit_response(exc)
        if exc.status_code >= 500:
            log.exception("Request failed on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc)},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        log.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": str(exc)},
        )

    # ---------------------------------------------------------------
    # Middleware (order matters: last added = outermost)
    # ---------------------------------------------------------------

    add_observability_middleware(app)

    # Rate limiting wraps observability; throttled requests never reach a handler
    app.state.rate_limiter = None
    if rate_limiter is not None or os.environ.get("STAGEWISE_RATE_LIMIT_ENABLED", "1") == "1":
        limiter = rate_limiter or _default_limiter()
        app.state.rate_limiter = limiter
        app.add_middleware(RateLimitMiddleware, limiter=limiter)

    # CORS: allow cross-origin requests from any origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------------------------------------------------------
    # Routers: mounted at /api (legacy) and /v1 (canonical)
    # ---------------------------------------------------------------

    api = APIRouter()
    api.include_router(analytics.router)
    api.include_router(intake.router)
    api.include_router(roles.router)
    api.include_router(tasks.router)
    api.include_router(settings.router)

    app.include_router(api, prefix="/api")
    app.include_router(api, prefix="/v1")

    # Health + metrics (no version prefix)
    app.include_router(health.router)

    return app
