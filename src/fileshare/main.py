"""Fileshare FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, metrics, auth guard, CORS),
error handlers for the sharing taxonomy, the rate-limit compactor, and
injects store implementations via dependency injection.

Usage:
    # Local development
    from fileshare import create_app, ShareSettings
    app = create_app(ShareSettings(signing_secret="dev-secret"))

    # Non-local (Supabase stores built from settings)
    app = create_app(ShareSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, share_store=store, files=files, clock=clock)
"""

from __future__ import annotations

import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import SupabaseActivitySink, SupabaseClient, SupabaseShareStore
from .errors import MalformedInput, ShareAccessError, Unavailable
from .files import create_files_router
from .inmemory import InMemoryFileStorage, InMemoryShareStore
from .observability.logging import configure_logging
from .observability.metrics import metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .protocols import FileStorage, ShareStore
from .ratelimit import RateLimitCompactor, RateLimiterRegistry, TimeSource
from .security import AuthGuardMiddleware, create_token_verifier
from .service import SharingService
from .settings import ShareSettings
from .sharing.access import create_share_access_router
from .sharing.audit import ActivitySink, LoggingActivitySink
from .sharing.model import Clock, RandomBytes, utc_now
from .sharing.routes import create_share_router

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Container for all injected store/provider instances.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    share_store: ShareStore
    files: FileStorage
    activity: ActivitySink
    rate_limiters: RateLimiterRegistry
    service: SharingService


def _build_supabase_client(settings: ShareSettings) -> SupabaseClient:
    return SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        http_client=httpx.AsyncClient(),
        timeout_seconds=settings.store_timeout_seconds,
    )


# ── Error handlers ──────────────────────────────────────────────────


def _error_headers(request: Request, extra: dict[str, str] | None = None) -> dict[str, str] | None:
    headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
    headers.update(extra or {})
    return headers or None


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ShareAccessError)
    async def share_access_error(request: Request, exc: ShareAccessError):
        return JSONResponse(
            status_code=exc.http_status,
            content=exc.to_dict(),
            headers=_error_headers(request, getattr(exc, "headers", None)),
        )

    @app.exception_handler(Unavailable)
    async def unavailable(request: Request, exc: Unavailable):
        return JSONResponse(
            status_code=exc.http_status,
            content=exc.to_dict(),
            headers=_error_headers(request, {"Retry-After": "1"}),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        content = (
            exc.detail if isinstance(exc.detail, dict)
            else {"success": False, "error": "http_error", "detail": str(exc.detail)}
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=_error_headers(request, getattr(exc, "headers", None)),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = ", ".join(
            ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            for err in exc.errors()
        )
        error = MalformedInput(f"invalid request: {fields}" if fields else "invalid request")
        return JSONResponse(
            status_code=error.http_status,
            content=error.to_dict(),
            headers=_error_headers(request),
        )


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: ShareSettings | None = None,
    *,
    share_store: ShareStore | None = None,
    files: FileStorage | None = None,
    activity: ActivitySink | None = None,
    rate_limiters: RateLimiterRegistry | None = None,
    clock: Clock = utc_now,
    rate_clock: TimeSource = time.time,
    random_bytes: RandomBytes = secrets.token_bytes,
    configure_logs: bool = True,
) -> FastAPI:
    """Create a configured fileshare FastAPI application.

    Args:
        settings: Application settings. Defaults to ``ShareSettings.from_env()``.
        share_store, files, activity, rate_limiters: Overrides. When None,
            local mode uses InMemory implementations and non-local mode
            builds Supabase-backed stores from settings.
        clock, rate_clock, random_bytes: Time and randomness sources.
        configure_logs: Configure structlog on creation.

    Raises:
        ValueError: If settings validation fails.
        ValueError: If non-local has no file storage provided.
    """
    if settings is None:
        settings = ShareSettings.from_env()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Fileshare settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if configure_logs:
        configure_logging()

    if share_store is None or activity is None:
        if settings.uses_supabase:
            client = _build_supabase_client(settings)
            share_store = share_store or SupabaseShareStore(client)
            activity = activity or SupabaseActivitySink(client)
        elif settings.is_local:
            share_store = share_store or InMemoryShareStore()
            activity = activity or LoggingActivitySink()

    if files is None:
        if not settings.is_local:
            raise ValueError(
                f"Non-local environment ({settings.environment}) requires "
                "file storage to be explicitly provided"
            )
        files = InMemoryFileStorage()

    rate_limiters = rate_limiters or RateLimiterRegistry(clock=rate_clock)
    service = SharingService.build(
        share_store,
        settings.signing_secret,
        public_base_url=settings.public_base_url,
        rate_limiters=rate_limiters,
        activity=activity,
        clock=clock,
        random_bytes=random_bytes,
    )
    deps = AppDependencies(
        share_store=share_store,
        files=files,
        activity=activity,
        rate_limiters=rate_limiters,
        service=service,
    )
    compactor = RateLimitCompactor(rate_limiters, settings.rate_limit_sweep_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Fileshare startup (environment=%s)", settings.environment)
        compactor.start()
        try:
            yield
        finally:
            await compactor.stop()
            logger.info("Fileshare shutdown")

    app = FastAPI(
        title="Fileshare",
        description="Capability-scoped file sharing with abuse control",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings
    app.state.rate_limiters = rate_limiters
    app.state.compactor = compactor

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> Metrics -> Logging -> AuthGuard -> CORS -> route

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(
        AuthGuardMiddleware,
        token_verifier=create_token_verifier(
            supabase_url=settings.supabase_url,
            jwt_secret=settings.jwt_secret,
            audience=settings.jwt_audience,
        ),
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    _install_error_handlers(app)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_share_router(service, files))
    app.include_router(create_share_access_router(service, files))
    app.include_router(create_files_router(files))

    return app


# For uvicorn, use --factory flag:
#   uvicorn fileshare.main:create_app --factory
# This avoids executing create_app() at import time.
