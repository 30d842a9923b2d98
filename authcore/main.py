"""authcore - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authcore.api import api_router
from authcore.api.auth import LoginRateLimiter
from authcore.api.error_handling import register_exception_handlers
from authcore.core import (
    Settings,
    create_engine,
    create_session_maker,
    get_settings,
    setup_logging,
)
from authcore.core.logging import get_logger
from authcore.middleware import SecurityHeadersMiddleware
from authcore.services.audit import AuditService
from authcore.services.blacklist import BlacklistService
from authcore.services.store import SQLTokenStore, TokenStore

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


async def _expired_record_cleanup_loop(blacklist: BlacklistService, interval: int) -> None:
    """Periodically prune expired blacklist entries and short-lived OAuth records."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await blacklist.cleanup_expired()
            if removed > 0:
                logger.info(f"Cleaned up {removed} expired token records")
        except Exception:
            logger.exception("Error cleaning up expired token records")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(f"Security configuration: {warning}")

    cleanup_task = asyncio.create_task(
        _expired_record_cleanup_loop(
            BlacklistService(
                app.state.token_store, settings, AuditService(app.state.token_store)
            ),
            settings.cleanup_interval_seconds,
        ),
        name="expired-record-cleanup",
    )
    cleanup_task.add_done_callback(task_done_callback)

    yield

    logger.info("Shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    if app.state.engine is not None:
        await app.state.engine.dispose()


def create_app(
    settings: Settings | None = None,
    token_store: TokenStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Overrides the environment-driven settings (tests).
        token_store: Overrides the PostgreSQL store (tests use MemoryTokenStore).
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Token issuance, validation and revocation service",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    # Only the PostgreSQL store owns an engine; it is disposed on shutdown
    app.state.engine = None
    if token_store is None:
        app.state.engine = create_engine(settings)
        token_store = SQLTokenStore(create_session_maker(app.state.engine))
    app.state.token_store = token_store
    app.state.login_rate_limiter = LoginRateLimiter(
        settings.login_rate_limit_window_seconds,
        settings.login_rate_limit_max_attempts,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    register_exception_handlers(app)

    app.add_middleware(SecurityHeadersMiddleware)

    # CORS must be outermost (added last) so error responses carry CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
    )

    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(api_router)

    return app


# Application instance
app = create_app()
