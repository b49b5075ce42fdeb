"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (one per bounded context)
- Error handlers (centralized domain-to-HTTP mapping)
- Security middleware (headers, request size, rate limiting)
- Logging configuration
- The barter runtime and its background deadline sweeper

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from barterdesk.application.barter.sweep_deadlines import SweepDeadlinesUseCase
from barterdesk.core.config import Settings, settings as default_settings
from barterdesk.infrastructure.barter.scheduler import DeadlineSweepScheduler
from barterdesk.interfaces.barter.dependencies import build_barter_runtime
from barterdesk.interfaces.barter.router import router as barter_router
from barterdesk.interfaces.health import router as health_router
from barterdesk.shared.errors.handlers import register_error_handlers
from barterdesk.shared.logging import configure_logging
from barterdesk.shared.security.headers import (
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from barterdesk.shared.security.rate_limiting import (
    build_limiter,
    rate_limit_exceeded_handler,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the deadline sweeper on startup and release resources on shutdown."""
    scheduler: Optional[DeadlineSweepScheduler] = None
    if app.state.settings.deadline_sweep_enabled:
        sweep = SweepDeadlinesUseCase(app.state.barter.context)
        scheduler = DeadlineSweepScheduler(
            sweep.execute,
            interval_seconds=app.state.settings.deadline_sweep_interval_seconds,
        )
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        scheduler.stop()
    app.state.barter.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Registers routers, error handlers, and security middleware.
    This is the composition root of the application.

    Args:
        settings: Overrides the environment-loaded settings (tests).

    Returns:
        A fully configured FastAPI application instance.
    """
    settings = settings or default_settings
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.barter = build_barter_runtime(settings)

    # --- Rate Limiting ---
    app.state.limiter = build_limiter(
        settings.rate_limit_default, enabled=settings.rate_limit_enabled
    )
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # --- Security Middleware ---
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RequestSizeLimitMiddleware, max_bytes=settings.max_request_size_bytes
    )

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(barter_router, prefix="/api/v1")

    logger.info("Application created: %s %s", settings.project_name, settings.version)
    return app


app = create_app()
