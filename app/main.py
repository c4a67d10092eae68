"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1 import api_router
from app.config import settings
from app.core.cache import CacheManager
from app.core.exceptions import WorkflowError
from app.core.logging import setup_logging
from app.core.scheduler import get_scheduler_status, start_scheduler, stop_scheduler
from app.db.session import dispose_engine, get_engine, get_session_factory, init_db
from app.queues.registry import QueueRegistry
from app.workers import build_services, register_workers

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    """Initialize Sentry for error tracking (only if DSN is properly configured)."""
    if settings.SENTRY_DSN and settings.SENTRY_DSN.startswith("https://"):
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.SENTRY_ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(
                    level=None,  # Capture all logs
                    event_level="ERROR",  # Only send ERROR and above as events
                ),
            ],
            release=settings.APP_VERSION,
            attach_stacktrace=True,
            send_default_pii=False,  # Don't send personally identifiable info
        )
    else:
        logger.warning("⚠️  Sentry DSN not configured - error tracking disabled")


def create_app(
    registry: Optional[QueueRegistry] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    cache: Optional[CacheManager] = None,
    run_scheduler: bool = True,
) -> FastAPI:
    """
    Build the API application.

    Tests pass their own registry, session factory and cache; in production
    everything is built from settings during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging()
        init_sentry()

        app.state.cache = cache or CacheManager(settings)
        await app.state.cache.connect()

        if session_factory is None:
            if settings.DEBUG:
                await init_db(get_engine())
            app.state.session_factory = get_session_factory()
        else:
            app.state.session_factory = session_factory

        app.state.registry = registry or QueueRegistry.from_settings(settings)
        if settings.RUN_WORKERS_IN_PROCESS:
            services = build_services(
                app.state.registry, app.state.cache, app.state.session_factory, settings
            )
            register_workers(app.state.registry, services)
            app.state.registry.start()
            logger.info("🚀 Queue workers started in-process")

        if run_scheduler:
            start_scheduler(app.state.registry)

        yield

        # Shutdown
        if run_scheduler:
            stop_scheduler()
        await app.state.registry.shutdown()
        await app.state.cache.disconnect()
        if session_factory is None:
            await dispose_engine()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Internship lifecycle backend: workflows, job queues and report generation",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        swagger_ui_parameters={
            "persistAuthorization": True,  # Persist authorization after page refresh
        },
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure properly in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/", tags=["Health"])
    async def root():
        """Root endpoint."""
        return {
            "message": "Internship Hub API",
            "version": settings.APP_VERSION,
            "status": "operational",
        }

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint with cache, queue and scheduler status."""
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "cache": await request.app.state.cache.get_stats(),
            "queues": await request.app.state.registry.get_all_status(),
            "scheduler": get_scheduler_status(),
        }

    @app.exception_handler(WorkflowError)
    async def workflow_exception_handler(request: Request, exc: WorkflowError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"❌ Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "message": str(exc) if settings.DEBUG else "An error occurred",
            },
        )

    return app


app = create_app()
