"""
FastAPI Application Entry Point

Builds the composition root during lifespan startup, exposes the admin and
health routers, and tears everything down on shutdown.

Lifecycle:
    startup:  setup_logging → build_container → connect (degraded on failure)
              → retry worker → cron triggers
    shutdown: cron triggers off → retry worker drained → cache closed

Author: System Architect
Date: 2025-12-15
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedcache.api.routes.admin import router as admin_router
from feedcache.api.routes.health import router as health_router
from feedcache.container import AppContainer, build_container
from feedcache.core.config.constants import HEADER_CORRELATION_ID
from feedcache.core.config.settings import Settings, get_settings
from feedcache.core.exceptions import ConfigurationError, FeedCacheError, UnknownJobError
from feedcache.core.interfaces import ContentStore, JobQueueBackend, KeyValueStore
from feedcache.core.logging import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)

logger = get_logger(__name__)


def _status_for(exc: FeedCacheError) -> int:
    if isinstance(exc, UnknownJobError):
        return 404
    if isinstance(exc, ConfigurationError):
        return 400
    return 500


def create_app(
    settings: Settings | None = None,
    *,
    content_store: ContentStore | None = None,
    kv_store: KeyValueStore | None = None,
    job_backend: JobQueueBackend | None = None,
    container: AppContainer | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration (default: get_settings())
        content_store: Document store handed to the container
        kv_store: Key-value backend handed to the container
        job_backend: Retry queue backend handed to the container
        container: Prebuilt container; the other collaborators are then ignored

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or (container.settings if container else get_settings())
    app_settings = settings.app

    # ========================================================================
    # LIFESPAN
    # ========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)
        logger.info(
            "Starting feed cache service",
            stage="APP.1",
            environment=app_settings.ENVIRONMENT,
            version=app_settings.APP_VERSION,
        )

        app_container = container or build_container(
            settings,
            content_store=content_store,
            kv_store=kv_store,
            job_backend=job_backend,
        )
        app.state.container = app_container

        try:
            await app_container.startup()
            logger.info("Application startup complete", stage="APP.1")
            yield
        finally:
            logger.info("Shutting down application", stage="APP.2")
            await app_container.shutdown()
            logger.info("Application shutdown complete", stage="APP.2")

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        description="Versioned cache and recommendation-refresh service",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[HEADER_CORRELATION_ID],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Bind a correlation id to every log line of the request."""
        correlation_id = request.headers.get(HEADER_CORRELATION_ID) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            response.headers[HEADER_CORRELATION_ID] = correlation_id
            return response
        finally:
            clear_correlation_id()

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    @app.exception_handler(FeedCacheError)
    async def feedcache_exception_handler(request: Request, exc: FeedCacheError):
        status_code = _status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log(
            f"Request failed: {exc.message}",
            stage="APP.ERR",
            error_type=type(exc).__name__,
            path=request.url.path,
            status_code=status_code,
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    # ========================================================================
    # ROUTES
    # ========================================================================

    base_path = app_settings.API_BASE_PATH
    app.include_router(health_router, prefix=base_path)
    app.include_router(admin_router, prefix=base_path)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "environment": app_settings.ENVIRONMENT,
            "docs": "/docs",
            "health": f"{base_path}/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "feedcache.app:app",
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )
