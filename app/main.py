"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.router import api_router
from app.config import settings
from app.core.exceptions import AppException
from app.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.middleware.logging import LoggingMiddleware, configure_logging
from app.services.persistence import create_persistence
from app.services.queue_service import QueueService
from app.services.sync_loop import SyncLoop

# Configure logging
configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Opens the queue view and its sync loop on startup and tears both down
    on shutdown.
    """
    # Startup
    logger.info(
        "application_startup",
        environment=settings.environment,
        store=settings.store_backend,
    )

    persistence = create_persistence(
        settings.store_backend,
        settings.store_api_url,
        token=settings.store_api_token,
        timeout=settings.store_timeout_seconds,
    )
    service = QueueService(
        persistence,
        ticket_allocation_retries=settings.ticket_allocation_retries,
        reorder_failure_warning_threshold=settings.reorder_failure_warning_threshold,
    )
    sync_loop = SyncLoop(service, interval_seconds=settings.sync_interval_seconds)

    if settings.uses_memory_store:
        logger.warning("memory_store_in_use", detail="queue is not shared with other desks")

    if await persistence.check_connection():
        logger.info("store_connected")
    else:
        logger.error("store_connection_failed", url=settings.store_api_url)

    app.state.queue_service = service
    app.state.sync_loop = sync_loop
    sync_loop.start()

    yield

    # Shutdown
    logger.info("application_shutdown")

    await sync_loop.stop()
    service.close()
    await persistence.close()
    logger.info("store_connection_closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Front-desk patient queue and appointment check-in service",
    debug=settings.debug,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Add exception handlers
app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, general_exception_handler)

# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Setup Prometheus instrumentation
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """
    Root endpoint.

    Returns:
        Welcome message
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
