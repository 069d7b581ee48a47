"""Rendezvous appointment service: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from rendezvous.core.logging import configure_structlog
from rendezvous.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rendezvous.api.routes import api_router
from rendezvous.core.config import get_settings
from rendezvous.core.exceptions import ClientError
from rendezvous.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from rendezvous.jobs.runner import JobRunner
from rendezvous.jobs.schedule import build_jobs
from rendezvous.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)
from rendezvous.services.container import build_services

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while connections drain
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    # Startup
    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    await init_redis()
    logger.info("redis_initialized")

    app.state.services = build_services(get_session_factory(), get_redis(), settings)

    app.state.job_runner = None
    if settings.scheduler_enabled:
        runner = JobRunner(build_jobs(app.state.services, settings), tz=ZoneInfo(settings.local_timezone))
        runner.start()
        app.state.job_runner = runner

    yield

    # Shutdown
    logger.info("shutdown_begin")
    if app.state.job_runner is not None:
        await app.state.job_runner.stop()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


def _error_response(request: Request, status_code: int, detail: str, event: str) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    logger.warning(
        event,
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=detail,
    )
    return JSONResponse(status_code=status_code, content={"detail": detail, "debug_id": debug_id})


async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
    """Business-rule failures carry their own status and a message safe to show the caller."""
    return _error_response(request, exc.status_code, exc.message, "client_error")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking."""
    return _error_response(request, exc.status_code, exc.detail, "http_exception")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # Return generic 500 (no internal details leaked)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Paid appointments between clients and professionals",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    # Exception handlers
    app.exception_handler(ClientError)(client_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rendezvous.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
