"""Accelerator Workflow Engine: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other engine imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from accelerator_engine.core.logging import configure_structlog
from accelerator_engine.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else _early_settings.log_level,
    json_logs=_early_settings.json_logs and not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from accelerator_engine.api.routes import api_router
from accelerator_engine.core.config import Settings, get_settings
from accelerator_engine.core.exceptions import (
    AcceleratorEngineError,
    ConcurrencyConflictError,
    ConfirmationRequiredError,
    GenerationThrottledError,
    InvalidResultShapeError,
    InvalidTransitionError,
    PrerequisiteNotMetError,
    RefinementLimitReachedError,
    SessionClosedError,
    SessionNotFoundError,
    TransportError,
    UnknownAcceleratorError,
    UnknownTemplateError,
    UpstreamRejectedError,
    ValidationFailedError,
)
from accelerator_engine.core.locking import SessionLease
from accelerator_engine.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from accelerator_engine.generation.client import GenerationClient, HttpGenerationClient
from accelerator_engine.generation.client_fake import GenerationClientFake
from accelerator_engine.middleware.correlation import get_correlation_id, setup_correlation_middleware
from accelerator_engine.services.registry import ControllerRegistry
from accelerator_engine.stores.base import SessionStore
from accelerator_engine.stores.redis_store import RedisSessionStore
from accelerator_engine.stores.sql_store import SqlSessionStore

logger = structlog.get_logger(__name__)

# Most specific first: the first isinstance match wins
ERROR_STATUS: tuple[tuple[type[AcceleratorEngineError], int], ...] = (
    (PrerequisiteNotMetError, 403),
    (UnknownAcceleratorError, 404),
    (UnknownTemplateError, 404),
    (SessionNotFoundError, 404),
    (ValidationFailedError, 422),
    (InvalidResultShapeError, 422),
    (ConcurrencyConflictError, 409),
    (ConfirmationRequiredError, 409),
    (InvalidTransitionError, 409),
    (SessionClosedError, 409),
    (RefinementLimitReachedError, 409),
    (GenerationThrottledError, 429),
    (TransportError, 502),
    (UpstreamRejectedError, 502),
)


def status_for(exc: AcceleratorEngineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def build_generation_client(settings: Settings) -> GenerationClient:
    """HTTP client when a generation service is configured, scenario fake for local dev."""
    if settings.generation_base_url:
        return HttpGenerationClient()
    logger.warning("generation_client_fake_in_use", reason="no_generation_base_url")
    return GenerationClientFake()


async def build_session_store(settings: Settings) -> SessionStore:
    if settings.session_store == "sql":
        await init_db()
        logger.info("db_initialized")
        return SqlSessionStore(get_session_factory())
    return RedisSessionStore(get_redis())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_redis()
    logger.info("redis_initialized")

    store = await build_session_store(settings)
    lease = SessionLease(get_redis(), settings.session_lease_ttl_seconds) if settings.session_lease_enabled else None
    app.state.registry = ControllerRegistry(
        store,
        build_generation_client(settings),
        lease=lease,
        settings=settings,
    )
    logger.info("registry_initialized", session_store=settings.session_store, lease=lease is not None)

    yield

    logger.info("shutdown_begin")
    # Pending autosaves are flushed before the connections go away
    await app.state.registry.shutdown()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def engine_exception_handler(request: Request, exc: AcceleratorEngineError) -> JSONResponse:
    """Map engine errors to status codes with debug_id and any request_id."""
    debug_id = str(uuid.uuid4())
    status_code = status_for(exc)
    content = {
        "detail": str(exc),
        "error_type": type(exc).__name__,
        "debug_id": debug_id,
    }
    for attribute in ("request_id", "missing", "retry_after", "code"):
        value = getattr(exc, attribute, None)
        if value is not None:
            content[attribute] = value

    log = logger.error if status_code >= 500 or isinstance(exc, ConcurrencyConflictError) else logger.info
    log(
        "engine_error",
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors; returns a generic 500."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Stepped accelerator sessions with safe autosave and confirmed AI generation",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_correlation_middleware(app)

    app.exception_handler(AcceleratorEngineError)(engine_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "accelerator_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
