"""FastAPI application entry point."""

from __future__ import annotations

import logging
import subprocess
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.api.articles import router as articles_router
from backend.api.folders import router as folders_router
from backend.api.health import router as health_router
from backend.api.sync import router as sync_router
from backend.api.watcher import router as watcher_router
from backend.config import Settings
from backend.database import create_engine, init_schema
from backend.exceptions import InternalServerError, LegacyError, LegacyFileNotFound
from backend.legacy.mdbtools import MdbToolsDriver
from backend.services.article_service import ArticleQueryService
from backend.services.cache_service import CacheService
from backend.services.connection_pool import ConnectionPool
from backend.services.locator_service import FolderLocator
from backend.services.scheduler import SyncScheduler
from backend.services.sync_service import SyncEngine
from backend.services.watcher_service import FileWatcher

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, **extra},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info("Starting PharmaPOS bridge (debug=%s)", settings.debug)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await init_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    try:
        settings.cache_dir.mkdir(parents=True, exist_ok=True)
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.critical("Failed to create data directories under %s: %s.", settings.data_dir, exc)
        raise

    driver = MdbToolsDriver(settings.mdbtools_dir)
    if not driver.is_available():
        logger.warning("mdbtools not found; legacy database files cannot be opened")

    pool = ConnectionPool.from_settings(settings, driver)
    app.state.connection_pool = pool
    app.state.locator = FolderLocator(settings)
    app.state.file_watcher = FileWatcher(ttl_seconds=settings.watcher_ttl_seconds)
    sync_engine = SyncEngine(
        session_factory,
        pool,
        batch_size=settings.sync_batch_size,
        code_pages=settings.legacy_code_pages,
    )
    app.state.sync_engine = sync_engine
    app.state.cache_service = CacheService(settings, driver)
    app.state.article_service = ArticleQueryService(pool, settings.legacy_code_pages)

    scheduler: SyncScheduler | None = None
    if settings.sync_enabled:
        scheduler = SyncScheduler(
            sync_engine,
            pool,
            session_factory,
            interval=settings.sync_interval_seconds,
            watcher=FileWatcher(ttl_seconds=settings.watcher_ttl_seconds),
        )
        await scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        try:
            await scheduler.stop()
        except Exception as exc:
            logger.error("Error during scheduler shutdown: %s", exc, exc_info=True)

    closed = pool.close_all()
    logger.info("Closed %d legacy connection(s)", closed)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("PharmaPOS bridge stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="PharmaPOS Bridge",
        description="Bridge between legacy point-of-sale databases and the back office",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(folders_router)
    app.include_router(articles_router)
    app.include_router(watcher_router)
    app.include_router(sync_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return _error(422, "Invalid request parameters", errors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(LegacyError)
    async def legacy_error_handler(request: Request, exc: LegacyError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s in %s %s: %s",
                type(exc).__name__,
                request.method,
                request.url.path,
                exc,
                exc_info=exc,
            )
        else:
            logger.warning(
                "%s in %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
            )
        if isinstance(exc, LegacyFileNotFound):
            return _error(exc.status_code, str(exc), attempted=exc.reported_locations)
        return _error(exc.status_code, str(exc))

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return _error(500, "Internal server error")

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return _error(500, "Storage operation failed")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return _error(422, str(exc) or "Invalid value")

    @app.exception_handler(subprocess.CalledProcessError)
    async def subprocess_error_handler(
        request: Request, exc: subprocess.CalledProcessError
    ) -> JSONResponse:
        logger.error(
            "CalledProcessError in %s %s: cmd=%s exit=%d",
            request.method,
            request.url.path,
            exc.cmd,
            exc.returncode,
            exc_info=exc,
        )
        return _error(502, "Legacy database tool failed")

    @app.exception_handler(UnicodeDecodeError)
    async def unicode_error_handler(request: Request, exc: UnicodeDecodeError) -> JSONResponse:
        logger.error(
            "UnicodeDecodeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error(422, "Invalid content encoding")

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error(503, "Database temporarily unavailable")

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
