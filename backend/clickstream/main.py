"""Main FastAPI application."""
import asyncio
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clickstream import models  # noqa: F401  registers tables on Base.metadata
from clickstream.api import analytics, api_keys, tracking
from clickstream.config import Settings, get_settings
from clickstream.database import Base, build_engine, build_session_factory
from clickstream.services.aggregation import AggregationEngine
from clickstream.services.cache import build_cache
from clickstream.services.ingestion import IngestionService
from clickstream.services.metrics import MetricsCollector
from clickstream.services.rate_limit import build_counter_backend, build_rate_limiters
from clickstream.services.response_cache import ResponseCache
from clickstream.utils.exceptions import (
    AppException,
    InternalServerError,
    RateLimitError,
    ValidationError,
    handle_database_error,
)
from clickstream.utils.logger import configure_logging, logger


def _log_uncaught(exc_type, exc, tb) -> None:
    logger.critical("Uncaught exception, process exiting", exc_info=(exc_type, exc, tb))


def _log_task_error(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if exc is not None:
        logger.error(f"{message}: {exc}", exc_info=exc)
    else:
        logger.error(message)


def _error_response(exc: AppException) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sys.excepthook = _log_uncaught
    asyncio.get_running_loop().set_exception_handler(_log_task_error)
    if app.state.settings.auto_create_tables:
        # In production, use migrations
        Base.metadata.create_all(bind=app.state.engine)
    logger.info(f"Clickstream API starting ({app.state.settings.environment})")
    yield
    await app.state.cache.close()
    await app.state.rate_limit_backend.close()
    app.state.engine.dispose()
    logger.info("Clickstream API stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application and its services.

    Args:
        settings: Settings to use; defaults to the environment

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Clickstream API",
        description="Event ingestion and analytics aggregation for the clickstream tracker",
        version="0.1.0",
        lifespan=lifespan,
    )

    engine = build_engine(settings)

    metrics = MetricsCollector()
    cache = build_cache(settings, metrics)
    rate_limit_backend = build_counter_backend(settings)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.metrics = metrics
    app.state.cache = cache
    app.state.rate_limit_backend = rate_limit_backend
    app.state.rate_limiters = build_rate_limiters(settings, rate_limit_backend)
    app.state.ingestion = IngestionService(settings, cache, metrics)
    app.state.aggregation = AggregationEngine(settings, cache, metrics)
    app.state.response_cache = ResponseCache(cache, settings.aggregation_cache_ttl)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        tags = {"method": request.method, "status": response.status_code}
        metrics.capture("http_requests_total", 1, tags)
        metrics.capture("http_request_duration_ms", (time.perf_counter() - started) * 1000, {"method": request.method})
        return response

    @app.exception_handler(AppException)
    async def handle_app_exception(request: Request, exc: AppException):
        if exc.status_code >= 500:
            logger.error(f"{exc.name} on {request.method} {request.url.path}: {exc.message}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return _error_response(ValidationError("Invalid request", details={"errors": errors}))

    @app.exception_handler(SQLAlchemyError)
    async def handle_sqlalchemy_error(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return _error_response(handle_database_error(exc, f"{request.method} {request.url.path}"))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return _error_response(InternalServerError("Internal Server Error"))

    # Include routers
    app.include_router(tracking.router)
    app.include_router(analytics.router)
    app.include_router(api_keys.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Clickstream API",
            "version": "0.1.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "uptime": metrics.uptime()}

    @app.get("/metrics")
    async def get_metrics():
        """Snapshot of in-process metrics."""
        return {
            "uptime": metrics.uptime(),
            "cache": await cache.get_stats(),
            "metrics": metrics.snapshot(),
        }

    return app


app = create_app()
