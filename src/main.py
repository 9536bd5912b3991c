"""Learnboard Analytics API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.analytics.broadcaster import UpdateBroadcaster
from src.analytics.cache import (
    CacheBackend,
    CacheLayer,
    InMemoryCacheBackend,
    RedisCacheBackend,
)
from src.analytics.risk import RiskClassifier, RiskPolicy
from src.analytics.router import events_router
from src.analytics.router import router as analytics_router
from src.analytics.service import DashboardService
from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.entities.store import EntityStore, InMemoryEntityStore
from src.health.router import router as health_router
from src.reports.router import router as reports_router
from src.reports.service import ReportGenerator
from src.reports.store import InMemoryReportStore


if TYPE_CHECKING:
    import redis.asyncio as redis


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def build_services(
    app: FastAPI,
    store: EntityStore,
    settings: Settings,
    redis_client: "redis.Redis | None" = None,
) -> None:
    """Wire the analytics and report services onto ``app.state``.

    The snapshot cache uses Redis when configured and connected, and an
    in-process backend otherwise.
    """
    backend: CacheBackend
    if redis_client is not None and settings.dashboard_cache_backend == "redis":
        backend = RedisCacheBackend(redis_client)
    else:
        backend = InMemoryCacheBackend()

    broadcaster = UpdateBroadcaster()
    cache = CacheLayer(
        backend,
        ttl_seconds=settings.dashboard_cache_ttl_seconds,
        on_recompute=broadcaster.publish,
    )
    classifier = RiskClassifier(RiskPolicy.from_settings(settings))

    app.state.entity_store = store
    app.state.dashboard_service = DashboardService(
        store=store,
        cache=cache,
        broadcaster=broadcaster,
        classifier=classifier,
    )
    app.state.report_generator = ReportGenerator(
        store=store,
        reports=InMemoryReportStore(),
        classifier=classifier,
        ttl_seconds=settings.report_ttl_seconds,
        max_rows=settings.report_max_rows,
    )
    logger.info(
        "analytics_services_initialized",
        cache_backend=type(backend).__name__,
        cache_ttl_seconds=settings.dashboard_cache_ttl_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - snapshots fall back to in-process cache)
    redis_client = None
    if settings.redis_enabled:
        try:
            redis_client = await init_redis()
            logger.info("redis_initialized")
        except Exception as e:
            logger.warning(
                "redis_init_skipped",
                error=str(e),
                message="Running without Redis - using in-memory snapshot cache",
            )

    # The entity store is provided by the platform; fall back to an empty
    # in-memory store for local runs
    store = getattr(app.state, "entity_store", None) or InMemoryEntityStore()
    build_services(app, store, settings, redis_client)

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await app.state.report_generator.aclose()
    await app.state.dashboard_service.aclose()
    await shutdown_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # SECURITY: Always set debug=False to prevent Starlette's ServerErrorMiddleware
    # from exposing stack traces in responses. Our custom exception handlers will
    # log full details internally while returning safe error messages to users.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Course platform admin analytics - API",
        debug=False,  # Never expose stack traces in responses
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    # Global exception handlers (security: never expose stack traces)
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        SECURITY: Never expose stack traces or internal error details to users.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(analytics_router)
    app.include_router(reports_router)
    app.include_router(events_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Learnboard Analytics API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
