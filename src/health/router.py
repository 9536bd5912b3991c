"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from fastapi.responses import ORJSONResponse

from src.config import get_settings
from src.core.redis import get_redis


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness check - confirms the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> ORJSONResponse:
    """Readiness check - ready once the analytics services are wired."""
    settings = get_settings()
    state = request.app.state
    services_ready = bool(
        getattr(state, "dashboard_service", None)
        and getattr(state, "report_generator", None)
    )
    return ORJSONResponse(
        status_code=status.HTTP_200_OK
        if services_ready
        else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if services_ready else "starting",
            "environment": settings.environment,
            "debug": settings.debug,
            "redis": get_redis() is not None,
        },
    )


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
