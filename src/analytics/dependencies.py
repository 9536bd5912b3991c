"""FastAPI dependencies for admin analytics.

Provides dependency injection for:
- Dashboard service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.entities.store import EntityError

from .service import DashboardService, ScopeNotFoundError


async def get_dashboard_service(request: Request) -> DashboardService:
    """Get dashboard service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "dashboard_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dashboard service not available",
        )
    return app_state.dashboard_service


# Type aliases for dependency injection
DashboardServiceDep = Annotated[DashboardService, Depends(get_dashboard_service)]


def handle_analytics_error(error: EntityError | ScopeNotFoundError) -> HTTPException:
    """Convert analytics and entity errors to HTTP exceptions.

    Args:
        error: Error raised by the dashboard service or entity store

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "scope_not_found": status.HTTP_404_NOT_FOUND,
        "entity_not_found": status.HTTP_404_NOT_FOUND,
        "already_enrolled": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
