"""FastAPI dependencies for report generation.

Provides dependency injection for:
- Report generator
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import ReportError, ReportGenerator


async def get_report_generator(request: Request) -> ReportGenerator:
    """Get report generator from app state."""
    app_state = request.app.state
    if not getattr(app_state, "report_generator", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Report service not available",
        )
    return app_state.report_generator


# Type alias for dependency injection
ReportGeneratorDep = Annotated[ReportGenerator, Depends(get_report_generator)]


def handle_report_error(error: ReportError) -> HTTPException:
    """Convert report errors to HTTP exceptions.

    Args:
        error: Report error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "validation_error": status.HTTP_400_BAD_REQUEST,
        "report_not_found": status.HTTP_404_NOT_FOUND,
        "report_not_ready": status.HTTP_409_CONFLICT,
        "report_failed": status.HTTP_422_UNPROCESSABLE_ENTITY,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
