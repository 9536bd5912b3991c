"""Admin analytics API endpoints.

Provides routes for:
- Dashboard overview and per-course analytics (admin)
- At-risk user analytics (admin)
- Live dashboard stream over Server-Sent Events (admin)
- Data-change events that invalidate cached snapshots (authenticated users)
"""

from datetime import UTC, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.auth.dependencies import StudentUser, require_admin
from src.config.settings import Settings, get_settings
from src.core.logging import get_logger
from src.entities.store import EntityError

from .dependencies import DashboardServiceDep, handle_analytics_error
from .models import Scope
from .schemas import (
    DashboardSnapshot,
    EnrollmentCreatedEvent,
    EventAcceptedResponse,
    FeedbackCreatedEvent,
    ProgressUpdatedEvent,
    RiskAssessmentResponse,
    UserAnalyticsResponse,
)
from .service import ScopeNotFoundError
from .streaming import SnapshotStreamResponse


logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin-analytics"],
    dependencies=[Depends(require_admin())],
)
events_router = APIRouter(prefix="/api/events", tags=["analytics-events"])


# ==============================================================================
# Dashboard
# ==============================================================================


@router.get(
    "/dashboard/overview",
    response_model=DashboardSnapshot,
    summary="Global dashboard snapshot",
)
async def get_dashboard_overview(service: DashboardServiceDep) -> DashboardSnapshot:
    """Platform-wide snapshot, served from cache when fresh."""
    return await service.get_overview()


@router.get(
    "/courses/analytics",
    response_model=list[DashboardSnapshot],
    summary="Per-course snapshots",
)
async def get_courses_analytics(
    service: DashboardServiceDep,
) -> list[DashboardSnapshot]:
    return await service.get_course_analytics()


@router.get(
    "/users/analytics",
    response_model=UserAnalyticsResponse,
    summary="Risk classification of users",
)
async def get_users_analytics(
    service: DashboardServiceDep,
    user_filter: Literal["at_risk", "all"] = Query(
        default="at_risk",
        alias="filter",
        description="'at_risk' keeps medium and high risk users",
    ),
) -> UserAnalyticsResponse:
    """Users with enrollments, sorted by descending risk score."""
    assessments = await service.get_user_analytics(user_filter)
    return UserAnalyticsResponse(
        filter=user_filter,
        total=len(assessments),
        users=[RiskAssessmentResponse.model_validate(a) for a in assessments],
        generated_at=datetime.now(UTC),
    )


# ==============================================================================
# Live stream
# ==============================================================================


@router.get(
    "/dashboard/stream",
    summary="Live dashboard snapshots (Server-Sent Events)",
    response_class=SnapshotStreamResponse,
)
async def stream_dashboard(
    service: DashboardServiceDep,
    settings: Annotated[Settings, Depends(get_settings)],
    scope: str = Query(
        default="global",
        description="'global', 'course:<id>' or a bare course id",
    ),
) -> SnapshotStreamResponse:
    """Emit the current snapshot, then one event per recomputation.

    Snapshots that arrive faster than the client reads are coalesced; only
    the latest undelivered one is sent.
    """
    try:
        parsed = Scope.parse(scope)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid scope: {scope}",
        ) from e

    try:
        subscription, initial = await service.open_stream(parsed)
    except ScopeNotFoundError as e:
        raise handle_analytics_error(e) from e

    logger.info(
        "dashboard_stream_opened",
        scope=parsed.key,
        subscriber_id=subscription.subscriber_id,
    )
    return SnapshotStreamResponse(
        service.broadcaster,
        subscription,
        initial,
        keepalive_seconds=settings.dashboard_stream_keepalive_seconds,
    )


# ==============================================================================
# Data-change events
# ==============================================================================


def _accepted(scopes: list[Scope]) -> EventAcceptedResponse:
    return EventAcceptedResponse(invalidated_scopes=[s.key for s in scopes])


@events_router.post(
    "/enrollments",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enrollment_created(
    event: EnrollmentCreatedEvent,
    user: StudentUser,
    service: DashboardServiceDep,
) -> EventAcceptedResponse:
    try:
        scopes = await service.record_enrollment(event)
    except EntityError as e:
        raise handle_analytics_error(e) from e
    return _accepted(scopes)


@events_router.post(
    "/feedback",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def feedback_created(
    event: FeedbackCreatedEvent,
    user: StudentUser,
    service: DashboardServiceDep,
) -> EventAcceptedResponse:
    try:
        scopes = await service.record_feedback(event)
    except EntityError as e:
        raise handle_analytics_error(e) from e
    return _accepted(scopes)


@events_router.post(
    "/progress",
    response_model=EventAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def progress_updated(
    event: ProgressUpdatedEvent,
    user: StudentUser,
    service: DashboardServiceDep,
) -> EventAcceptedResponse:
    try:
        scopes = await service.record_progress(event)
    except EntityError as e:
        raise handle_analytics_error(e) from e
    return _accepted(scopes)
