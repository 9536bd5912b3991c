"""Pydantic schemas for the admin analytics API."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.entities.models import FeedbackTarget

from .models import RiskLevel


# ==============================================================================
# Snapshots
# ==============================================================================


class DashboardSnapshot(BaseModel):
    """Immutable metrics result for a scope at a point in time.

    Every ratio or mean is None when its denominator is zero; absence of
    data is never reported as 0.
    """

    model_config = ConfigDict(frozen=True)

    scope: str = Field(description="Scope key: 'global' or 'course:<id>'")
    course_id: UUID | None = Field(default=None, description="Course of the scope")
    total_courses: int = Field(ge=0)
    total_students: int = Field(
        ge=0, description="Distinct users with at least one non-dropped enrollment"
    )
    total_enrollments: int = Field(ge=0)
    active_enrollments: int = Field(ge=0)
    completed_enrollments: int = Field(ge=0)
    dropped_enrollments: int = Field(ge=0)
    completion_rate: float | None = Field(
        default=None, ge=0, le=1, description="completed / total (None if no enrollments)"
    )
    average_progress: float | None = Field(
        default=None, ge=0, le=100, description="Mean progress percentage"
    )
    feedback_count: int = Field(ge=0)
    average_satisfaction: float | None = Field(
        default=None, ge=1, le=5, description="Mean rating (None if no feedback)"
    )
    average_time_spent: float | None = Field(
        default=None, ge=0, description="Mean seconds spent per participant"
    )
    computed_at: datetime


# ==============================================================================
# Risk
# ==============================================================================


class RiskAssessmentResponse(BaseModel):
    """Risk classification of a single user."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    risk_level: RiskLevel
    score: float = Field(ge=0, le=1, description="Composite risk score")
    inactivity_score: float = Field(ge=0, le=1)
    completion_rate: float = Field(ge=0, le=1)
    normalized_rating: float | None = Field(
        default=None, ge=0, le=1, description="Mean rating given, scaled to 0-1"
    )
    days_since_login: float | None = None
    enrollment_count: int


class UserAnalyticsResponse(BaseModel):
    """Classified users sorted by descending risk score."""

    filter: Literal["at_risk", "all"]
    total: int
    users: list[RiskAssessmentResponse]
    generated_at: datetime


# ==============================================================================
# Ingestion
# ==============================================================================


class EnrollmentCreatedEvent(BaseModel):
    """A user enrolled in a course."""

    user_id: UUID
    course_id: UUID
    enrolled_at: datetime | None = None


class FeedbackCreatedEvent(BaseModel):
    """A rating was left on a course or module."""

    user_id: UUID
    target_type: FeedbackTarget = FeedbackTarget.COURSE
    target_id: UUID
    rating: int = Field(ge=1, le=5)
    comment: str = Field(default="", max_length=5000)


class ProgressUpdatedEvent(BaseModel):
    """Module progress of a user changed."""

    user_id: UUID
    module_id: UUID
    time_spent_seconds: int = Field(ge=0)
    completed: bool = False


class EventAcceptedResponse(BaseModel):
    """Acknowledgement of an ingested event."""

    accepted: bool = True
    invalidated_scopes: list[str]
