"""Pydantic schemas for the reports API."""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .models import (
    DateRange,
    Report,
    ReportFilters,
    ReportFormat,
    ReportRequest,
    ReportStatus,
    ReportType,
)


# ==============================================================================
# Request Schemas
# ==============================================================================


class DateRangeSchema(BaseModel):
    """Inclusive date range; values without a timezone are read as UTC.

    Ordering is checked by the report generator.
    """

    start: datetime
    end: datetime


class ReportFiltersSchema(BaseModel):
    course_ids: list[UUID] = Field(default_factory=list)
    user_ids: list[UUID] = Field(default_factory=list)
    instructor_ids: list[UUID] = Field(default_factory=list)


class ReportGenerateRequest(BaseModel):
    """Request to generate a report."""

    model_config = ConfigDict(populate_by_name=True)

    type: ReportType = Field(..., description="Report type")
    date_range: DateRangeSchema = Field(
        ...,
        validation_alias=AliasChoices("date_range", "dateRange"),
        description="Inclusive date range",
    )
    filters: ReportFiltersSchema = Field(default_factory=ReportFiltersSchema)
    format: ReportFormat = Field(default=ReportFormat.JSON, description="Output format")

    def to_domain(self) -> ReportRequest:
        return ReportRequest(
            type=self.type,
            date_range=DateRange(start=self.date_range.start, end=self.date_range.end),
            filters=ReportFilters(
                course_ids=tuple(self.filters.course_ids),
                user_ids=tuple(self.filters.user_ids),
                instructor_ids=tuple(self.filters.instructor_ids),
            ),
            format=self.format,
        )


# ==============================================================================
# Response Schemas
# ==============================================================================


class ReportAcceptedResponse(BaseModel):
    """Returned immediately when a report request is accepted."""

    report_id: UUID
    status: ReportStatus


class ReportStatusResponse(BaseModel):
    """Lifecycle state of a report."""

    report_id: UUID
    type: ReportType
    format: ReportFormat
    status: ReportStatus
    created_at: datetime
    expires_at: datetime
    completed_at: datetime | None = None
    row_count: int | None = None
    error: str | None = None

    @classmethod
    def from_report(cls, report: Report) -> "ReportStatusResponse":
        return cls(
            report_id=report.id,
            type=report.request.type,
            format=report.request.format,
            status=report.status,
            created_at=report.created_at,
            expires_at=report.expires_at,
            completed_at=report.completed_at,
            row_count=report.row_count,
            error=report.error,
        )
