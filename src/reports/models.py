"""Report domain models.

A report moves through ``pending -> generating -> ready | failed``. Only the
report store mutates a report, and only along the transitions listed in
``ALLOWED_TRANSITIONS``; terminal states have no way out.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from src.entities.models import ensure_utc_aware


class ReportType(str, Enum):
    """Kinds of report that can be generated."""

    ENROLLMENTS = "enrollments"
    COURSE_PERFORMANCE = "course_performance"
    USER_PROGRESS = "user_progress"
    FEEDBACK = "feedback"
    AT_RISK_USERS = "at_risk_users"


class ReportFormat(str, Enum):
    """Output formats with their media types."""

    JSON = "json"
    CSV = "csv"

    @property
    def media_type(self) -> str:
        if self is ReportFormat.CSV:
            return "text/csv; charset=utf-8"
        return "application/json"

    @property
    def extension(self) -> str:
        return self.value


class ReportStatus(str, Enum):
    """Report lifecycle status."""

    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.READY, ReportStatus.FAILED)


ALLOWED_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    # pending -> failed covers reports that expire before generation starts
    ReportStatus.PENDING: frozenset({ReportStatus.GENERATING, ReportStatus.FAILED}),
    ReportStatus.GENERATING: frozenset({ReportStatus.READY, ReportStatus.FAILED}),
    ReportStatus.READY: frozenset(),
    ReportStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class DateRange:
    """Inclusive window applied to each report type's event timestamp."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc_aware(self.start))
        object.__setattr__(self, "end", ensure_utc_aware(self.end))

    def contains(self, moment: datetime | None) -> bool:
        return moment is not None and self.start <= moment <= self.end

    def as_tuple(self) -> tuple[datetime, datetime]:
        return self.start, self.end


@dataclass(frozen=True)
class ReportFilters:
    """Entity id filters; an empty tuple means no restriction."""

    course_ids: tuple[UUID, ...] = ()
    user_ids: tuple[UUID, ...] = ()
    instructor_ids: tuple[UUID, ...] = ()

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "course_ids": [str(i) for i in self.course_ids],
            "user_ids": [str(i) for i in self.user_ids],
            "instructor_ids": [str(i) for i in self.instructor_ids],
        }


@dataclass(frozen=True)
class ReportRequest:
    """What to generate: type, date range, filters and output format."""

    type: ReportType
    date_range: DateRange
    filters: ReportFilters = field(default_factory=ReportFilters)
    format: ReportFormat = ReportFormat.JSON


@dataclass
class Report:
    """A generation job and, once ready, its artifact."""

    request: ReportRequest
    created_at: datetime
    expires_at: datetime
    status: ReportStatus = ReportStatus.PENDING
    payload: bytes | None = None
    content_type: str | None = None
    error: str | None = None
    row_count: int | None = None
    completed_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def filename(self) -> str:
        return f"{self.request.type.value}-{self.id}.{self.request.format.extension}"
