"""Platform entities consumed by the analytics core.

The records are owned by the transactional store (courses, enrollments,
progress, feedback). The analytics core only reads them, except for the
insert/upsert paths in ``EntityStore`` that back the ingestion hooks.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4


MIN_RATING = 1
MAX_RATING = 5


class UserRole(str, Enum):
    """Platform user role."""

    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


class CourseStatus(str, Enum):
    """Course publication status."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class EnrollmentStatus(str, Enum):
    """Course enrollment status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class FeedbackTarget(str, Enum):
    """What a feedback row rates."""

    COURSE = "course"
    MODULE = "module"


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (stores often return naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class User:
    """Platform account."""

    id: UUID
    role: UserRole = UserRole.STUDENT
    last_login_at: datetime | None = None
    is_active: bool = True
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", UserRole(self.role))
        object.__setattr__(self, "last_login_at", ensure_utc_aware(self.last_login_at))


@dataclass(frozen=True)
class Course:
    """Course in the catalog."""

    id: UUID
    instructor_id: UUID
    status: CourseStatus = CourseStatus.ACTIVE
    price: Decimal = Decimal(0)
    title: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", CourseStatus(self.status))
        if self.price < 0:
            msg = f"Course price must be >= 0, got {self.price}"
            raise ValueError(msg)


@dataclass(frozen=True)
class Enrollment:
    """Enrollment of a user in a course, unique per (user_id, course_id)."""

    user_id: UUID
    course_id: UUID
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    progress_percentage: Decimal = Decimal(0)
    enrolled_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", EnrollmentStatus(self.status))
        object.__setattr__(self, "progress_percentage", Decimal(self.progress_percentage))
        object.__setattr__(self, "enrolled_at", ensure_utc_aware(self.enrolled_at))
        object.__setattr__(self, "completed_at", ensure_utc_aware(self.completed_at))
        if not Decimal(0) <= self.progress_percentage <= Decimal(100):
            msg = f"progress_percentage must be 0-100, got {self.progress_percentage}"
            raise ValueError(msg)

    @property
    def is_completed(self) -> bool:
        return self.status == EnrollmentStatus.COMPLETED

    @property
    def is_dropped(self) -> bool:
        return self.status == EnrollmentStatus.DROPPED


@dataclass(frozen=True)
class Module:
    """Course module; order_index is unique within its course."""

    id: UUID
    course_id: UUID
    order_index: int
    estimated_duration_minutes: int = 0
    title: str = ""


@dataclass(frozen=True)
class ModuleProgress:
    """Progress of a user in a module, unique per (user_id, module_id)."""

    user_id: UUID
    module_id: UUID
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    time_spent_seconds: int = 0
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        object.__setattr__(self, "started_at", ensure_utc_aware(self.started_at))
        object.__setattr__(self, "completed_at", ensure_utc_aware(self.completed_at))
        if self.time_spent_seconds < 0:
            msg = f"time_spent_seconds must be >= 0, got {self.time_spent_seconds}"
            raise ValueError(msg)


@dataclass(frozen=True)
class Feedback:
    """Rating left on a course or a module. Insert-only."""

    user_id: UUID
    target_id: UUID
    rating: int
    target_type: FeedbackTarget = FeedbackTarget.COURSE
    comment: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        object.__setattr__(self, "target_type", FeedbackTarget(self.target_type))
        object.__setattr__(self, "created_at", ensure_utc_aware(self.created_at))
        if isinstance(self.rating, bool) or not isinstance(self.rating, int):
            msg = f"rating must be an integer, got {self.rating!r}"
            raise ValueError(msg)
        if not MIN_RATING <= self.rating <= MAX_RATING:
            msg = f"rating must be {MIN_RATING}-{MAX_RATING}, got {self.rating}"
            raise ValueError(msg)
