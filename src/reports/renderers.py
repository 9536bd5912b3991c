"""Row builders and output renderers for reports.

Row builders are pure functions of a ``ReportDataset``: they apply the date
range and id filters and return rows keyed by the report type's columns.
Renderers turn rows into the bytes of the requested format.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import orjson

from src.analytics.aggregator import MetricsAggregator
from src.analytics.models import RiskLevel, Scope
from src.analytics.risk import RiskClassifier
from src.entities.models import (
    Course,
    Enrollment,
    Feedback,
    FeedbackTarget,
    Module,
    ModuleProgress,
    User,
)

from .models import ReportFormat, ReportRequest, ReportType


Row = dict[str, Any]


COLUMNS: dict[ReportType, tuple[str, ...]] = {
    ReportType.ENROLLMENTS: (
        "enrollment_id",
        "user_id",
        "course_id",
        "course_title",
        "instructor_id",
        "status",
        "progress_percentage",
        "enrolled_at",
        "completed_at",
    ),
    ReportType.COURSE_PERFORMANCE: (
        "course_id",
        "course_title",
        "instructor_id",
        "course_status",
        "total_enrollments",
        "active_enrollments",
        "completed_enrollments",
        "dropped_enrollments",
        "total_students",
        "completion_rate",
        "average_progress",
        "feedback_count",
        "average_satisfaction",
        "average_time_spent",
    ),
    ReportType.USER_PROGRESS: (
        "user_id",
        "course_id",
        "module_id",
        "order_index",
        "started_at",
        "completed_at",
        "time_spent_seconds",
    ),
    ReportType.FEEDBACK: (
        "feedback_id",
        "user_id",
        "course_id",
        "target_type",
        "target_id",
        "rating",
        "comment",
        "created_at",
    ),
    ReportType.AT_RISK_USERS: (
        "user_id",
        "user_name",
        "risk_level",
        "score",
        "inactivity_score",
        "completion_rate",
        "normalized_rating",
        "days_since_login",
        "enrollment_count",
    ),
}


@dataclass(frozen=True)
class ReportDataset:
    """Entity collections a report is built from."""

    users: list[User]
    courses: list[Course]
    modules: list[Module]
    enrollments: list[Enrollment]
    progress: list[ModuleProgress]
    feedback: list[Feedback]

    def course_map(self) -> dict[UUID, Course]:
        return {c.id: c for c in self.courses}

    def module_map(self) -> dict[UUID, Module]:
        return {m.id: m for m in self.modules}


class _RowFilter:
    """Filter predicate built from a request's id lists."""

    def __init__(self, request: ReportRequest, courses: dict[UUID, Course]) -> None:
        filters = request.filters
        self._course_ids = set(filters.course_ids)
        self._user_ids = set(filters.user_ids)
        self._instructor_ids = set(filters.instructor_ids)
        self._courses = courses

    def course(self, course_id: UUID | None) -> bool:
        if course_id is None:
            return not (self._course_ids or self._instructor_ids)
        if self._course_ids and course_id not in self._course_ids:
            return False
        if self._instructor_ids:
            course = self._courses.get(course_id)
            return course is not None and course.instructor_id in self._instructor_ids
        return True

    def user(self, user_id: UUID) -> bool:
        return not self._user_ids or user_id in self._user_ids


# ==============================================================================
# Row builders
# ==============================================================================


def _enrollment_rows(request: ReportRequest, data: ReportDataset, now: datetime) -> list[Row]:
    courses = data.course_map()
    row_filter = _RowFilter(request, courses)
    rows = []
    for e in sorted(data.enrollments, key=lambda e: (e.enrolled_at, str(e.id))):
        if not (
            row_filter.course(e.course_id)
            and row_filter.user(e.user_id)
            and request.date_range.contains(e.enrolled_at)
        ):
            continue
        course = courses.get(e.course_id)
        rows.append(
            {
                "enrollment_id": e.id,
                "user_id": e.user_id,
                "course_id": e.course_id,
                "course_title": course.title if course else None,
                "instructor_id": course.instructor_id if course else None,
                "status": e.status,
                "progress_percentage": e.progress_percentage,
                "enrolled_at": e.enrolled_at,
                "completed_at": e.completed_at,
            }
        )
    return rows


def _course_performance_rows(
    request: ReportRequest, data: ReportDataset, now: datetime
) -> list[Row]:
    row_filter = _RowFilter(request, data.course_map())
    aggregator = MetricsAggregator()
    enrollments = [e for e in data.enrollments if row_filter.user(e.user_id)]
    progress = [p for p in data.progress if row_filter.user(p.user_id)]
    feedback = [f for f in data.feedback if row_filter.user(f.user_id)]

    rows = []
    for course in sorted(data.courses, key=lambda c: (c.title, str(c.id))):
        if not row_filter.course(course.id):
            continue
        snapshot = aggregator.aggregate(
            Scope.course(course.id),
            courses=[course],
            enrollments=enrollments,
            modules=data.modules,
            progress=progress,
            feedback=feedback,
            now=now,
            period=request.date_range.as_tuple(),
        )
        rows.append(
            {
                "course_id": course.id,
                "course_title": course.title,
                "instructor_id": course.instructor_id,
                "course_status": course.status,
                "total_enrollments": snapshot.total_enrollments,
                "active_enrollments": snapshot.active_enrollments,
                "completed_enrollments": snapshot.completed_enrollments,
                "dropped_enrollments": snapshot.dropped_enrollments,
                "total_students": snapshot.total_students,
                "completion_rate": snapshot.completion_rate,
                "average_progress": snapshot.average_progress,
                "feedback_count": snapshot.feedback_count,
                "average_satisfaction": snapshot.average_satisfaction,
                "average_time_spent": snapshot.average_time_spent,
            }
        )
    return rows


def _user_progress_rows(
    request: ReportRequest, data: ReportDataset, now: datetime
) -> list[Row]:
    row_filter = _RowFilter(request, data.course_map())
    modules = data.module_map()
    rows = []
    for p in sorted(data.progress, key=lambda p: (str(p.user_id), p.started_at)):
        module = modules.get(p.module_id)
        course_id = module.course_id if module else None
        if not (
            row_filter.course(course_id)
            and row_filter.user(p.user_id)
            and request.date_range.contains(p.started_at)
        ):
            continue
        rows.append(
            {
                "user_id": p.user_id,
                "course_id": course_id,
                "module_id": p.module_id,
                "order_index": module.order_index if module else None,
                "started_at": p.started_at,
                "completed_at": p.completed_at,
                "time_spent_seconds": p.time_spent_seconds,
            }
        )
    return rows


def _feedback_rows(request: ReportRequest, data: ReportDataset, now: datetime) -> list[Row]:
    row_filter = _RowFilter(request, data.course_map())
    modules = data.module_map()
    rows = []
    for f in sorted(data.feedback, key=lambda f: (f.created_at, str(f.id))):
        if f.target_type == FeedbackTarget.COURSE:
            course_id = f.target_id
        else:
            module = modules.get(f.target_id)
            course_id = module.course_id if module else None
        if not (
            row_filter.course(course_id)
            and row_filter.user(f.user_id)
            and request.date_range.contains(f.created_at)
        ):
            continue
        rows.append(
            {
                "feedback_id": f.id,
                "user_id": f.user_id,
                "course_id": course_id,
                "target_type": f.target_type,
                "target_id": f.target_id,
                "rating": f.rating,
                "comment": f.comment,
                "created_at": f.created_at,
            }
        )
    return rows


def _at_risk_rows(
    request: ReportRequest,
    data: ReportDataset,
    now: datetime,
    classifier: RiskClassifier | None = None,
) -> list[Row]:
    """Medium and high risk users, using only enrollments inside the filters."""
    classifier = classifier or RiskClassifier()
    row_filter = _RowFilter(request, data.course_map())
    enrollments = [
        e
        for e in data.enrollments
        if row_filter.course(e.course_id) and request.date_range.contains(e.enrolled_at)
    ]
    users = [u for u in data.users if row_filter.user(u.id)]
    names = {u.id: u.name for u in users}

    rows = []
    for a in classifier.classify_all(users, enrollments, data.feedback, now=now):
        if a.risk_level == RiskLevel.LOW:
            continue
        rows.append(
            {
                "user_id": a.user_id,
                "user_name": names.get(a.user_id, ""),
                "risk_level": a.risk_level,
                "score": a.score,
                "inactivity_score": a.inactivity_score,
                "completion_rate": a.completion_rate,
                "normalized_rating": a.normalized_rating,
                "days_since_login": a.days_since_login,
                "enrollment_count": a.enrollment_count,
            }
        )
    return rows


RowBuilder = Callable[[ReportRequest, ReportDataset, datetime], list[Row]]

ROW_BUILDERS: dict[ReportType, RowBuilder] = {
    ReportType.ENROLLMENTS: _enrollment_rows,
    ReportType.COURSE_PERFORMANCE: _course_performance_rows,
    ReportType.USER_PROGRESS: _user_progress_rows,
    ReportType.FEEDBACK: _feedback_rows,
    ReportType.AT_RISK_USERS: _at_risk_rows,
}


def build_rows(
    request: ReportRequest,
    data: ReportDataset,
    now: datetime,
    classifier: RiskClassifier | None = None,
) -> list[Row]:
    """Build the rows of a report."""
    if request.type == ReportType.AT_RISK_USERS:
        return _at_risk_rows(request, data, now, classifier)
    return ROW_BUILDERS[request.type](request, data, now)


# ==============================================================================
# Renderers
# ==============================================================================


def _cell(value: Any) -> Any:
    """Normalize a value to a JSON/CSV friendly scalar."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def render_json(
    request: ReportRequest, rows: list[Row], generated_at: datetime
) -> bytes:
    document = {
        "report_type": request.type.value,
        "generated_at": generated_at.isoformat(),
        "date_range": {
            "start": request.date_range.start.isoformat(),
            "end": request.date_range.end.isoformat(),
        },
        "filters": request.filters.to_dict(),
        "columns": list(COLUMNS[request.type]),
        "row_count": len(rows),
        "rows": [{k: _cell(v) for k, v in row.items()} for row in rows],
    }
    return orjson.dumps(document)


def render_csv(request: ReportRequest, rows: list[Row]) -> bytes:
    """Header row plus one line per row; None renders as an empty cell."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=COLUMNS[request.type])
    writer.writeheader()
    for row in rows:
        writer.writerow(
            {k: "" if row.get(k) is None else _cell(row[k]) for k in writer.fieldnames}
        )
    return buffer.getvalue().encode("utf-8")


def render(request: ReportRequest, rows: list[Row], generated_at: datetime) -> bytes:
    if request.format == ReportFormat.CSV:
        return render_csv(request, rows)
    return render_json(request, rows, generated_at)
