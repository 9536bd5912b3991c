"""Scope aggregation of raw platform data into dashboard snapshots.

``MetricsAggregator.aggregate`` is a pure function of its inputs: it filters
the records to the scope, counts, and averages. Any mean or ratio whose
denominator is zero is reported as None instead of 0 or an exception.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.entities.models import (
    Course,
    Enrollment,
    EnrollmentStatus,
    Feedback,
    FeedbackTarget,
    Module,
    ModuleProgress,
)

from .models import Scope
from .schemas import DashboardSnapshot


if TYPE_CHECKING:
    from src.entities.store import EntityStore


logger = structlog.get_logger(__name__)

Period = tuple[datetime, datetime]


def _ratio(numerator: float, denominator: float) -> float | None:
    """Divide, bounded to [0, 1]; None when there is nothing to divide by."""
    if denominator == 0:
        return None
    return min(max(numerator / denominator, 0.0), 1.0)


def _mean(values: list[float]) -> float | None:
    """Arithmetic mean, None for an empty list."""
    if not values:
        return None
    return sum(values) / len(values)


def _in_period(moment: datetime | None, period: Period | None) -> bool:
    if period is None:
        return True
    if moment is None:
        return False
    start, end = period
    return start <= moment <= end


class MetricsAggregator:
    """Computes scoped numeric summaries from raw entity collections."""

    def aggregate(
        self,
        scope: Scope,
        *,
        courses: Iterable[Course],
        enrollments: Iterable[Enrollment],
        modules: Iterable[Module],
        progress: Iterable[ModuleProgress],
        feedback: Iterable[Feedback],
        now: datetime | None = None,
        period: Period | None = None,
    ) -> DashboardSnapshot:
        """Build the snapshot of a scope.

        Args:
            scope: Global or single-course boundary
            courses: Course records (filtered to the scope here)
            enrollments: Enrollment records
            modules: Module records, used to attach progress/feedback to courses
            progress: ModuleProgress records
            feedback: Feedback records (course- or module-targeted)
            now: Timestamp stamped on the snapshot
            period: Optional inclusive (start, end) window applied to
                    enrolled_at, started_at and created_at

        Returns:
            DashboardSnapshot for the scope
        """
        course_id = scope.course_id

        scoped_courses = [c for c in courses if course_id is None or c.id == course_id]
        scoped_modules = {
            m.id for m in modules if course_id is None or m.course_id == course_id
        }
        scoped_enrollments = [
            e
            for e in enrollments
            if (course_id is None or e.course_id == course_id)
            and _in_period(e.enrolled_at, period)
        ]
        scoped_progress = [
            p
            for p in progress
            if (course_id is None or p.module_id in scoped_modules)
            and _in_period(p.started_at, period)
        ]
        scoped_feedback = [
            f
            for f in feedback
            if self._feedback_in_scope(f, course_id, scoped_modules)
            and _in_period(f.created_at, period)
        ]

        status_counts: dict[EnrollmentStatus, int] = defaultdict(int)
        students: set[UUID] = set()
        for enrollment in scoped_enrollments:
            status_counts[enrollment.status] += 1
            if not enrollment.is_dropped:
                students.add(enrollment.user_id)

        # Time spent is summed per participant, then averaged across participants
        time_by_user: dict[UUID, int] = defaultdict(int)
        for row in scoped_progress:
            time_by_user[row.user_id] += row.time_spent_seconds

        total_enrollments = len(scoped_enrollments)
        completed = status_counts[EnrollmentStatus.COMPLETED]

        return DashboardSnapshot(
            scope=scope.key,
            course_id=course_id,
            total_courses=len(scoped_courses),
            total_students=len(students),
            total_enrollments=total_enrollments,
            active_enrollments=status_counts[EnrollmentStatus.ACTIVE],
            completed_enrollments=completed,
            dropped_enrollments=status_counts[EnrollmentStatus.DROPPED],
            completion_rate=_ratio(completed, total_enrollments),
            average_progress=_mean(
                [float(e.progress_percentage) for e in scoped_enrollments]
            ),
            feedback_count=len(scoped_feedback),
            average_satisfaction=_mean([float(f.rating) for f in scoped_feedback]),
            average_time_spent=_mean([float(t) for t in time_by_user.values()]),
            computed_at=now or datetime.now(UTC),
        )

    @staticmethod
    def _feedback_in_scope(
        feedback: Feedback, course_id: UUID | None, module_ids: set[UUID]
    ) -> bool:
        if course_id is None:
            return True
        if feedback.target_type == FeedbackTarget.COURSE:
            return feedback.target_id == course_id
        return feedback.target_id in module_ids

    async def load(
        self,
        scope: Scope,
        store: EntityStore,
        *,
        now: datetime | None = None,
        period: Period | None = None,
    ) -> DashboardSnapshot:
        """Fetch the scope's records from the store and aggregate them."""
        if scope.is_global:
            courses = await store.list_courses()
            modules = await store.list_modules()
            enrollments = await store.list_enrollments()
            progress = await store.list_module_progress()
            feedback = await store.list_feedback()
        else:
            course = await store.get_course(scope.course_id)
            courses = [course] if course is not None else []
            modules = await store.list_modules(course_id=scope.course_id)
            module_ids = [m.id for m in modules]
            enrollments = await store.list_enrollments(course_id=scope.course_id)
            progress = await store.list_module_progress(module_ids=module_ids)
            feedback = await store.list_feedback(
                target_ids=[scope.course_id, *module_ids]
            )

        snapshot = self.aggregate(
            scope,
            courses=courses,
            enrollments=enrollments,
            modules=modules,
            progress=progress,
            feedback=feedback,
            now=now,
            period=period,
        )
        logger.debug(
            "scope_aggregated",
            scope=scope.key,
            enrollments=snapshot.total_enrollments,
            feedback=snapshot.feedback_count,
        )
        return snapshot
