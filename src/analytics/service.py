"""Dashboard service: the admin analytics entry point.

Wires the entity store, aggregator, risk classifier, cache layer and
broadcaster together. Mutation hooks write through the entity store and
invalidate every scope the change affects; scopes with live subscribers are
recomputed in the background so subscribers receive the new state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID

import structlog

from src.entities.models import (
    Enrollment,
    Feedback,
    FeedbackTarget,
    ModuleProgress,
)
from src.entities.store import EntityNotFoundError, EntityStore

from .aggregator import MetricsAggregator
from .broadcaster import Subscription, UpdateBroadcaster
from .cache import CacheLayer
from .models import RiskLevel, Scope, affected_scopes
from .risk import RiskAssessment, RiskClassifier
from .schemas import (
    DashboardSnapshot,
    EnrollmentCreatedEvent,
    FeedbackCreatedEvent,
    ProgressUpdatedEvent,
)


logger = structlog.get_logger(__name__)

UserFilter = Literal["at_risk", "all"]

_AT_RISK_LEVELS = frozenset({RiskLevel.MEDIUM, RiskLevel.HIGH})


class ScopeNotFoundError(Exception):
    """Requested course scope does not exist."""

    def __init__(self, scope: Scope):
        self.scope = scope
        self.message = f"Unknown scope: {scope.key}"
        self.code = "scope_not_found"
        super().__init__(self.message)


class DashboardService:
    """Serves cached snapshots, risk views and mutation hooks."""

    def __init__(
        self,
        store: EntityStore,
        cache: CacheLayer,
        broadcaster: UpdateBroadcaster,
        aggregator: MetricsAggregator | None = None,
        classifier: RiskClassifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.broadcaster = broadcaster
        self.aggregator = aggregator or MetricsAggregator()
        self.classifier = classifier or RiskClassifier()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._refresh_tasks: set[asyncio.Task] = set()

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_snapshot(self, scope: Scope) -> DashboardSnapshot:
        """Get the (possibly cached) snapshot of a scope.

        Raises:
            ScopeNotFoundError: If the scope names an unknown course
        """
        if not scope.is_global and await self.store.get_course(scope.course_id) is None:
            raise ScopeNotFoundError(scope)
        return await self.cache.get(scope, lambda: self._compute(scope))

    async def open_stream(self, scope: Scope) -> tuple[Subscription, DashboardSnapshot]:
        """Subscribe to a scope and read its current snapshot.

        The subscription is registered before the read, so a mutation landing
        while the read computes schedules a refresh for this subscriber. The
        slot is emptied only when it holds the snapshot being returned.

        Raises:
            ScopeNotFoundError: If the scope names an unknown course
        """
        subscription = self.broadcaster.subscribe(scope)
        try:
            initial = await self.get_snapshot(scope)
        except BaseException:
            self.broadcaster.unsubscribe(subscription.subscriber_id)
            raise
        if subscription.pending is initial:
            subscription.take()
        return subscription, initial

    async def get_overview(self) -> DashboardSnapshot:
        return await self.get_snapshot(Scope.global_())

    async def get_course_analytics(self) -> list[DashboardSnapshot]:
        """Snapshots of every course; distinct scopes compute concurrently."""
        courses = await self.store.list_courses()
        return list(
            await asyncio.gather(
                *(self.get_snapshot(Scope.course(c.id)) for c in courses)
            )
        )

    async def get_user_analytics(
        self, user_filter: UserFilter = "at_risk"
    ) -> list[RiskAssessment]:
        """Classified users, riskiest first.

        ``at_risk`` keeps medium and high; ``all`` keeps every classified user.
        """
        users = await self.store.list_users()
        enrollments = await self.store.list_enrollments()
        feedback = await self.store.list_feedback()
        assessments = self.classifier.classify_all(
            users, enrollments, feedback, now=self._clock()
        )
        if user_filter == "at_risk":
            assessments = [a for a in assessments if a.risk_level in _AT_RISK_LEVELS]
        logger.debug(
            "users_classified", filter=user_filter, count=len(assessments)
        )
        return assessments

    async def _compute(self, scope: Scope) -> DashboardSnapshot:
        return await self.aggregator.load(scope, self.store, now=self._clock())

    # ==========================================================================
    # Mutation hooks
    # ==========================================================================

    async def record_enrollment(self, event: EnrollmentCreatedEvent) -> list[Scope]:
        enrollment = Enrollment(
            user_id=event.user_id,
            course_id=event.course_id,
            enrolled_at=event.enrolled_at or self._clock(),
        )
        await self.store.add_enrollment(enrollment)
        logger.info(
            "enrollment_recorded",
            user_id=str(event.user_id),
            course_id=str(event.course_id),
        )
        return await self.invalidate_course(event.course_id)

    async def record_feedback(self, event: FeedbackCreatedEvent) -> list[Scope]:
        course_id = await self._course_of_target(event.target_type, event.target_id)
        feedback = Feedback(
            user_id=event.user_id,
            target_type=event.target_type,
            target_id=event.target_id,
            rating=event.rating,
            comment=event.comment,
            created_at=self._clock(),
        )
        await self.store.add_feedback(feedback)
        logger.info(
            "feedback_recorded",
            user_id=str(event.user_id),
            target_type=event.target_type.value,
            target_id=str(event.target_id),
        )
        return await self.invalidate_course(course_id)

    async def record_progress(self, event: ProgressUpdatedEvent) -> list[Scope]:
        course_id = await self._course_of_target(FeedbackTarget.MODULE, event.module_id)
        now = self._clock()
        progress = ModuleProgress(
            user_id=event.user_id,
            module_id=event.module_id,
            started_at=now,
            completed_at=now if event.completed else None,
            time_spent_seconds=event.time_spent_seconds,
        )
        await self.store.upsert_module_progress(progress)
        logger.info(
            "progress_recorded",
            user_id=str(event.user_id),
            module_id=str(event.module_id),
            completed=event.completed,
        )
        return await self.invalidate_course(course_id)

    async def invalidate_course(self, course_id: UUID) -> list[Scope]:
        """Invalidate the course scope and the global scope."""
        scopes = list(affected_scopes(course_id))
        for scope in scopes:
            await self.cache.invalidate(scope)
        self._refresh_subscribed(scopes)
        return scopes

    async def _course_of_target(self, target_type: FeedbackTarget, target_id: UUID) -> UUID:
        if target_type == FeedbackTarget.COURSE:
            course = await self.store.get_course(target_id)
            if course is None:
                raise EntityNotFoundError("course", target_id)
            return course.id
        module = await self.store.get_module(target_id)
        if module is None:
            raise EntityNotFoundError("module", target_id)
        return module.course_id

    # ==========================================================================
    # Background refresh
    # ==========================================================================

    def _refresh_subscribed(self, scopes: Iterable[Scope]) -> None:
        for scope in scopes:
            if not self.broadcaster.has_subscribers(scope):
                continue
            task = asyncio.create_task(
                self._refresh(scope), name=f"dashboard-refresh:{scope.key}"
            )
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh(self, scope: Scope) -> None:
        try:
            await self.cache.get(scope, lambda: self._compute(scope))
        except Exception:
            logger.exception("dashboard_refresh_failed", scope=scope.key)

    async def wait_for_refreshes(self) -> None:
        """Wait until every scheduled background refresh has finished."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._refresh_tasks):
            task.cancel()
        await asyncio.gather(*self._refresh_tasks, return_exceptions=True)
        self._refresh_tasks.clear()
