"""Tests for the dashboard service.

Tests cover:
- Cached snapshot reads and unknown scopes
- User risk views with the at_risk / all filters
- Mutation hooks: write-through, invalidation, subscriber refresh
"""

import asyncio
from uuid import uuid4

import pytest

from src.analytics.broadcaster import UpdateBroadcaster
from src.analytics.cache import CacheLayer, InMemoryCacheBackend
from src.analytics.models import RiskLevel, Scope
from src.analytics.schemas import (
    EnrollmentCreatedEvent,
    FeedbackCreatedEvent,
    ProgressUpdatedEvent,
)
from src.analytics.service import DashboardService, ScopeNotFoundError
from src.entities.models import FeedbackTarget
from src.entities.store import DuplicateEnrollmentError, EntityNotFoundError


@pytest.fixture
def broadcaster() -> UpdateBroadcaster:
    return UpdateBroadcaster()


@pytest.fixture
def cache(broadcaster: UpdateBroadcaster) -> CacheLayer:
    return CacheLayer(
        InMemoryCacheBackend(), ttl_seconds=300, on_recompute=broadcaster.publish
    )


@pytest.fixture
def service(store, seed, cache, broadcaster) -> DashboardService:
    return DashboardService(store=store, cache=cache, broadcaster=broadcaster)


class TestSnapshots:
    """Tests for snapshot reads."""

    @pytest.mark.asyncio
    async def test_overview(self, service):
        snapshot = await service.get_overview()

        assert snapshot.scope == "global"
        assert snapshot.total_enrollments == 4
        assert snapshot.completion_rate == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_unknown_course_scope(self, service):
        with pytest.raises(ScopeNotFoundError) as exc_info:
            await service.get_snapshot(Scope.course(uuid4()))

        assert exc_info.value.code == "scope_not_found"

    @pytest.mark.asyncio
    async def test_course_analytics_lists_every_course(self, service, seed):
        snapshots = await service.get_course_analytics()

        by_course = {s.course_id: s for s in snapshots}
        assert set(by_course) == {seed.course_a_id, seed.course_b_id, seed.course_c_id}
        assert by_course[seed.course_a_id].completion_rate == pytest.approx(0.5)
        assert by_course[seed.course_c_id].completion_rate is None

    @pytest.mark.asyncio
    async def test_repeated_reads_use_cache(self, service, cache):
        await service.get_overview()
        await service.get_overview()

        assert cache.generation(Scope.global_()) == 0
        assert not cache.is_computing(Scope.global_())


class TestUserAnalytics:
    """Tests for the risk views."""

    @pytest.mark.asyncio
    async def test_at_risk_filter(self, service, seed):
        assessments = await service.get_user_analytics("at_risk")

        assert {a.user_id for a in assessments} == {
            seed.student_risky_id,
            seed.student_never_id,
        }
        assert all(a.risk_level == RiskLevel.HIGH for a in assessments)

    @pytest.mark.asyncio
    async def test_all_filter_includes_low_and_excludes_unenrolled(self, service, seed):
        assessments = await service.get_user_analytics("all")

        user_ids = [a.user_id for a in assessments]
        assert len(user_ids) == 3
        assert user_ids[-1] == seed.student_good_id
        assert assessments[-1].risk_level == RiskLevel.LOW
        assert seed.student_idle_id not in user_ids
        assert seed.admin_id not in user_ids

    @pytest.mark.asyncio
    async def test_sorted_by_descending_score(self, service):
        assessments = await service.get_user_analytics("all")

        scores = [a.score for a in assessments]
        assert scores == sorted(scores, reverse=True)


class TestMutationHooks:
    """Tests for ingestion and invalidation."""

    @pytest.mark.asyncio
    async def test_enrollment_invalidates_course_and_global(self, service, seed, cache):
        before = await service.get_overview()

        scopes = await service.record_enrollment(
            EnrollmentCreatedEvent(user_id=seed.student_idle_id, course_id=seed.course_c_id)
        )
        after = await service.get_overview()

        assert scopes == [Scope.course(seed.course_c_id), Scope.global_()]
        assert cache.generation(Scope.global_()) == 1
        assert before.total_enrollments == 4
        assert after.total_enrollments == 5

    @pytest.mark.asyncio
    async def test_duplicate_enrollment_rejected_without_invalidation(
        self, service, seed, cache
    ):
        with pytest.raises(DuplicateEnrollmentError):
            await service.record_enrollment(
                EnrollmentCreatedEvent(
                    user_id=seed.student_good_id, course_id=seed.course_a_id
                )
            )

        assert cache.generation(Scope.global_()) == 0

    @pytest.mark.asyncio
    async def test_module_feedback_invalidates_its_course(self, service, seed):
        scopes = await service.record_feedback(
            FeedbackCreatedEvent(
                user_id=seed.student_risky_id,
                target_type=FeedbackTarget.MODULE,
                target_id=seed.module_a2_id,
                rating=2,
            )
        )
        snapshot = await service.get_snapshot(Scope.course(seed.course_a_id))

        assert Scope.course(seed.course_a_id) in scopes
        assert snapshot.feedback_count == 3
        assert snapshot.average_satisfaction == pytest.approx((5 + 4 + 2) / 3)

    @pytest.mark.asyncio
    async def test_feedback_on_unknown_target(self, service, seed):
        with pytest.raises(EntityNotFoundError):
            await service.record_feedback(
                FeedbackCreatedEvent(user_id=seed.student_good_id, target_id=uuid4(), rating=3)
            )

    @pytest.mark.asyncio
    async def test_progress_updates_time_spent(self, service, seed):
        await service.get_snapshot(Scope.course(seed.course_a_id))

        await service.record_progress(
            ProgressUpdatedEvent(
                user_id=seed.student_risky_id,
                module_id=seed.module_a2_id,
                time_spent_seconds=900,
                completed=True,
            )
        )
        snapshot = await service.get_snapshot(Scope.course(seed.course_a_id))

        # risky: 600 + 900, good: 1200 + 1800
        assert snapshot.average_time_spent == pytest.approx((1500 + 3000) / 2)

    @pytest.mark.asyncio
    async def test_progress_on_unknown_module(self, service, seed):
        with pytest.raises(EntityNotFoundError):
            await service.record_progress(
                ProgressUpdatedEvent(
                    user_id=seed.student_good_id, module_id=uuid4(), time_spent_seconds=1
                )
            )


class TestSubscriberRefresh:
    """Subscribed scopes are recomputed and pushed after a mutation."""

    @pytest.mark.asyncio
    async def test_subscriber_receives_fresh_snapshot(self, service, seed, broadcaster):
        subscription = broadcaster.subscribe(Scope.global_(), "admin-dashboard")
        await service.get_overview()
        subscription.take()

        await service.record_feedback(
            FeedbackCreatedEvent(
                user_id=seed.student_good_id, target_id=seed.course_b_id, rating=3
            )
        )
        await service.wait_for_refreshes()

        pushed = await subscription.next(timeout=1)
        assert pushed is not None
        assert pushed.feedback_count == 4

    @pytest.mark.asyncio
    async def test_unsubscribed_scopes_are_not_refreshed(self, service, seed, cache):
        await service.record_enrollment(
            EnrollmentCreatedEvent(user_id=seed.student_idle_id, course_id=seed.course_a_id)
        )
        await service.wait_for_refreshes()

        assert not cache.is_computing(Scope.global_())
        assert not cache.is_computing(Scope.course(seed.course_a_id))

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_refreshes(self, service, seed, broadcaster):
        broadcaster.subscribe(Scope.global_(), "admin-dashboard")
        await service.invalidate_course(seed.course_a_id)

        await service.aclose()

        await service.wait_for_refreshes()


class TestOpenStream:
    """Subscribing to a scope together with its initial snapshot."""

    @pytest.mark.asyncio
    async def test_initial_snapshot_not_repeated_in_slot(self, service, broadcaster):
        subscription, initial = await service.open_stream(Scope.global_())

        assert initial.feedback_count == 3
        assert subscription.pending is None
        assert broadcaster.subscribers(Scope.global_()) == [subscription]

    @pytest.mark.asyncio
    async def test_unknown_course_leaves_no_subscriber(self, service, broadcaster):
        with pytest.raises(ScopeNotFoundError):
            await service.open_stream(Scope.course(uuid4()))

        assert len(broadcaster) == 0

    @pytest.mark.asyncio
    async def test_mutation_during_initial_read_is_pushed(
        self, service, store, seed, monkeypatch
    ):
        list_feedback = store.list_feedback

        async def slow_list_feedback(*args, **kwargs):
            rows = await list_feedback(*args, **kwargs)
            await asyncio.sleep(0.05)
            return rows

        monkeypatch.setattr(store, "list_feedback", slow_list_feedback)

        opening = asyncio.create_task(service.open_stream(Scope.global_()))
        await asyncio.sleep(0.01)
        await service.record_feedback(
            FeedbackCreatedEvent(
                user_id=seed.student_good_id, target_id=seed.course_b_id, rating=3
            )
        )
        subscription, initial = await opening
        await service.wait_for_refreshes()

        assert initial.feedback_count == 3
        pushed = await subscription.next(timeout=1)
        assert pushed is not None
        assert pushed.feedback_count == 4
