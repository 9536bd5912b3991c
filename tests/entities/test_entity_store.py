"""Tests for the in-memory entity store and entity invariants."""

from decimal import Decimal
from uuid import uuid4

import pytest

from src.entities.models import (
    Course,
    Enrollment,
    Feedback,
    FeedbackTarget,
    Module,
    ModuleProgress,
)
from src.entities.store import (
    DuplicateEnrollmentError,
    EntityNotFoundError,
    InMemoryEntityStore,
)


class TestEntityInvariants:
    """Validation performed when records are built."""

    def test_rating_bounds(self):
        with pytest.raises(ValueError, match="rating"):
            Feedback(user_id=uuid4(), target_id=uuid4(), rating=6)
        with pytest.raises(ValueError, match="rating"):
            Feedback(user_id=uuid4(), target_id=uuid4(), rating=0)

    def test_rating_must_be_integer(self):
        with pytest.raises(ValueError, match="integer"):
            Feedback(user_id=uuid4(), target_id=uuid4(), rating=4.5)

    def test_progress_percentage_bounds(self):
        with pytest.raises(ValueError, match="progress_percentage"):
            Enrollment(user_id=uuid4(), course_id=uuid4(), progress_percentage=Decimal(101))

    def test_negative_price(self):
        with pytest.raises(ValueError, match="price"):
            Course(id=uuid4(), instructor_id=uuid4(), price=Decimal("-1"))

    def test_negative_time_spent(self):
        with pytest.raises(ValueError, match="time_spent_seconds"):
            ModuleProgress(user_id=uuid4(), module_id=uuid4(), time_spent_seconds=-1)


class TestUniqueness:
    """Uniqueness keys enforced by the store."""

    @pytest.mark.asyncio
    async def test_duplicate_enrollment(self, store, seed):
        with pytest.raises(DuplicateEnrollmentError) as exc_info:
            await store.add_enrollment(
                Enrollment(user_id=seed.student_good_id, course_id=seed.course_a_id)
            )

        assert exc_info.value.code == "already_enrolled"

    def test_module_order_index_unique_per_course(self, store, seed):
        with pytest.raises(ValueError, match="order_index"):
            store.add_module(Module(id=uuid4(), course_id=seed.course_a_id, order_index=1))

        # Same index in another course is fine
        store.add_module(Module(id=uuid4(), course_id=seed.course_c_id, order_index=1))

    @pytest.mark.asyncio
    async def test_progress_upsert_keeps_row_identity(self, store, seed):
        before = await store.list_module_progress(module_ids=[seed.module_a1_id])
        original = next(p for p in before if p.user_id == seed.student_risky_id)

        updated = await store.upsert_module_progress(
            ModuleProgress(
                user_id=seed.student_risky_id,
                module_id=seed.module_a1_id,
                time_spent_seconds=900,
            )
        )

        assert updated.id == original.id
        assert updated.started_at == original.started_at
        assert updated.time_spent_seconds == 900
        assert len(await store.list_module_progress()) == 4

    def test_bulk_load_rejects_duplicates(self):
        store = InMemoryEntityStore()
        user_id, course_id = uuid4(), uuid4()

        with pytest.raises(DuplicateEnrollmentError):
            store.bulk_load(
                enrollments=[
                    Enrollment(user_id=user_id, course_id=course_id),
                    Enrollment(user_id=user_id, course_id=course_id),
                ]
            )


class TestReferences:
    """Writes referencing unknown entities are rejected."""

    @pytest.mark.asyncio
    async def test_enrollment_unknown_course(self, store, seed):
        with pytest.raises(EntityNotFoundError) as exc_info:
            await store.add_enrollment(
                Enrollment(user_id=seed.student_idle_id, course_id=uuid4())
            )

        assert exc_info.value.kind == "course"

    @pytest.mark.asyncio
    async def test_feedback_unknown_module(self, store, seed):
        with pytest.raises(EntityNotFoundError) as exc_info:
            await store.add_feedback(
                Feedback(
                    user_id=seed.student_good_id,
                    target_id=seed.course_a_id,
                    target_type=FeedbackTarget.MODULE,
                    rating=3,
                )
            )

        assert exc_info.value.kind == "module"

    @pytest.mark.asyncio
    async def test_progress_unknown_user(self, store, seed):
        with pytest.raises(EntityNotFoundError):
            await store.upsert_module_progress(
                ModuleProgress(user_id=uuid4(), module_id=seed.module_a1_id)
            )


class TestQueries:
    """Tests for filtered reads."""

    @pytest.mark.asyncio
    async def test_list_modules_ordered(self, store, seed):
        modules = await store.list_modules(course_id=seed.course_a_id)

        assert [m.id for m in modules] == [seed.module_a1_id, seed.module_a2_id]

    @pytest.mark.asyncio
    async def test_list_enrollments_by_user(self, store, seed):
        enrollments = await store.list_enrollments(user_id=seed.student_good_id)

        assert {e.course_id for e in enrollments} == {seed.course_a_id, seed.course_b_id}

    @pytest.mark.asyncio
    async def test_list_feedback_by_target(self, store, seed):
        feedback = await store.list_feedback(target_ids=[seed.module_a1_id])

        assert [f.rating for f in feedback] == [4]
