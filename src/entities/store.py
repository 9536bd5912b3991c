"""Entity store interface and the in-memory implementation.

The production store lives behind the catalog/enrollment services; the
analytics core depends only on the ``EntityStore`` protocol. The in-memory
store is used for local development and the test suite and enforces the
uniqueness invariants the real store guarantees.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Protocol, runtime_checkable
from uuid import UUID

from .models import (
    Course,
    Enrollment,
    Feedback,
    FeedbackTarget,
    Module,
    ModuleProgress,
    User,
)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class EntityError(Exception):
    """Base entity store error."""

    def __init__(self, message: str, code: str = "entity_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class EntityNotFoundError(EntityError):
    """Referenced entity does not exist."""

    def __init__(self, kind: str, entity_id: UUID):
        super().__init__(f"Unknown {kind} id: {entity_id}", "entity_not_found")
        self.kind = kind
        self.entity_id = entity_id


class DuplicateEnrollmentError(EntityError):
    """User already enrolled in the course."""

    def __init__(self, user_id: UUID, course_id: UUID):
        super().__init__(
            f"User {user_id} is already enrolled in course {course_id}",
            "already_enrolled",
        )


# ==============================================================================
# Protocol
# ==============================================================================


@runtime_checkable
class EntityStore(Protocol):
    async def get_user(self, user_id: UUID) -> User | None: ...
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_module(self, module_id: UUID) -> Module | None: ...
    async def list_users(self) -> list[User]: ...
    async def list_courses(self) -> list[Course]: ...
    async def list_modules(self, course_id: UUID | None = None) -> list[Module]: ...
    async def list_enrollments(
        self, course_id: UUID | None = None, user_id: UUID | None = None
    ) -> list[Enrollment]: ...
    async def list_module_progress(
        self, module_ids: Iterable[UUID] | None = None
    ) -> list[ModuleProgress]: ...
    async def list_feedback(
        self, target_ids: Iterable[UUID] | None = None
    ) -> list[Feedback]: ...
    async def add_enrollment(self, enrollment: Enrollment) -> Enrollment: ...
    async def upsert_module_progress(self, progress: ModuleProgress) -> ModuleProgress: ...
    async def add_feedback(self, feedback: Feedback) -> Feedback: ...


# ==============================================================================
# In-memory implementation
# ==============================================================================


class InMemoryEntityStore:
    """Dict-backed store used in development and tests."""

    def __init__(self) -> None:
        self._users: dict[UUID, User] = {}
        self._courses: dict[UUID, Course] = {}
        self._modules: dict[UUID, Module] = {}
        self._enrollments: dict[tuple[UUID, UUID], Enrollment] = {}
        self._progress: dict[tuple[UUID, UUID], ModuleProgress] = {}
        self._feedback: list[Feedback] = []
        self._lock = asyncio.Lock()

    # -- seeding (catalog data is owned by other services) --------------------

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def add_course(self, course: Course) -> Course:
        self._courses[course.id] = course
        return course

    def add_module(self, module: Module) -> Module:
        for existing in self._modules.values():
            if (
                existing.course_id == module.course_id
                and existing.order_index == module.order_index
                and existing.id != module.id
            ):
                msg = (
                    f"order_index {module.order_index} already used in course "
                    f"{module.course_id}"
                )
                raise ValueError(msg)
        self._modules[module.id] = module
        return module

    def bulk_load(
        self,
        *,
        enrollments: Iterable[Enrollment] = (),
        progress: Iterable[ModuleProgress] = (),
        feedback: Iterable[Feedback] = (),
    ) -> None:
        """Load activity records without going through the async write path.

        Used to bootstrap from an export; references are not checked but the
        uniqueness keys are.
        """
        for enrollment in enrollments:
            key = (enrollment.user_id, enrollment.course_id)
            if key in self._enrollments:
                raise DuplicateEnrollmentError(*key)
            self._enrollments[key] = enrollment
        for row in progress:
            key = (row.user_id, row.module_id)
            if key in self._progress:
                msg = f"Duplicate progress for user {row.user_id} in module {row.module_id}"
                raise ValueError(msg)
            self._progress[key] = row
        self._feedback.extend(feedback)

    def clear(self) -> None:
        self._users.clear()
        self._courses.clear()
        self._modules.clear()
        self._enrollments.clear()
        self._progress.clear()
        self._feedback.clear()

    # -- reads ----------------------------------------------------------------

    async def get_user(self, user_id: UUID) -> User | None:
        return self._users.get(user_id)

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_module(self, module_id: UUID) -> Module | None:
        return self._modules.get(module_id)

    async def list_users(self) -> list[User]:
        return list(self._users.values())

    async def list_courses(self) -> list[Course]:
        return list(self._courses.values())

    async def list_modules(self, course_id: UUID | None = None) -> list[Module]:
        modules = [
            m
            for m in self._modules.values()
            if course_id is None or m.course_id == course_id
        ]
        return sorted(modules, key=lambda m: (str(m.course_id), m.order_index))

    async def list_enrollments(
        self, course_id: UUID | None = None, user_id: UUID | None = None
    ) -> list[Enrollment]:
        return [
            e
            for e in self._enrollments.values()
            if (course_id is None or e.course_id == course_id)
            and (user_id is None or e.user_id == user_id)
        ]

    async def list_module_progress(
        self, module_ids: Iterable[UUID] | None = None
    ) -> list[ModuleProgress]:
        if module_ids is None:
            return list(self._progress.values())
        wanted = set(module_ids)
        return [p for p in self._progress.values() if p.module_id in wanted]

    async def list_feedback(
        self, target_ids: Iterable[UUID] | None = None
    ) -> list[Feedback]:
        if target_ids is None:
            return list(self._feedback)
        wanted = set(target_ids)
        return [f for f in self._feedback if f.target_id in wanted]

    # -- writes ---------------------------------------------------------------

    async def add_enrollment(self, enrollment: Enrollment) -> Enrollment:
        async with self._lock:
            if enrollment.user_id not in self._users:
                raise EntityNotFoundError("user", enrollment.user_id)
            if enrollment.course_id not in self._courses:
                raise EntityNotFoundError("course", enrollment.course_id)
            key = (enrollment.user_id, enrollment.course_id)
            if key in self._enrollments:
                raise DuplicateEnrollmentError(*key)
            self._enrollments[key] = enrollment
            return enrollment

    async def upsert_module_progress(self, progress: ModuleProgress) -> ModuleProgress:
        async with self._lock:
            if progress.user_id not in self._users:
                raise EntityNotFoundError("user", progress.user_id)
            if progress.module_id not in self._modules:
                raise EntityNotFoundError("module", progress.module_id)
            key = (progress.user_id, progress.module_id)
            existing = self._progress.get(key)
            if existing is not None:
                # Keep the row identity and first start time on update
                progress = ModuleProgress(
                    id=existing.id,
                    user_id=progress.user_id,
                    module_id=progress.module_id,
                    started_at=existing.started_at,
                    completed_at=progress.completed_at,
                    time_spent_seconds=progress.time_spent_seconds,
                )
            self._progress[key] = progress
            return progress

    async def add_feedback(self, feedback: Feedback) -> Feedback:
        async with self._lock:
            if feedback.user_id not in self._users:
                raise EntityNotFoundError("user", feedback.user_id)
            targets = (
                self._courses
                if feedback.target_type == FeedbackTarget.COURSE
                else self._modules
            )
            if feedback.target_id not in targets:
                raise EntityNotFoundError(feedback.target_type.value, feedback.target_id)
            self._feedback.append(feedback)
            return feedback
