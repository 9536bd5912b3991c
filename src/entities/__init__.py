"""Platform entities read by the analytics core.

This module provides:
- Frozen entity records (users, courses, modules, enrollments, progress, feedback)
- The EntityStore protocol the core reads through
- An in-memory store for development and tests
"""

from .models import (
    Course,
    CourseStatus,
    Enrollment,
    EnrollmentStatus,
    Feedback,
    FeedbackTarget,
    Module,
    ModuleProgress,
    User,
    UserRole,
)
from .store import (
    DuplicateEnrollmentError,
    EntityError,
    EntityNotFoundError,
    EntityStore,
    InMemoryEntityStore,
)


__all__ = [
    "Course",
    "CourseStatus",
    "DuplicateEnrollmentError",
    "Enrollment",
    "EnrollmentStatus",
    "EntityError",
    "EntityNotFoundError",
    "EntityStore",
    "Feedback",
    "FeedbackTarget",
    "InMemoryEntityStore",
    "Module",
    "ModuleProgress",
    "User",
    "UserRole",
]
