"""Shared test fixtures.

The environment is pinned before any ``src`` import so the cached settings
never pick up a developer's .env (no Redis, no log files).
"""

import os


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_REQUESTS", "false")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("DASHBOARD_CACHE_BACKEND", "memory")

from collections.abc import Iterator  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.security import create_access_token  # noqa: E402
from src.entities.models import (  # noqa: E402
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
from src.entities.store import InMemoryEntityStore  # noqa: E402


# Services use the wall clock, so seeded timestamps are relative to it
NOW = datetime.now(UTC).replace(microsecond=0)


@dataclass(frozen=True)
class SeedData:
    """Ids of the seeded platform.

    - course_a: 2 modules, one active and one completed enrollment
    - course_b: 1 module, one active and one dropped enrollment
    - course_c: draft course without enrollments
    - student_risky: last login 40 days ago, nothing completed, no ratings
    - student_good: recent login, completed course_a, rated 5 and 4
    - student_never: never logged in, dropped course_b, rated 1
    - student_idle: no enrollments
    """

    admin_id: UUID
    instructor_a_id: UUID
    instructor_b_id: UUID
    student_risky_id: UUID
    student_good_id: UUID
    student_never_id: UUID
    student_idle_id: UUID
    course_a_id: UUID
    course_b_id: UUID
    course_c_id: UUID
    module_a1_id: UUID
    module_a2_id: UUID
    module_b1_id: UUID


def seed_store(store: InMemoryEntityStore, now: datetime = NOW) -> SeedData:
    """Populate a store with a small platform and return its ids."""
    seed = SeedData(
        admin_id=uuid4(),
        instructor_a_id=uuid4(),
        instructor_b_id=uuid4(),
        student_risky_id=uuid4(),
        student_good_id=uuid4(),
        student_never_id=uuid4(),
        student_idle_id=uuid4(),
        course_a_id=uuid4(),
        course_b_id=uuid4(),
        course_c_id=uuid4(),
        module_a1_id=uuid4(),
        module_a2_id=uuid4(),
        module_b1_id=uuid4(),
    )

    store.add_user(User(id=seed.admin_id, role=UserRole.ADMIN, last_login_at=now))
    store.add_user(User(id=seed.instructor_a_id, role=UserRole.INSTRUCTOR, name="Ana"))
    store.add_user(User(id=seed.instructor_b_id, role=UserRole.INSTRUCTOR, name="Bruno"))
    store.add_user(
        User(
            id=seed.student_risky_id,
            last_login_at=now - timedelta(days=40),
            name="Risky",
        )
    )
    store.add_user(
        User(id=seed.student_good_id, last_login_at=now - timedelta(days=1), name="Good")
    )
    store.add_user(User(id=seed.student_never_id, last_login_at=None, name="Never"))
    store.add_user(User(id=seed.student_idle_id, last_login_at=now, name="Idle"))

    store.add_course(
        Course(
            id=seed.course_a_id,
            instructor_id=seed.instructor_a_id,
            price=Decimal("49.90"),
            title="Python Basics",
        )
    )
    store.add_course(
        Course(id=seed.course_b_id, instructor_id=seed.instructor_b_id, title="Data Science")
    )
    store.add_course(
        Course(
            id=seed.course_c_id,
            instructor_id=seed.instructor_a_id,
            status=CourseStatus.DRAFT,
            title="Upcoming",
        )
    )

    store.add_module(Module(id=seed.module_a1_id, course_id=seed.course_a_id, order_index=1))
    store.add_module(Module(id=seed.module_a2_id, course_id=seed.course_a_id, order_index=2))
    store.add_module(Module(id=seed.module_b1_id, course_id=seed.course_b_id, order_index=1))

    enrollments = [
        Enrollment(
            user_id=seed.student_risky_id,
            course_id=seed.course_a_id,
            progress_percentage=Decimal(10),
            enrolled_at=now - timedelta(days=60),
        ),
        Enrollment(
            user_id=seed.student_good_id,
            course_id=seed.course_a_id,
            status=EnrollmentStatus.COMPLETED,
            progress_percentage=Decimal(100),
            enrolled_at=now - timedelta(days=50),
            completed_at=now - timedelta(days=5),
        ),
        Enrollment(
            user_id=seed.student_good_id,
            course_id=seed.course_b_id,
            progress_percentage=Decimal(50),
            enrolled_at=now - timedelta(days=20),
        ),
        Enrollment(
            user_id=seed.student_never_id,
            course_id=seed.course_b_id,
            status=EnrollmentStatus.DROPPED,
            enrolled_at=now - timedelta(days=10),
        ),
    ]
    progress = [
        ModuleProgress(
            user_id=seed.student_risky_id,
            module_id=seed.module_a1_id,
            started_at=now - timedelta(days=55),
            time_spent_seconds=600,
        ),
        ModuleProgress(
            user_id=seed.student_good_id,
            module_id=seed.module_a1_id,
            started_at=now - timedelta(days=45),
            completed_at=now - timedelta(days=30),
            time_spent_seconds=1200,
        ),
        ModuleProgress(
            user_id=seed.student_good_id,
            module_id=seed.module_a2_id,
            started_at=now - timedelta(days=25),
            completed_at=now - timedelta(days=5),
            time_spent_seconds=1800,
        ),
        ModuleProgress(
            user_id=seed.student_good_id,
            module_id=seed.module_b1_id,
            started_at=now - timedelta(days=15),
            time_spent_seconds=300,
        ),
    ]
    feedback = [
        Feedback(
            user_id=seed.student_good_id,
            target_id=seed.course_a_id,
            rating=5,
            created_at=now - timedelta(days=5),
        ),
        Feedback(
            user_id=seed.student_good_id,
            target_id=seed.module_a1_id,
            target_type=FeedbackTarget.MODULE,
            rating=4,
            created_at=now - timedelta(days=30),
        ),
        Feedback(
            user_id=seed.student_never_id,
            target_id=seed.course_b_id,
            rating=1,
            comment="Not for me",
            created_at=now - timedelta(days=9),
        ),
    ]

    store.bulk_load(enrollments=enrollments, progress=progress, feedback=feedback)

    return seed


# ==============================================================================
# Store fixtures
# ==============================================================================


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def seed(store: InMemoryEntityStore) -> SeedData:
    return seed_store(store)


# ==============================================================================
# App fixtures
# ==============================================================================


@pytest.fixture
def app(store: InMemoryEntityStore, seed: SeedData) -> FastAPI:
    from src.main import create_app

    application = create_app()
    # Picked up by the lifespan when the services are built
    application.state.entity_store = store
    return application


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _auth_headers(user_id: UUID, role: UserRole) -> dict[str, str]:
    token = create_access_token({"sub": str(user_id), "role": role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(seed: SeedData) -> dict[str, str]:
    return _auth_headers(seed.admin_id, UserRole.ADMIN)


@pytest.fixture
def student_headers(seed: SeedData) -> dict[str, str]:
    return _auth_headers(seed.student_good_id, UserRole.STUDENT)
