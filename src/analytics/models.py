"""Aggregation scopes and risk levels.

A scope is the aggregation boundary: the whole platform or a single course.
Its string key (``global`` / ``course:<uuid>``) identifies cache entries and
subscription channels.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


GLOBAL_SCOPE_KEY = "global"
_COURSE_PREFIX = "course:"


@dataclass(frozen=True)
class Scope:
    """Aggregation boundary; ``course_id`` is None for the global view."""

    course_id: UUID | None = None

    @classmethod
    def global_(cls) -> "Scope":
        return cls()

    @classmethod
    def course(cls, course_id: UUID) -> "Scope":
        return cls(course_id=course_id)

    @classmethod
    def parse(cls, value: str) -> "Scope":
        """Parse a scope key or a bare course id.

        Accepts ``global``, ``course:<uuid>`` and ``<uuid>``.

        Raises:
            ValueError: If the value is not a valid scope.
        """
        value = value.strip()
        if value == GLOBAL_SCOPE_KEY:
            return cls.global_()
        if value.startswith(_COURSE_PREFIX):
            value = value[len(_COURSE_PREFIX) :]
        return cls.course(UUID(value))

    @property
    def is_global(self) -> bool:
        return self.course_id is None

    @property
    def key(self) -> str:
        if self.course_id is None:
            return GLOBAL_SCOPE_KEY
        return f"{_COURSE_PREFIX}{self.course_id}"

    def __str__(self) -> str:
        return self.key


def affected_scopes(course_id: UUID) -> tuple[Scope, Scope]:
    """Scopes whose snapshots change when data of a course changes."""
    return Scope.course(course_id), Scope.global_()


class RiskLevel(str, Enum):
    """Follow-up priority of a user."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
