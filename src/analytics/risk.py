"""Risk classification of users for administrator follow-up.

Composite score (each component in [0, 1], higher = riskier):

    score = w_inactivity   * inactivity
          + w_completion   * (1 - completion_rate)
          + w_satisfaction * (1 - normalized_rating)

- inactivity rises linearly with days since last login and saturates at 1.0
  once the inactivity threshold is reached; a user who never logged in is 1.0
- normalized_rating maps the mean rating the user gave from [1, 5] to [0, 1]
- a user who gave no ratings has no satisfaction component; the remaining
  weights are renormalised instead of treating the missing rating as 0

Bands: score < medium -> low, score < high -> medium, otherwise high, so a
score equal to a cut point lands in the riskier band. Users without any
enrollment are not classified.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from src.entities.models import MAX_RATING, MIN_RATING, Enrollment, Feedback, User

from .models import RiskLevel


if TYPE_CHECKING:
    from src.config.settings import Settings


# Scores are rounded before banding so float noise never flips a band
_SCORE_PRECISION = 6
_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class RiskPolicy:
    """Weights and thresholds of the composite risk score."""

    inactivity_weight: float = 0.4
    completion_weight: float = 0.4
    satisfaction_weight: float = 0.2
    inactivity_threshold_days: int = 30
    medium_threshold: float = 0.33
    high_threshold: float = 0.66

    def __post_init__(self) -> None:
        weights = (
            self.inactivity_weight,
            self.completion_weight,
            self.satisfaction_weight,
        )
        if any(w < 0 for w in weights):
            msg = "Risk weights must be non-negative"
            raise ValueError(msg)
        if abs(sum(weights) - 1.0) > 1e-6:
            msg = f"Risk weights must sum to 1 (got {sum(weights)})"
            raise ValueError(msg)
        if self.inactivity_threshold_days <= 0:
            msg = "inactivity_threshold_days must be positive"
            raise ValueError(msg)
        if not 0 <= self.medium_threshold <= self.high_threshold <= 1:
            msg = "Cut points must satisfy 0 <= medium <= high <= 1"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: Settings) -> RiskPolicy:
        return cls(
            inactivity_weight=settings.risk_weight_inactivity,
            completion_weight=settings.risk_weight_completion,
            satisfaction_weight=settings.risk_weight_satisfaction,
            inactivity_threshold_days=settings.risk_inactivity_threshold_days,
            medium_threshold=settings.risk_medium_threshold,
            high_threshold=settings.risk_high_threshold,
        )


@dataclass(frozen=True)
class UserRiskSignals:
    """Aggregated inputs for one user."""

    user_id: UUID
    days_since_login: float | None  # None: never logged in
    completion_rate: float
    average_rating: float | None  # None: no ratings given
    enrollment_count: int


@dataclass(frozen=True)
class RiskAssessment:
    """Classification result for one user."""

    user_id: UUID
    risk_level: RiskLevel
    score: float
    inactivity_score: float
    completion_rate: float
    normalized_rating: float | None
    days_since_login: float | None
    enrollment_count: int

    @property
    def is_at_risk(self) -> bool:
        return self.risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH)


class RiskClassifier:
    """Scores users for follow-up priority under a RiskPolicy."""

    def __init__(self, policy: RiskPolicy | None = None) -> None:
        self.policy = policy or RiskPolicy()

    # ==========================================================================
    # Signals
    # ==========================================================================

    @staticmethod
    def signals_for(
        user: User,
        enrollments: Iterable[Enrollment],
        feedback: Iterable[Feedback],
        now: datetime,
    ) -> UserRiskSignals | None:
        """Aggregate the user's signals; None if the user has no enrollments."""
        own_enrollments = [e for e in enrollments if e.user_id == user.id]
        if not own_enrollments:
            return None

        completed = sum(1 for e in own_enrollments if e.is_completed)
        ratings = [f.rating for f in feedback if f.user_id == user.id]

        days_since_login = None
        if user.last_login_at is not None:
            elapsed = (now - user.last_login_at).total_seconds()
            days_since_login = max(elapsed, 0.0) / _SECONDS_PER_DAY

        return UserRiskSignals(
            user_id=user.id,
            days_since_login=days_since_login,
            completion_rate=completed / len(own_enrollments),
            average_rating=sum(ratings) / len(ratings) if ratings else None,
            enrollment_count=len(own_enrollments),
        )

    # ==========================================================================
    # Scoring
    # ==========================================================================

    def inactivity_score(self, days_since_login: float | None) -> float:
        if days_since_login is None:
            return 1.0
        return min(days_since_login / self.policy.inactivity_threshold_days, 1.0)

    @staticmethod
    def normalize_rating(average_rating: float | None) -> float | None:
        if average_rating is None:
            return None
        span = MAX_RATING - MIN_RATING
        return min(max((average_rating - MIN_RATING) / span, 0.0), 1.0)

    def band(self, score: float) -> RiskLevel:
        if score >= self.policy.high_threshold:
            return RiskLevel.HIGH
        if score >= self.policy.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def classify(self, signals: UserRiskSignals) -> RiskAssessment:
        """Compute the composite score and band of one user."""
        policy = self.policy
        inactivity = self.inactivity_score(signals.days_since_login)
        normalized_rating = self.normalize_rating(signals.average_rating)

        components = [
            (policy.inactivity_weight, inactivity),
            (policy.completion_weight, 1.0 - signals.completion_rate),
        ]
        if normalized_rating is not None:
            components.append((policy.satisfaction_weight, 1.0 - normalized_rating))

        total_weight = sum(weight for weight, _ in components)
        if total_weight == 0:
            score = 0.0
        else:
            score = sum(weight * value for weight, value in components) / total_weight
        score = round(min(max(score, 0.0), 1.0), _SCORE_PRECISION)

        return RiskAssessment(
            user_id=signals.user_id,
            risk_level=self.band(score),
            score=score,
            inactivity_score=round(inactivity, _SCORE_PRECISION),
            completion_rate=signals.completion_rate,
            normalized_rating=normalized_rating,
            days_since_login=signals.days_since_login,
            enrollment_count=signals.enrollment_count,
        )

    def classify_all(
        self,
        users: Iterable[User],
        enrollments: Iterable[Enrollment],
        feedback: Iterable[Feedback],
        now: datetime | None = None,
    ) -> list[RiskAssessment]:
        """Classify every user with enrollments, riskiest first."""
        now = now or datetime.now(UTC)

        enrollments_by_user: dict[UUID, list[Enrollment]] = defaultdict(list)
        for enrollment in enrollments:
            enrollments_by_user[enrollment.user_id].append(enrollment)
        feedback_by_user: dict[UUID, list[Feedback]] = defaultdict(list)
        for row in feedback:
            feedback_by_user[row.user_id].append(row)

        assessments = []
        for user in users:
            signals = self.signals_for(
                user,
                enrollments_by_user.get(user.id, []),
                feedback_by_user.get(user.id, []),
                now,
            )
            if signals is not None:
                assessments.append(self.classify(signals))

        return sorted(assessments, key=lambda a: (-a.score, str(a.user_id)))
