"""
Engine Policy.

Immutable policy constants injected into every engine component at startup.
Validation happens once, in __post_init__, so a bad deployment fails loudly
with ConfigurationError instead of producing skewed mastery or rankings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core.errors import ConfigurationError

MasteryPolicy = Literal["flat", "accuracy_weighted"]

DEFAULT_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 50, 100, 365)


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class RecommendationWeights:
    """
    Weights for the recommendation priority score.

    priority = readiness * [unlocked]
             + gap * gap_signal
             + recency * min(days_since_practice / recency_horizon_days, 1)
             + weakness * [weak area]

    gap_signal is 1 - mastery for attempted topics and new_topic_gap for
    topics the student has never practiced. recency is kept below gap so a
    stale but mastered-looking topic never outranks a real gap.
    """

    readiness: float = 0.30
    gap: float = 0.50
    recency: float = 0.10
    weakness: float = 0.25
    new_topic_gap: float = 0.9
    recency_horizon_days: float = 14.0
    weak_accuracy_threshold: float = 0.6
    weak_min_sessions: int = 2

    def __post_init__(self):
        for name in ("readiness", "gap", "recency", "weakness"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Recommendation weight {name} must be >= 0")
        if self.recency > self.gap:
            raise ConfigurationError("Recency weight must not exceed gap weight")
        _check_unit_interval("new_topic_gap", self.new_topic_gap)
        _check_unit_interval("weak_accuracy_threshold", self.weak_accuracy_threshold)
        if self.recency_horizon_days <= 0:
            raise ConfigurationError("recency_horizon_days must be positive")
        if self.weak_min_sessions < 1:
            raise ConfigurationError("weak_min_sessions must be at least 1")


@dataclass(frozen=True)
class EnginePolicy:
    """All numeric policy for mastery, streaks and recommendations."""

    mastery_threshold: float = 0.6
    initial_mastery: float = 0.1
    mastery_step: float = 0.05
    mastery_policy: MasteryPolicy = "flat"
    topic_mastered_level: float = 0.8
    streak_milestones: tuple[int, ...] = DEFAULT_MILESTONES
    default_timezone: str = "UTC"
    weights: RecommendationWeights = field(default_factory=RecommendationWeights)
    default_limit: int = 5
    max_limit: int = 20

    def __post_init__(self):
        _check_unit_interval("mastery_threshold", self.mastery_threshold)
        _check_unit_interval("initial_mastery", self.initial_mastery)
        _check_unit_interval("topic_mastered_level", self.topic_mastered_level)
        if not 0.0 < self.mastery_step <= 1.0:
            raise ConfigurationError(f"mastery_step must be within (0, 1], got {self.mastery_step}")
        if self.mastery_policy not in ("flat", "accuracy_weighted"):
            raise ConfigurationError(f"Unknown mastery_policy: {self.mastery_policy}")
        if any(days <= 0 for days in self.streak_milestones):
            raise ConfigurationError("Streak milestones must be positive day counts")
        # Sorted, de-duplicated milestones keep next-milestone lookups simple.
        object.__setattr__(
            self, "streak_milestones", tuple(sorted(set(self.streak_milestones)))
        )
        try:
            ZoneInfo(self.default_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown timezone: {self.default_timezone}") from exc
        if self.default_limit < 1 or self.max_limit < self.default_limit:
            raise ConfigurationError("Recommendation limits must satisfy 1 <= default <= max")

    def clamp_limit(self, limit: int | None) -> int:
        """Resolve a requested limit into [1, max_limit]."""
        if limit is None:
            return self.default_limit
        return max(1, min(int(limit), self.max_limit))
