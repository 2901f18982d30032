"""
Achievement Condition Rules.

Each condition kind is its own pydantic model with a single contract:

    measure(stats, trigger) -> (current, target)
    is_satisfied(stats, trigger) -> current >= target

Catalog JSON is validated into these models through a discriminated union on
"kind" (legacy catalogs use "type"). An unknown kind is a ConfigurationError
at catalog load, never a silent "not satisfied" at runtime.

Adding a kind: define a new rule class and add it to AchievementCondition.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    TypeAdapter,
    ValidationError,
)

from src.adaptive.models import AggregateStats, SessionOutcome
from src.core.errors import ConfigurationError


class ConditionRule(BaseModel):
    """Base class for all condition kinds."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    def measure(
        self, stats: AggregateStats, trigger: SessionOutcome | None = None
    ) -> tuple[float, float]:
        raise NotImplementedError

    def is_satisfied(self, stats: AggregateStats, trigger: SessionOutcome | None = None) -> bool:
        current, target = self.measure(stats, trigger)
        return current >= target


class FirstSessionCondition(ConditionRule):
    kind: Literal["first_session"] = "first_session"

    def measure(self, stats, trigger=None):
        return float(stats.sessions_count), 1.0


class SessionCountCondition(ConditionRule):
    kind: Literal["session_count"] = "session_count"
    count: PositiveInt

    def measure(self, stats, trigger=None):
        return float(stats.sessions_count), float(self.count)


class StreakCondition(ConditionRule):
    kind: Literal["streak"] = "streak"
    days: PositiveInt

    def measure(self, stats, trigger=None):
        # A run completed by a late past day counts once it has been reached
        reached = max(stats.current_streak, stats.longest_streak)
        return float(reached), float(self.days)


class ProblemsSolvedCondition(ConditionRule):
    kind: Literal["problems_solved"] = "problems_solved"
    count: PositiveInt

    def measure(self, stats, trigger=None):
        return float(stats.problems_solved), float(self.count)


class PerfectSessionCondition(ConditionRule):
    """
    Judged only on the session that triggered the evaluation, so an earlier
    imperfect session can never block the badge.
    """

    kind: Literal["perfect_session"] = "perfect_session"

    def measure(self, stats, trigger=None):
        return (1.0 if trigger is not None and trigger.is_perfect else 0.0), 1.0


class TimeSpentCondition(ConditionRule):
    kind: Literal["time_spent"] = "time_spent"
    minutes: PositiveInt

    def measure(self, stats, trigger=None):
        return float(stats.total_time_minutes), float(self.minutes)


class TopicsMasteredCondition(ConditionRule):
    kind: Literal["topics_mastered"] = "topics_mastered"
    count: PositiveInt

    def measure(self, stats, trigger=None):
        return float(stats.topics_mastered), float(self.count)


class PointsEarnedCondition(ConditionRule):
    kind: Literal["points_earned"] = "points_earned"
    points: PositiveInt

    def measure(self, stats, trigger=None):
        return float(stats.points_earned), float(self.points)


class MasteryLevelCondition(ConditionRule):
    """
    Subject mean mastery x 100 reaches level. Without subject_id any subject
    counts; subjects with no progress records are skipped.
    """

    kind: Literal["mastery_level"] = "mastery_level"
    level: Annotated[float, Field(ge=0, le=100)]
    subject_id: str | None = Field(
        default=None, validation_alias=AliasChoices("subject_id", "subjectId")
    )

    def measure(self, stats, trigger=None):
        if self.subject_id is not None:
            mean = stats.subject_mastery.get(self.subject_id)
            best = mean if mean is not None else 0.0
        else:
            best = max(stats.subject_mastery.values(), default=0.0)
        # Rounded so 0.7 stored as 0.7000000001 / 0.6999999999 compares as 70
        return round(best * 100, 6), float(self.level)


class SubjectCompletedCondition(ConditionRule):
    """Every active topic of the subject is at the mastered level."""

    kind: Literal["subject_completed"] = "subject_completed"
    subject_id: str = Field(validation_alias=AliasChoices("subject_id", "subjectId"))

    def measure(self, stats, trigger=None):
        topics = stats.subject_topics.get(self.subject_id, [])
        if not topics:
            return 0.0, 1.0
        mastered = sum(
            1 for topic_id in topics
            if stats.topic_mastery.get(topic_id, 0.0) >= stats.mastered_level
        )
        return float(mastered), float(len(topics))


AchievementCondition = Annotated[
    Union[
        FirstSessionCondition,
        SessionCountCondition,
        StreakCondition,
        ProblemsSolvedCondition,
        PerfectSessionCondition,
        TimeSpentCondition,
        TopicsMasteredCondition,
        PointsEarnedCondition,
        MasteryLevelCondition,
        SubjectCompletedCondition,
    ],
    Field(discriminator="kind"),
]

CONDITION_KINDS: tuple[str, ...] = (
    "first_session",
    "session_count",
    "streak",
    "problems_solved",
    "perfect_session",
    "time_spent",
    "topics_mastered",
    "points_earned",
    "mastery_level",
    "subject_completed",
)

_condition_adapter: TypeAdapter[Any] = TypeAdapter(AchievementCondition)


def parse_condition(raw: Mapping[str, Any]) -> ConditionRule:
    """
    Validate a catalog condition into its rule object.

    Raises:
        ConfigurationError: unknown kind or malformed fields
    """
    data = dict(raw)
    if "kind" not in data and "type" in data:
        data["kind"] = data.pop("type")
    kind = data.get("kind")
    if kind not in CONDITION_KINDS:
        raise ConfigurationError(f"Unknown achievement condition kind: {kind!r}")
    try:
        return _condition_adapter.validate_python(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid {kind} condition {dict(raw)!r}: {location} {first.get('msg')}"
        ) from exc
