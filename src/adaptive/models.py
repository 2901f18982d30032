"""
Adaptive Engine Models.

Transient value objects flowing into and out of the engine. Persistent state
lives in src/db/models; nothing here is written to the store directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

# ============================================================================
# Enums
# ============================================================================


class OutcomeStatus(str, Enum):
    """Result of applying one SessionOutcome."""

    APPLIED = "applied"  # Mastery updated (or created)
    DUPLICATE = "duplicate"  # Same session_id already applied; nothing changed
    OUT_OF_ORDER = "out_of_order"  # Older than last practice; mastery untouched
    REJECTED = "rejected"  # Unknown student/topic/subject


class ReasonCode(str, Enum):
    """Which scoring signal dominated a recommendation."""

    NEXT_IN_PATH = "next_in_path"
    STRENGTHEN = "strengthen"
    PREREQUISITE = "prerequisite"
    EXPLORE = "explore"
    REVIEW = "review"
    LOCKED = "locked"

    @property
    def message(self) -> str:
        return {
            ReasonCode.NEXT_IN_PATH: "Next in your learning path",
            ReasonCode.STRENGTHEN: "Strengthen a weak area",
            ReasonCode.PREREQUISITE: "Prerequisite for an advanced topic",
            ReasonCode.EXPLORE: "Explore something new",
            ReasonCode.REVIEW: "Revisit before it fades",
            ReasonCode.LOCKED: "Finish the prerequisites to unlock",
        }[self]


# ============================================================================
# Inputs
# ============================================================================


@dataclass(frozen=True)
class SessionOutcome:
    """
    A finished learning session, produced by the session lifecycle.

    session_id is optional; when present, replays of the same session are
    detected and ignored.
    """

    student_id: str
    subject_id: str
    topic_id: str
    problems_attempted: int
    problems_correct: int
    duration_minutes: int
    points_earned: int
    timestamp: datetime
    session_id: str | None = None

    def __post_init__(self):
        for name in ("problems_attempted", "problems_correct", "duration_minutes", "points_earned"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.problems_correct > self.problems_attempted:
            raise ValueError("problems_correct cannot exceed problems_attempted")

    @property
    def is_perfect(self) -> bool:
        """All attempted problems were correct (and at least one was attempted)."""
        return self.problems_attempted > 0 and self.problems_correct == self.problems_attempted

    @property
    def accuracy(self) -> float | None:
        if self.problems_attempted == 0:
            return None
        return self.problems_correct / self.problems_attempted


@dataclass
class AggregateStats:
    """
    Freshly recomputed per-student statistics used by achievement rules.

    subject_mastery maps subject_id to mean topic mastery (0-1). Subjects
    without progress records are absent, never zero.
    """

    student_id: str
    sessions_count: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    problems_solved: int = 0
    total_time_minutes: int = 0
    points_earned: int = 0
    topics_mastered: int = 0
    subject_mastery: dict[str, float] = field(default_factory=dict)
    # topic_id -> mastery, used by subject-scoped rules
    topic_mastery: dict[str, float] = field(default_factory=dict)
    # subject_id -> active topic ids, used by subject_completed
    subject_topics: dict[str, list[str]] = field(default_factory=dict)
    mastered_level: float = 0.8


# ============================================================================
# Outputs
# ============================================================================


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only copy of a StudentTopicProgress row."""

    student_id: str
    subject_id: str
    topic_id: str
    mastery_level: float
    sessions_count: int
    total_time_minutes: int
    problems_attempted: int
    problems_correct: int
    last_practiced_at: datetime | None
    out_of_order_count: int = 0

    @property
    def accuracy(self) -> float | None:
        if not self.problems_attempted:
            return None
        return self.problems_correct / self.problems_attempted

    @classmethod
    def from_row(cls, row: Any) -> ProgressSnapshot:
        return cls(
            student_id=row.student_id,
            subject_id=row.subject_id,
            topic_id=row.topic_id,
            mastery_level=float(row.mastery_level),
            sessions_count=row.sessions_count,
            total_time_minutes=row.total_time_minutes,
            problems_attempted=row.problems_attempted,
            problems_correct=row.problems_correct,
            last_practiced_at=row.last_practiced_at,
            out_of_order_count=row.out_of_order_count,
        )


@dataclass(frozen=True)
class MasteryUpdate:
    """Result of MasteryTracker.update_mastery."""

    progress: ProgressSnapshot
    created: bool
    previous_mastery: float | None


@dataclass(frozen=True)
class StreakUpdate:
    """Result of recording a day's activity."""

    streak_continued: bool
    current_streak: int
    longest_streak: int
    milestone_reached: bool
    milestone: int | None = None
    activity_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "streakContinued": self.streak_continued,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "milestoneReached": self.milestone_reached,
            "milestone": self.milestone,
        }


@dataclass(frozen=True)
class StreakInfo:
    """Streak display state for a given day."""

    current_streak: int
    longest_streak: int
    streak_at_risk: bool
    active_today: bool
    today_minutes: int
    next_milestone: int | None
    days_to_next_milestone: int | None


@dataclass(frozen=True)
class UnlockEvent:
    """An achievement unlocked for the first time."""

    student_id: str
    achievement_id: str
    code: str
    name: str
    points_reward: int
    rarity: str
    unlocked_at: datetime


@dataclass(frozen=True)
class AchievementProgress:
    """How far a student is from an achievement."""

    achievement_id: str
    code: str
    unlocked: bool
    progress: int  # percent 0-100
    current: float
    target: float
    unlocked_at: datetime | None = None


@dataclass(frozen=True)
class Recommendation:
    """A ranked, explained suggestion of what to study next."""

    topic_id: str
    subject_id: str
    topic_name: str
    reason_code: ReasonCode
    priority: float
    reason: str
    is_unlocked: bool
    current_mastery: float | None = None
    unlock_path: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "topicId": self.topic_id,
            "subjectId": self.subject_id,
            "topicName": self.topic_name,
            "reasonCode": self.reason_code.value,
            "priority": self.priority,
            "reason": self.reason,
            "isUnlocked": self.is_unlocked,
            "currentMastery": self.current_mastery,
            "unlockPath": list(self.unlock_path),
        }


@dataclass(frozen=True)
class RecommendationResult:
    recommendations: list[Recommendation]
    total: int


@dataclass
class SessionOutcomeResult:
    """
    Structured result of the session-end flow.

    Recoverable errors are reported here instead of raised: status tells the
    caller what happened to the mastery update, achievement_error is set when
    the achievement step failed without blocking the rest of the flow.
    """

    status: OutcomeStatus
    progress: ProgressSnapshot | None = None
    streak: StreakUpdate | None = None
    unlocks: list[UnlockEvent] = field(default_factory=list)
    message: str | None = None
    achievement_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.APPLIED, OutcomeStatus.OUT_OF_ORDER)
