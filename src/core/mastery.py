"""
Core Mastery Module.

Pure mastery arithmetic shared by the tracker, the achievement rules and the
recommendation scorer. Nothing here touches the database.

Design:
- MasteryLevel: Enum for categorizing mastery scores
- compute_step / apply_step: the per-session mastery increment policy
- subject_mean: arithmetic mean over a subject's progress records
- calculate_days_since: staleness in fractional days
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

from src.core.policy import EnginePolicy


class MasteryLevel(str, Enum):
    """
    Mastery level categorization for progress displays.
    """

    NOT_STARTED = "not_started"  # 0%
    NOVICE = "novice"  # 1-39%
    DEVELOPING = "developing"  # 40-59%
    PROFICIENT = "proficient"  # 60-79%
    MASTERED = "mastered"  # 80-100%

    @classmethod
    def from_score(cls, score: float) -> MasteryLevel:
        """
        Convert a 0-1 mastery score to a level.

        Args:
            score: Mastery score between 0 and 1

        Returns:
            Corresponding MasteryLevel
        """
        if score <= 0:
            return cls.NOT_STARTED
        elif score < 0.4:
            return cls.NOVICE
        elif score < 0.6:
            return cls.DEVELOPING
        elif score < 0.8:
            return cls.PROFICIENT
        else:
            return cls.MASTERED

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.replace("_", " ").title()

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryLevel.NOT_STARTED: "dim",
            MasteryLevel.NOVICE: "red",
            MasteryLevel.DEVELOPING: "yellow",
            MasteryLevel.PROFICIENT: "cyan",
            MasteryLevel.MASTERED: "green",
        }[self]


def clamp_mastery(value: float) -> float:
    """Clamp a mastery value into [0, 1]."""
    return min(1.0, max(0.0, value))


def compute_step(
    policy: EnginePolicy,
    problems_attempted: int,
    problems_correct: int,
) -> float:
    """
    Mastery increment for one completed session.

    flat: the configured step regardless of accuracy.
    accuracy_weighted: step x (correct / attempted); sessions without
    problems get the full step so pure-reading sessions still count.
    """
    if policy.mastery_policy == "accuracy_weighted" and problems_attempted > 0:
        accuracy = min(problems_correct, problems_attempted) / problems_attempted
        return policy.mastery_step * max(0.0, accuracy)
    return policy.mastery_step


def apply_step(current: float, step: float) -> float:
    """Add a step to the current mastery, preserving the [0, 1] bound."""
    return clamp_mastery(current + step)


def subject_mean(levels: Iterable[float]) -> float | None:
    """
    Arithmetic mean of topic mastery levels.

    Returns None for an empty subject instead of dividing by zero.
    """
    values = list(levels)
    if not values:
        return None
    return sum(values) / len(values)


def subject_means(records: Iterable[tuple[str, float]]) -> dict[str, float]:
    """Group (subject_id, mastery) pairs into per-subject means."""
    grouped: dict[str, list[float]] = defaultdict(list)
    for subject_id, level in records:
        grouped[subject_id].append(level)
    return {
        subject_id: mean
        for subject_id, levels in grouped.items()
        if (mean := subject_mean(levels)) is not None
    }


def calculate_days_since(last_practiced: datetime | None, now: datetime | None = None) -> float | None:
    """
    Calculate days elapsed since a practice.

    Args:
        last_practiced: Timestamp of last practice (can be naive UTC or aware)
        now: Current time (defaults to UTC now)

    Returns:
        Days elapsed as float, None if never practiced
    """
    if last_practiced is None:
        return None

    if now is None:
        now = datetime.now(UTC)

    # Naive timestamps are stored as UTC
    if last_practiced.tzinfo is None:
        last_practiced = last_practiced.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    delta = now - last_practiced
    return max(0.0, delta.total_seconds() / 86400.0)


def to_storage_time(value: datetime) -> datetime:
    """Normalize a timestamp to naive UTC, the form persisted in the store."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def format_progress_bar(score: float, width: int = 10) -> str:
    """
    Format a text progress bar.

    Args:
        score: Score 0-1
        width: Character width

    Returns:
        String like "████████░░"
    """
    filled = int(clamp_mastery(score) * width)
    empty = width - filled
    return "█" * filled + "░" * empty
