"""
Per-student progress models.

Student is the aggregate root: every row here is keyed by student_id and
written only by the engine. Uniqueness constraints carry the concurrency
guarantees:
- uq_progress_student_topic: one progress row per (student, topic)
- uq_daily_activity_student_date: one activity row per (student, date)
- uq_student_achievement: exactly-once unlock per (student, achievement)
- learning_sessions.session_id: replayed session-end events are ignored
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Student(Base):
    """A learner. Identity and authorization are verified upstream."""

    __tablename__ = "students"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    grade_level: Mapped[int] = mapped_column(Integer, default=0)
    timezone: Mapped[str | None] = mapped_column(Text)  # IANA name, e.g. "America/Chicago"
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<Student {self.id} grade={self.grade_level}>"


class StudentTopicProgress(Base):
    """
    Mastery state per student per topic.

    mastery_level is kept within [0, 1]; sessions_count and total_time_minutes
    only grow. last_practiced_at is naive UTC and never moves backwards.
    """

    __tablename__ = "student_topic_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )
    topic_id: Mapped[str] = mapped_column(
        ForeignKey("topics.id", ondelete="CASCADE"), nullable=False
    )

    mastery_level: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sessions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    problems_attempted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    problems_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_practiced_at: Mapped[datetime | None] = mapped_column()
    out_of_order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("student_id", "topic_id", name="uq_progress_student_topic"),
        Index("idx_progress_student_subject", "student_id", "subject_id"),
    )

    @property
    def accuracy(self) -> float | None:
        """Share of attempted problems answered correctly, None without attempts."""
        if not self.problems_attempted:
            return None
        return self.problems_correct / self.problems_attempted

    def __repr__(self) -> str:
        return (
            f"<StudentTopicProgress student={self.student_id} topic={self.topic_id} "
            f"mastery={self.mastery_level:.2f} sessions={self.sessions_count}>"
        )


class LearningSessionRecord(Base):
    """
    Ledger of applied session outcomes.

    session_id is the external session identity; inserting it first makes the
    whole session-end flow safe under at-least-once delivery.
    """

    __tablename__ = "learning_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)
    topic_id: Mapped[str] = mapped_column(Text, nullable=False)
    problems_attempted: Mapped[int] = mapped_column(Integer, default=0)
    problems_correct: Mapped[int] = mapped_column(Integer, default=0)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    ended_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(Text, default="applied")  # applied / out_of_order
    created_at: Mapped[datetime] = mapped_column(default=func.now())


class DailyActivityRecord(Base):
    """
    One row per student per local calendar day.

    streak_day is the row's position in its run of consecutive days
    (yesterday's streak + 1, or 1 after a gap). Same-day sessions only
    increment the counters.
    """

    __tablename__ = "daily_activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    minutes_learned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sessions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    __table_args__ = (
        UniqueConstraint("student_id", "activity_date", name="uq_daily_activity_student_date"),
    )

    def __repr__(self) -> str:
        return f"<DailyActivityRecord student={self.student_id} date={self.activity_date} streak={self.streak_day}>"


class StudentAchievementUnlock(Base):
    """An unlocked achievement. At most one row per (student, achievement)."""

    __tablename__ = "student_achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    achievement_id: Mapped[str] = mapped_column(
        ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    unlocked_at: Mapped[datetime] = mapped_column(nullable=False)
    progress_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    __table_args__ = (
        UniqueConstraint("student_id", "achievement_id", name="uq_student_achievement"),
    )
