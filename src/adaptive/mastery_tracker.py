"""
Mastery Tracker.

Maintains StudentTopicProgress from session outcomes.

Policy (see EnginePolicy):
- First session for (student, topic): row created at initial_mastery (0.1)
- Later sessions: mastery += step, clamped to 1.0
  (flat step by default; accuracy_weighted scales it by session accuracy)
- sessions_count, total_time_minutes and problem counters always increment
- last_practiced_at never moves backwards; older outcomes are rejected as
  out-of-order and only bump out_of_order_count

Concurrency: the create is an insert-if-absent and the update is a single
conditional UPDATE, so concurrent outcomes for the same pair never lose an
increment and never race a read-modify-write.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from src.adaptive.models import MasteryUpdate, ProgressSnapshot, SessionOutcome
from src.core.errors import OutOfOrderEventError
from src.core.mastery import (
    MasteryLevel,
    calculate_days_since,
    compute_step,
    subject_mean,
    subject_means,
    to_storage_time,
)
from src.core.policy import EnginePolicy
from src.db.models import StudentTopicProgress
from src.db.utils import insert_if_absent


class MasteryTracker:
    """
    Stateless mastery service. Each call receives the request's session.
    """

    def __init__(self, policy: EnginePolicy | None = None):
        self.policy = policy or EnginePolicy()

    # ========================================================================
    # Writes
    # ========================================================================

    def update_mastery(self, session: Session, outcome: SessionOutcome) -> MasteryUpdate:
        """
        Apply one session outcome to the (student, topic) progress row.

        Args:
            session: Active transaction
            outcome: The finished session

        Returns:
            MasteryUpdate with the new progress state

        Raises:
            OutOfOrderEventError: outcome is older than the last recorded practice
        """
        practiced_at = to_storage_time(outcome.timestamp)

        created = insert_if_absent(
            session,
            StudentTopicProgress,
            {
                "student_id": outcome.student_id,
                "subject_id": outcome.subject_id,
                "topic_id": outcome.topic_id,
                "mastery_level": self.policy.initial_mastery,
                "sessions_count": 1,
                "total_time_minutes": outcome.duration_minutes,
                "problems_attempted": outcome.problems_attempted,
                "problems_correct": outcome.problems_correct,
                "last_practiced_at": practiced_at,
                "out_of_order_count": 0,
            },
            conflict_columns=("student_id", "topic_id"),
        )
        if created:
            progress = self._load(session, outcome.student_id, outcome.topic_id)
            logger.debug(
                f"Progress created: student={outcome.student_id} topic={outcome.topic_id} "
                f"mastery={progress.mastery_level:.2f}"
            )
            return MasteryUpdate(progress=progress, created=True, previous_mastery=None)

        previous = self._load(session, outcome.student_id, outcome.topic_id)
        step = compute_step(self.policy, outcome.problems_attempted, outcome.problems_correct)
        raised = StudentTopicProgress.mastery_level + step
        stmt = (
            update(StudentTopicProgress)
            .where(
                StudentTopicProgress.student_id == outcome.student_id,
                StudentTopicProgress.topic_id == outcome.topic_id,
                or_(
                    StudentTopicProgress.last_practiced_at.is_(None),
                    StudentTopicProgress.last_practiced_at <= practiced_at,
                ),
            )
            .values(
                mastery_level=case((raised >= 1.0, 1.0), else_=raised),
                sessions_count=StudentTopicProgress.sessions_count + 1,
                total_time_minutes=StudentTopicProgress.total_time_minutes + outcome.duration_minutes,
                problems_attempted=StudentTopicProgress.problems_attempted + outcome.problems_attempted,
                problems_correct=StudentTopicProgress.problems_correct + outcome.problems_correct,
                last_practiced_at=practiced_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)

        if result.rowcount == 0:
            session.execute(
                update(StudentTopicProgress)
                .where(
                    StudentTopicProgress.student_id == outcome.student_id,
                    StudentTopicProgress.topic_id == outcome.topic_id,
                )
                .values(out_of_order_count=StudentTopicProgress.out_of_order_count + 1)
                .execution_options(synchronize_session=False)
            )
            current = self._load(session, outcome.student_id, outcome.topic_id)
            logger.warning(
                f"Out-of-order outcome ignored: student={outcome.student_id} "
                f"topic={outcome.topic_id} at={practiced_at} last={current.last_practiced_at}"
            )
            raise OutOfOrderEventError(
                outcome.student_id, outcome.topic_id, practiced_at, current.last_practiced_at
            )

        progress = self._load(session, outcome.student_id, outcome.topic_id)
        logger.debug(
            f"Mastery updated: student={outcome.student_id} topic={outcome.topic_id} "
            f"{previous.mastery_level:.2f} -> {progress.mastery_level:.2f}"
        )
        return MasteryUpdate(
            progress=progress, created=False, previous_mastery=previous.mastery_level
        )

    def _load(self, session: Session, student_id: str, topic_id: str) -> ProgressSnapshot:
        row = session.execute(
            select(StudentTopicProgress)
            .where(
                StudentTopicProgress.student_id == student_id,
                StudentTopicProgress.topic_id == topic_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()
        return ProgressSnapshot.from_row(row)

    # ========================================================================
    # Reads
    # ========================================================================

    def get_progress(
        self, session: Session, student_id: str, topic_id: str
    ) -> ProgressSnapshot | None:
        row = session.execute(
            select(StudentTopicProgress).where(
                StudentTopicProgress.student_id == student_id,
                StudentTopicProgress.topic_id == topic_id,
            )
        ).scalar_one_or_none()
        return ProgressSnapshot.from_row(row) if row else None

    def list_progress(
        self, session: Session, student_id: str, subject_id: str | None = None
    ) -> list[ProgressSnapshot]:
        """All progress rows for a student, most recently practiced first."""
        stmt = select(StudentTopicProgress).where(StudentTopicProgress.student_id == student_id)
        if subject_id is not None:
            stmt = stmt.where(StudentTopicProgress.subject_id == subject_id)
        stmt = stmt.order_by(
            StudentTopicProgress.last_practiced_at.desc(), StudentTopicProgress.topic_id
        )
        return [ProgressSnapshot.from_row(row) for row in session.execute(stmt).scalars()]

    def mastery_map(
        self, session: Session, student_id: str, subject_id: str | None = None
    ) -> dict[str, float]:
        """topic_id -> mastery level for every topic the student has practiced."""
        stmt = select(StudentTopicProgress.topic_id, StudentTopicProgress.mastery_level).where(
            StudentTopicProgress.student_id == student_id
        )
        if subject_id is not None:
            stmt = stmt.where(StudentTopicProgress.subject_id == subject_id)
        return {topic_id: float(level) for topic_id, level in session.execute(stmt)}

    def subject_mastery(self, session: Session, student_id: str, subject_id: str) -> float | None:
        """Mean mastery across practiced topics of a subject; None if none practiced."""
        return subject_mean(self.mastery_map(session, student_id, subject_id).values())

    def subject_masteries(self, session: Session, student_id: str) -> dict[str, float]:
        """subject_id -> mean mastery for subjects with at least one progress row."""
        rows = session.execute(
            select(StudentTopicProgress.subject_id, StudentTopicProgress.mastery_level).where(
                StudentTopicProgress.student_id == student_id
            )
        )
        return subject_means((subject_id, float(level)) for subject_id, level in rows)

    def staleness_days(self, progress: ProgressSnapshot, now: datetime | None = None) -> float | None:
        """Days since the topic was last practiced."""
        return calculate_days_since(progress.last_practiced_at, now)

    def progress_summary(
        self,
        session: Session,
        student_id: str,
        subject_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Overall progress statistics for dashboards and reports.

        Returns:
            Dict with totals and a per-topic list (most recent first)
        """
        records = self.list_progress(session, student_id, subject_id)
        mastered_level = self.policy.topic_mastered_level
        total = len(records)
        mastered = sum(1 for r in records if r.mastery_level >= mastered_level)
        average = subject_mean(r.mastery_level for r in records)

        return {
            "total_topics": total,
            "mastered_topics": mastered,
            "in_progress_topics": sum(
                1 for r in records if 0 < r.mastery_level < mastered_level
            ),
            "average_mastery": round(average, 3) if average is not None else None,
            "total_time_minutes": sum(r.total_time_minutes for r in records),
            "total_sessions": sum(r.sessions_count for r in records),
            "progress_records": [
                {
                    "subject_id": r.subject_id,
                    "topic_id": r.topic_id,
                    "mastery_level": r.mastery_level,
                    "level": MasteryLevel.from_score(r.mastery_level).value,
                    "sessions_count": r.sessions_count,
                    "total_time_minutes": r.total_time_minutes,
                    "accuracy": r.accuracy,
                    "last_practiced_at": r.last_practiced_at,
                    "days_since_practice": self.staleness_days(r, now),
                }
                for r in records
            ],
        }
