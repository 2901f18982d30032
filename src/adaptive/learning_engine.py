"""
Learning Engine.

Facade over the progress components. One SessionOutcome drives the whole
session-end flow:

    1. validate student / topic / subject          -> REJECTED on unknown ids
    2. record the outcome in the session ledger    -> DUPLICATE on replay
    3. MasteryTracker.update_mastery               -> OUT_OF_ORDER on stale events
    4. StreakCalculator.record_activity (local date)
    5. commit
    6. AchievementEvaluator on fresh stats, in its own transaction

Step 6 failing never undoes steps 1-5; the error is logged and reported on
the result.

The engine holds only read-only shared data (the Catalog and the policy) and
a transactional scope factory. All mutable state lives in the store, so one
instance can serve concurrent requests.
"""
from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from src.adaptive.catalog import Catalog, load_catalog
from src.adaptive.mastery_tracker import MasteryTracker
from src.adaptive.models import (
    AchievementProgress,
    OutcomeStatus,
    RecommendationResult,
    SessionOutcome,
    SessionOutcomeResult,
    StreakInfo,
    StreakUpdate,
    UnlockEvent,
)
from src.adaptive.recommendation_engine import RecommendationEngine
from src.adaptive.stats import collect_aggregate_stats
from src.adaptive.streak_calculator import StreakCalculator
from src.core.errors import NotFoundError, OutOfOrderEventError
from src.core.mastery import to_storage_time
from src.core.policy import EnginePolicy
from src.db.database import SessionScope
from src.db.models import LearningSessionRecord, Student
from src.db.utils import insert_if_absent


class LearningEngine:
    """
    Stateless progress engine.

    Build it with initialize() (or from_settings()); catalog problems raise
    ConfigurationError there instead of surfacing on the first request.
    """

    def __init__(self, catalog: Catalog, policy: EnginePolicy, scope: SessionScope):
        self.policy = policy
        self._scope = scope
        self.mastery = MasteryTracker(policy)
        self.streaks = StreakCalculator(policy)
        self._install(catalog)

    def _install(self, catalog: Catalog) -> None:
        self.catalog = catalog
        self.recommender = RecommendationEngine(catalog.graph, self.policy)

    @classmethod
    def initialize(cls, scope: SessionScope, policy: EnginePolicy | None = None) -> LearningEngine:
        """Load the catalog from the store and build the engine."""
        policy = policy or EnginePolicy()
        with scope() as session:
            catalog = load_catalog(session, policy)
        return cls(catalog, policy, scope)

    @classmethod
    def from_settings(cls) -> LearningEngine:
        """Engine wired to the configured database and policy."""
        from config import get_settings
        from src.db.database import session_scope

        return cls.initialize(session_scope, get_settings().get_engine_policy())

    def reload_catalog(self) -> Catalog:
        """Rebuild the catalog wholesale; the old one stays in use if this fails."""
        with self._scope() as session:
            catalog = load_catalog(session, self.policy)
        self._install(catalog)
        return catalog

    # ========================================================================
    # Students
    # ========================================================================

    def register_student(
        self,
        student_id: str,
        display_name: str | None = None,
        grade_level: int = 0,
        timezone: str | None = None,
    ) -> bool:
        """Create a student if absent. Returns True when a row was created."""
        with self._scope() as session:
            return insert_if_absent(
                session,
                Student,
                {
                    "id": student_id,
                    "display_name": display_name,
                    "grade_level": grade_level,
                    "timezone": timezone,
                },
                conflict_columns=("id",),
            )

    def _require_student(self, session: Session, student_id: str) -> Student:
        student = session.get(Student, student_id)
        if student is None:
            raise NotFoundError("student", student_id)
        return student

    def _validate_outcome(self, session: Session, outcome: SessionOutcome) -> Student:
        student = self._require_student(session, outcome.student_id)
        topic = self.catalog.graph.get(outcome.topic_id)
        if topic.subject_id != outcome.subject_id:
            raise NotFoundError("subject", f"{outcome.subject_id} (topic {outcome.topic_id})")
        return student

    # ========================================================================
    # Session-end flow
    # ========================================================================

    def handle_session_outcome(
        self, outcome: SessionOutcome, now: datetime | None = None
    ) -> SessionOutcomeResult:
        """
        Apply a finished session to mastery, streak and achievements.

        Args:
            outcome: The finished session
            now: Unlock timestamp for achievements (defaults to UTC now)

        Returns:
            SessionOutcomeResult; never raises for unknown ids, replays or
            out-of-order events
        """
        session_id = outcome.session_id or uuid4().hex
        status = OutcomeStatus.APPLIED
        message = None

        try:
            with self._scope() as session:
                student = self._validate_outcome(session, outcome)

                recorded = insert_if_absent(
                    session,
                    LearningSessionRecord,
                    {
                        "session_id": session_id,
                        "student_id": outcome.student_id,
                        "subject_id": outcome.subject_id,
                        "topic_id": outcome.topic_id,
                        "problems_attempted": outcome.problems_attempted,
                        "problems_correct": outcome.problems_correct,
                        "duration_minutes": outcome.duration_minutes,
                        "points_earned": outcome.points_earned,
                        "ended_at": to_storage_time(outcome.timestamp),
                        "status": OutcomeStatus.APPLIED.value,
                    },
                    conflict_columns=("session_id",),
                )
                if not recorded:
                    logger.info(f"Duplicate session outcome ignored: {session_id}")
                    return SessionOutcomeResult(
                        status=OutcomeStatus.DUPLICATE,
                        progress=self.mastery.get_progress(
                            session, outcome.student_id, outcome.topic_id
                        ),
                        message=f"Session {session_id} was already applied",
                    )

                try:
                    progress = self.mastery.update_mastery(session, outcome).progress
                except OutOfOrderEventError as exc:
                    status = OutcomeStatus.OUT_OF_ORDER
                    message = str(exc)
                    session.execute(
                        update(LearningSessionRecord)
                        .where(LearningSessionRecord.session_id == session_id)
                        .values(status=OutcomeStatus.OUT_OF_ORDER.value)
                        .execution_options(synchronize_session=False)
                    )
                    progress = self.mastery.get_progress(
                        session, outcome.student_id, outcome.topic_id
                    )

                activity_date = self.streaks.local_date(outcome.timestamp, student.timezone)
                streak = self.streaks.record_activity(
                    session,
                    outcome.student_id,
                    activity_date,
                    minutes=outcome.duration_minutes,
                    points=outcome.points_earned,
                )
        except NotFoundError as exc:
            logger.warning(f"Session outcome rejected: {exc}")
            return SessionOutcomeResult(status=OutcomeStatus.REJECTED, message=str(exc))

        result = SessionOutcomeResult(
            status=status, progress=progress, streak=streak, message=message
        )

        try:
            result.unlocks = self._evaluate_achievements(
                outcome.student_id, activity_date, trigger=outcome, now=now
            )
        except Exception as exc:  # Intentionally broad - achievements must not fail the session
            logger.exception(f"Achievement evaluation failed for student {outcome.student_id}")
            result.achievement_error = str(exc)

        return result

    def _evaluate_achievements(
        self,
        student_id: str,
        today: date | None,
        trigger: SessionOutcome | None = None,
        now: datetime | None = None,
    ) -> list[UnlockEvent]:
        with self._scope() as session:
            stats = collect_aggregate_stats(
                session, student_id, self.catalog.graph, self.policy, today
            )
            return self.catalog.evaluator.check_achievements(
                session, student_id, stats, trigger=trigger, now=now
            )

    # ========================================================================
    # Streaks
    # ========================================================================

    def record_activity(
        self, student_id: str, activity_date: date, minutes: int, points: int
    ) -> StreakUpdate:
        """
        Record activity outside a session outcome.

        Raises:
            NotFoundError: unknown student
        """
        with self._scope() as session:
            self._require_student(session, student_id)
            return self.streaks.record_activity(session, student_id, activity_date, minutes, points)

    def current_streak(self, student_id: str, today: date | None = None) -> int:
        with self._scope() as session:
            return self.streaks.current_streak(session, student_id, today)

    def streak_info(self, student_id: str, today: date | None = None) -> StreakInfo:
        with self._scope() as session:
            return self.streaks.streak_info(session, student_id, today)

    def weekly_engagement(self, student_id: str, today: date | None = None) -> dict[str, Any]:
        with self._scope() as session:
            return self.streaks.weekly_engagement(session, student_id, today)

    # ========================================================================
    # Achievements
    # ========================================================================

    def check_achievements(
        self,
        student_id: str,
        trigger: SessionOutcome | None = None,
        today: date | None = None,
        now: datetime | None = None,
    ) -> list[UnlockEvent]:
        """Evaluate achievements on demand. Safe to call repeatedly."""
        return self._evaluate_achievements(student_id, today, trigger=trigger, now=now)

    def achievement_progress(
        self, student_id: str, today: date | None = None
    ) -> list[AchievementProgress]:
        with self._scope() as session:
            stats = collect_aggregate_stats(
                session, student_id, self.catalog.graph, self.policy, today
            )
            return self.catalog.evaluator.student_progress(session, student_id, stats)

    # ========================================================================
    # Reads
    # ========================================================================

    def get_recommendations(
        self,
        student_id: str,
        subject_id: str | None = None,
        limit: int | None = None,
        include_prerequisites: bool = False,
        weak_topic_ids: tuple[str, ...] = (),
        weak_subject_ids: tuple[str, ...] = (),
        now: datetime | None = None,
    ) -> RecommendationResult:
        """
        Ranked next topics for a student from the last committed state.

        Unknown students and subjects yield an empty result rather than an
        exception.
        """
        try:
            with self._scope() as session:
                self._require_student(session, student_id)
                return self.recommender.get_recommendations(
                    session,
                    student_id,
                    subject_id=subject_id,
                    limit=limit,
                    include_prerequisites=include_prerequisites,
                    weak_topic_ids=weak_topic_ids,
                    weak_subject_ids=weak_subject_ids,
                    now=now or datetime.now(UTC),
                )
        except NotFoundError as exc:
            logger.warning(f"Recommendations unavailable: {exc}")
            return RecommendationResult(recommendations=[], total=0)

    def progress_summary(
        self, student_id: str, subject_id: str | None = None, now: datetime | None = None
    ) -> dict[str, Any]:
        """Progress totals, per-topic rows and per-subject mastery."""
        with self._scope() as session:
            summary = self.mastery.progress_summary(session, student_id, subject_id, now)
            summary["subject_mastery"] = self.mastery.subject_masteries(session, student_id)
            summary["out_of_order_sessions"] = session.execute(
                select(func.count(LearningSessionRecord.id)).where(
                    LearningSessionRecord.student_id == student_id,
                    LearningSessionRecord.status == OutcomeStatus.OUT_OF_ORDER.value,
                )
            ).scalar_one()
            return summary
