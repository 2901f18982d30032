"""
Integration Tests for the Session-End Flow.

Drives LearningEngine.handle_session_outcome against an in-memory SQLite
database seeded with the sample catalog:
1. Mastery is created / incremented / clamped
2. Replays and out-of-order events are reported, not raised
3. Streaks and milestones advance per local day
4. Achievements unlock exactly once
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from src.adaptive.models import OutcomeStatus
from src.db.models import LearningSessionRecord, StudentAchievementUnlock, StudentTopicProgress

pytestmark = pytest.mark.integration

DAY = datetime(2024, 3, 4, 15, 0)


def _unlock_count(scope, student_id="s1") -> int:
    with scope() as session:
        return session.execute(
            select(func.count()).select_from(StudentAchievementUnlock).where(
                StudentAchievementUnlock.student_id == student_id
            )
        ).scalar_one()


class TestFirstSession:
    def test_creates_progress_and_unlocks(self, engine, make_outcome):
        result = engine.handle_session_outcome(make_outcome(attempted=8, correct=8))

        assert result.status is OutcomeStatus.APPLIED
        assert result.progress.mastery_level == pytest.approx(0.1)
        assert result.progress.sessions_count == 1
        assert result.progress.total_time_minutes == 20
        assert {u.code for u in result.unlocks} == {"first_steps", "perfectionist"}
        assert result.streak.current_streak == 1
        assert result.streak.streak_continued is False
        assert result.achievement_error is None

    def test_imperfect_session_does_not_unlock_perfectionist(self, engine, make_outcome):
        result = engine.handle_session_outcome(make_outcome(attempted=8, correct=7))
        assert {u.code for u in result.unlocks} == {"first_steps"}

    def test_no_problems_is_not_perfect(self, engine, make_outcome):
        result = engine.handle_session_outcome(make_outcome(attempted=0, correct=0))
        assert "perfectionist" not in {u.code for u in result.unlocks}

    def test_later_perfect_session_still_unlocks(self, engine, make_outcome):
        engine.handle_session_outcome(make_outcome(attempted=8, correct=3))
        result = engine.handle_session_outcome(
            make_outcome(attempted=5, correct=5, at=DAY + timedelta(hours=1))
        )
        assert [u.code for u in result.unlocks] == ["perfectionist"]


class TestMasteryUpdates:
    def test_second_session_adds_step(self, engine, make_outcome):
        engine.handle_session_outcome(make_outcome())
        result = engine.handle_session_outcome(make_outcome(at=DAY + timedelta(minutes=30)))

        assert result.progress.mastery_level == pytest.approx(0.15)
        assert result.progress.sessions_count == 2
        assert result.progress.total_time_minutes == 40
        assert result.progress.problems_attempted == 20

    def test_mastery_clamped_at_one(self, engine, make_outcome):
        levels = []
        for i in range(25):
            result = engine.handle_session_outcome(make_outcome(at=DAY + timedelta(minutes=i)))
            levels.append(result.progress.mastery_level)
        assert all(0.0 <= level <= 1.0 for level in levels)
        assert levels[-1] == pytest.approx(1.0)
        assert result.progress.sessions_count == 25


class TestReplaySafety:
    def test_duplicate_session_id_ignored(self, engine, make_outcome, seeded_scope):
        outcome = make_outcome(session_id="sess-1")
        first = engine.handle_session_outcome(outcome)
        replay = engine.handle_session_outcome(outcome)

        assert first.status is OutcomeStatus.APPLIED
        assert replay.status is OutcomeStatus.DUPLICATE
        assert replay.progress.sessions_count == 1
        assert replay.unlocks == []
        with seeded_scope() as session:
            assert session.execute(select(func.count(LearningSessionRecord.id))).scalar_one() == 1

    def test_out_of_order_leaves_mastery(self, engine, make_outcome, seeded_scope):
        engine.handle_session_outcome(make_outcome(at=DAY))
        stale = engine.handle_session_outcome(make_outcome(at=DAY - timedelta(hours=2)))

        assert stale.status is OutcomeStatus.OUT_OF_ORDER
        assert stale.ok is True
        assert stale.progress.mastery_level == pytest.approx(0.1)
        assert stale.progress.sessions_count == 1
        assert stale.progress.out_of_order_count == 1
        assert stale.progress.last_practiced_at == DAY

        summary = engine.progress_summary("s1")
        assert summary["out_of_order_sessions"] == 1


class TestRejections:
    def test_unknown_student(self, engine, make_outcome):
        result = engine.handle_session_outcome(make_outcome(student_id="ghost"))
        assert result.status is OutcomeStatus.REJECTED
        assert "student" in result.message

    def test_unknown_topic(self, engine, make_outcome):
        result = engine.handle_session_outcome(make_outcome(topic_id="calculus"))
        assert result.status is OutcomeStatus.REJECTED

    def test_subject_mismatch(self, engine, make_outcome):
        result = engine.handle_session_outcome(make_outcome(topic_id="phonics", subject_id="math"))
        assert result.status is OutcomeStatus.REJECTED

    def test_rejection_writes_nothing(self, engine, make_outcome, seeded_scope):
        engine.handle_session_outcome(make_outcome(topic_id="calculus"))
        with seeded_scope() as session:
            assert session.execute(select(func.count(StudentTopicProgress.id))).scalar_one() == 0
            assert session.execute(select(func.count(LearningSessionRecord.id))).scalar_one() == 0


class TestStreakFlow:
    def test_three_day_milestone(self, engine, make_outcome):
        engine.handle_session_outcome(make_outcome(at=DAY))
        engine.handle_session_outcome(make_outcome(at=DAY + timedelta(days=1)))
        result = engine.handle_session_outcome(make_outcome(at=DAY + timedelta(days=2)))

        assert result.streak.streak_continued is True
        assert result.streak.current_streak == 3
        assert result.streak.milestone_reached is True
        assert result.streak.milestone == 3
        assert "on_fire" in {u.code for u in result.unlocks}

    def test_same_day_does_not_advance(self, engine, make_outcome):
        engine.handle_session_outcome(make_outcome(at=DAY))
        result = engine.handle_session_outcome(make_outcome(at=DAY + timedelta(hours=2)))
        assert result.streak.current_streak == 1
        assert result.streak.streak_continued is False
        assert result.streak.milestone_reached is False

    def test_late_session_completes_run(self, engine, make_outcome):
        engine.handle_session_outcome(make_outcome(at=DAY))
        engine.handle_session_outcome(
            make_outcome("phonics", subject_id="reading", at=DAY + timedelta(days=2))
        )
        result = engine.handle_session_outcome(make_outcome(at=DAY + timedelta(days=1)))

        assert result.status is OutcomeStatus.APPLIED
        assert result.streak.milestone == 3
        assert "on_fire" in {u.code for u in result.unlocks}
        info = engine.streak_info("s1", today=date(2024, 3, 6))
        assert info.current_streak == 3
        assert info.longest_streak == 3

    def test_gap_resets_streak(self, engine, make_outcome):
        for offset in (0, 1, 3):
            engine.handle_session_outcome(make_outcome(at=DAY + timedelta(days=offset)))
        assert engine.current_streak("s1", today=date(2024, 3, 7)) == 1
        assert engine.streak_info("s1", today=date(2024, 3, 7)).longest_streak == 2


class TestAchievementIsolation:
    def test_idempotent_reevaluation(self, engine, make_outcome, seeded_scope):
        engine.handle_session_outcome(make_outcome(attempted=4, correct=4))
        before = _unlock_count(seeded_scope)

        assert engine.check_achievements("s1", today=DAY.date()) == []
        assert engine.check_achievements("s1", today=DAY.date()) == []
        assert _unlock_count(seeded_scope) == before == 2

    def test_failure_does_not_block_session(self, engine, make_outcome, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("rules offline")

        monkeypatch.setattr(engine.catalog.evaluator, "check_achievements", boom)
        result = engine.handle_session_outcome(make_outcome())

        assert result.status is OutcomeStatus.APPLIED
        assert result.unlocks == []
        assert result.achievement_error == "rules offline"
        assert engine.progress_summary("s1")["total_sessions"] == 1

    def test_subject_completed(self, engine, make_outcome, seeded_scope):
        with seeded_scope() as session:
            for topic_id in ("phonics", "sight_words"):
                session.add(
                    StudentTopicProgress(
                        student_id="s1", subject_id="reading", topic_id=topic_id,
                        mastery_level=0.85, sessions_count=12,
                        last_practiced_at=DAY - timedelta(days=1),
                    )
                )
        unlocks = engine.check_achievements("s1", today=DAY.date())
        assert "reading_complete" in {u.code for u in unlocks}
        assert "subject_expert" in {u.code for u in unlocks}
