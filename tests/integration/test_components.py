"""
Integration Tests for the store-backed components used on their own:
StreakCalculator, MasteryTracker, AchievementEvaluator and insert_if_absent.
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from src.adaptive.achievement_evaluator import AchievementEvaluator, AchievementRule
from src.adaptive.achievement_rules import parse_condition
from src.adaptive.catalog import seed_catalog
from src.adaptive.mastery_tracker import MasteryTracker
from src.adaptive.models import AggregateStats
from src.adaptive.streak_calculator import StreakCalculator
from src.core.errors import OutOfOrderEventError
from src.core.policy import EnginePolicy
from src.db.database import make_session_factory
from src.db.models import (
    DailyActivityRecord,
    Student,
    StudentAchievementUnlock,
    StudentTopicProgress,
)
from src.db.utils import insert_if_absent

pytestmark = pytest.mark.integration

D = date(2024, 3, 4)  # Monday


class TestStreakCalculator:
    @pytest.fixture
    def streaks(self, policy):
        return StreakCalculator(policy)

    def test_record_and_continue(self, seeded_scope, streaks):
        with seeded_scope() as session:
            first = streaks.record_activity(session, "s1", D, minutes=10, points=5)
            second = streaks.record_activity(session, "s1", D + timedelta(days=1), 15, 5)
        assert first.streak_continued is False
        assert first.current_streak == 1
        assert second.streak_continued is True
        assert second.current_streak == 2
        assert second.longest_streak == 2

    def test_same_day_increments_counters(self, seeded_scope, streaks):
        with seeded_scope() as session:
            streaks.record_activity(session, "s1", D, minutes=10, points=5)
            streaks.record_activity(session, "s1", D, minutes=20, points=7)
        with seeded_scope() as session:
            record = session.execute(select(DailyActivityRecord)).scalar_one()
        assert record.minutes_learned == 30
        assert record.points_earned == 12
        assert record.sessions_count == 2
        assert record.streak_day == 1

    def test_milestone_only_on_first_reach(self, seeded_scope, streaks):
        with seeded_scope() as session:
            results = [
                streaks.record_activity(session, "s1", D + timedelta(days=i), 10, 0)
                for i in range(4)
            ]
            again = streaks.record_activity(session, "s1", D + timedelta(days=2), 5, 0)
        assert [r.milestone_reached for r in results] == [False, False, True, False]
        assert again.milestone_reached is False

    def test_longest_never_decreases(self, seeded_scope, streaks):
        with seeded_scope() as session:
            for i in (0, 1, 2):
                streaks.record_activity(session, "s1", D + timedelta(days=i), 10, 0)
            after_gap = streaks.record_activity(session, "s1", D + timedelta(days=5), 10, 0)
        assert after_gap.current_streak == 1
        assert after_gap.longest_streak == 3

    def test_late_day_joins_runs(self, seeded_scope, streaks):
        with seeded_scope() as session:
            streaks.record_activity(session, "s1", D, 10, 0)
            streaks.record_activity(session, "s1", D + timedelta(days=2), 10, 0)
            late = streaks.record_activity(session, "s1", D + timedelta(days=1), 10, 0)
            info = streaks.streak_info(session, "s1", today=D + timedelta(days=2))
        with seeded_scope() as session:
            streak_days = session.execute(
                select(DailyActivityRecord.streak_day).order_by(DailyActivityRecord.activity_date)
            ).scalars().all()

        assert streak_days == [1, 2, 3]
        assert late.longest_streak == 3
        assert late.milestone_reached is True
        assert late.milestone == 3
        assert info.current_streak == 3
        assert info.longest_streak == 3

    def test_late_day_without_neighbours(self, seeded_scope, streaks):
        with seeded_scope() as session:
            streaks.record_activity(session, "s1", D + timedelta(days=5), 10, 0)
            late = streaks.record_activity(session, "s1", D, 10, 0)
        assert late.current_streak == 1
        assert late.longest_streak == 1
        assert late.milestone_reached is False

    def test_streak_info_at_risk(self, seeded_scope, streaks):
        with seeded_scope() as session:
            streaks.record_activity(session, "s1", D, 10, 0)
            streaks.record_activity(session, "s1", D + timedelta(days=1), 10, 0)
            info = streaks.streak_info(session, "s1", today=D + timedelta(days=2))
        assert info.current_streak == 2
        assert info.streak_at_risk is True
        assert info.active_today is False
        assert info.next_milestone == 3
        assert info.days_to_next_milestone == 1

    def test_weekly_engagement(self, seeded_scope, streaks):
        with seeded_scope() as session:
            streaks.record_activity(session, "s1", D - timedelta(days=2), 50, 0)  # previous week
            streaks.record_activity(session, "s1", D - timedelta(days=1), 20, 0)  # Sunday
            streaks.record_activity(session, "s1", D, 40, 0)
            week = streaks.weekly_engagement(session, "s1", today=D)
        assert week["week_start"] == "2024-03-03"
        assert week["total_minutes"] == 60
        assert week["days_active"] == 2
        assert week["average_minutes"] == 30
        assert [a["date"] for a in week["activities"]] == ["2024-03-03", "2024-03-04"]


class TestMasteryTracker:
    @pytest.fixture
    def file_scope(self, tmp_path, sample_catalog):
        """File-backed database so two sessions hold separate connections."""
        engine, scope = make_session_factory(f"sqlite:///{tmp_path / 'progress.db'}")
        with scope() as session:
            seed_catalog(session, sample_catalog)
            session.add(Student(id="s1", display_name="Ada", grade_level=3, timezone="UTC"))
        yield scope
        engine.dispose()

    def test_interleaved_updates_both_apply(self, file_scope, make_outcome, policy):
        tracker = MasteryTracker(policy)
        with file_scope() as session:
            tracker.update_mastery(session, make_outcome(at=datetime(2024, 3, 4)))

        with file_scope() as first, file_scope() as second:
            # Both transactions see mastery 0.1 before either writes
            seen_first = first.execute(select(StudentTopicProgress)).scalar_one()
            seen_second = second.execute(select(StudentTopicProgress)).scalar_one()
            assert seen_first.mastery_level == pytest.approx(0.1)
            assert seen_second.mastery_level == pytest.approx(0.1)

            tracker.update_mastery(first, make_outcome(at=datetime(2024, 3, 5)))
            first.commit()
            update = tracker.update_mastery(second, make_outcome(at=datetime(2024, 3, 6)))

        assert update.previous_mastery == pytest.approx(0.15)
        with file_scope() as session:
            progress = tracker.get_progress(session, "s1", "counting")
        assert progress.sessions_count == 3
        assert progress.mastery_level == pytest.approx(0.1 + 2 * policy.mastery_step)
        assert progress.problems_attempted == 30

    def test_accuracy_weighted_policy(self, seeded_scope, make_outcome):
        tracker = MasteryTracker(EnginePolicy(mastery_policy="accuracy_weighted"))
        with seeded_scope() as session:
            tracker.update_mastery(session, make_outcome(attempted=10, correct=10))
            update = tracker.update_mastery(
                session, make_outcome(attempted=10, correct=4, at=datetime(2024, 3, 5))
            )
        assert update.created is False
        assert update.previous_mastery == pytest.approx(0.1)
        assert update.progress.mastery_level == pytest.approx(0.12)

    def test_out_of_order_raises(self, seeded_scope, make_outcome, policy):
        tracker = MasteryTracker(policy)
        with seeded_scope() as session:
            tracker.update_mastery(session, make_outcome(at=datetime(2024, 3, 5)))
            with pytest.raises(OutOfOrderEventError):
                tracker.update_mastery(session, make_outcome(at=datetime(2024, 3, 4)))
            progress = tracker.get_progress(session, "s1", "counting")
        assert progress.sessions_count == 1
        assert progress.out_of_order_count == 1

    def test_subject_masteries_and_summary(self, seeded_scope, make_outcome, policy):
        tracker = MasteryTracker(policy)
        with seeded_scope() as session:
            tracker.update_mastery(session, make_outcome("counting"))
            tracker.update_mastery(session, make_outcome("counting", at=datetime(2024, 3, 5)))
            tracker.update_mastery(session, make_outcome("phonics", subject_id="reading"))
            masteries = tracker.subject_masteries(session, "s1")
            summary = tracker.progress_summary(
                session, "s1", now=datetime(2024, 3, 6)
            )
            empty = tracker.subject_mastery(session, "s1", "science")

        assert masteries == {"math": pytest.approx(0.15), "reading": pytest.approx(0.1)}
        assert empty is None
        assert summary["total_topics"] == 2
        assert summary["total_sessions"] == 3
        assert summary["progress_records"][0]["topic_id"] == "counting"
        assert summary["progress_records"][0]["days_since_practice"] == pytest.approx(1.0)


class TestAchievementEvaluator:
    def test_unlock_once_across_evaluators(self, seeded_scope):
        rule = AchievementRule(
            id="first_steps", code="first_steps", name="First Steps",
            condition=parse_condition({"kind": "first_session"}),
        )
        stats = AggregateStats(student_id="s1", sessions_count=1)
        evaluator_a = AchievementEvaluator([rule])
        evaluator_b = AchievementEvaluator([rule])

        with seeded_scope() as session:
            first = evaluator_a.check_achievements(session, "s1", stats)
            # A stale evaluator that never saw the unlock still cannot insert twice
            evaluator_b.unlocked = lambda *_: {}
            second = evaluator_b.check_achievements(session, "s1", stats)
            rows = session.execute(select(StudentAchievementUnlock)).scalars().all()

        assert [e.code for e in first] == ["first_steps"]
        assert second == []
        assert len(rows) == 1


class TestInsertIfAbsent:
    def test_second_insert_reports_existing(self, scope):
        values = {"id": "s9", "display_name": "Grace", "grade_level": 5}
        with scope() as session:
            assert insert_if_absent(session, Student, values, ("id",)) is True
            assert insert_if_absent(session, Student, values, ("id",)) is False
