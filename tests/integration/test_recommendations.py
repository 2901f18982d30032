"""
Integration Tests for recommendations read through the engine.
"""

from datetime import UTC, datetime, timedelta

import pytest

from src.adaptive.models import ReasonCode
from src.db.models import StudentTopicProgress

pytestmark = pytest.mark.integration

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def set_mastery(seeded_scope):
    def _set(topic_id: str, level: float, subject_id: str = "math", days_ago: int = 1):
        with seeded_scope() as session:
            session.add(
                StudentTopicProgress(
                    student_id="s1",
                    subject_id=subject_id,
                    topic_id=topic_id,
                    mastery_level=level,
                    sessions_count=3,
                    problems_attempted=10,
                    problems_correct=8,
                    last_practiced_at=(NOW - timedelta(days=days_ago)).replace(tzinfo=None),
                )
            )

    return _set


class TestLockedTopics:
    def test_locked_topic_excluded(self, engine, set_mastery):
        set_mastery("counting", 0.4)
        result = engine.get_recommendations("s1", subject_id="math", limit=10, now=NOW)
        topic_ids = [r.topic_id for r in result.recommendations]
        assert "addition" not in topic_ids
        assert topic_ids == ["counting"]

    def test_locked_topic_included_with_path(self, engine, set_mastery):
        set_mastery("counting", 0.4)
        result = engine.get_recommendations(
            "s1", subject_id="math", limit=10, include_prerequisites=True, now=NOW
        )
        addition = next(r for r in result.recommendations if r.topic_id == "addition")
        assert addition.is_unlocked is False
        assert list(addition.unlock_path) == ["counting"]

        fractions = next(r for r in result.recommendations if r.topic_id == "fractions")
        assert fractions.unlock_path[0] == "counting"
        assert set(fractions.unlock_path) == {"counting", "addition", "subtraction", "multiplication"}

    def test_unlocked_after_threshold(self, engine, set_mastery):
        set_mastery("counting", 0.6)
        result = engine.get_recommendations("s1", subject_id="math", now=NOW)
        first = result.recommendations[0]
        assert first.topic_id == "addition"
        assert first.reason_code is ReasonCode.EXPLORE


class TestResultShape:
    def test_limit_and_total(self, engine):
        result = engine.get_recommendations("s1", limit=1, now=NOW)
        # counting and phonics are the only unlocked topics for a new student
        assert result.total == 2
        assert len(result.recommendations) == 1

    def test_identical_state_identical_order(self, engine, set_mastery):
        set_mastery("counting", 0.7)
        set_mastery("phonics", 0.3, subject_id="reading")
        first = engine.get_recommendations("s1", limit=10, now=NOW)
        second = engine.get_recommendations("s1", limit=10, now=NOW)
        assert first == second

    def test_unknown_subject_is_empty(self, engine):
        result = engine.get_recommendations("s1", subject_id="astronomy", now=NOW)
        assert result.recommendations == []
        assert result.total == 0

    def test_unknown_student_is_empty(self, engine):
        result = engine.get_recommendations("ghost", now=NOW)
        assert result.recommendations == []
        assert result.total == 0

    def test_to_dict(self, engine):
        rec = engine.get_recommendations("s1", now=NOW).recommendations[0]
        payload = rec.to_dict()
        assert payload["topicId"] == "counting"
        assert payload["reasonCode"] == "explore"
        assert payload["unlockPath"] == []


class TestWeakness:
    def test_low_accuracy_topic_first(self, engine, seeded_scope, set_mastery):
        set_mastery("counting", 0.7)
        with seeded_scope() as session:
            session.add(
                StudentTopicProgress(
                    student_id="s1", subject_id="math", topic_id="addition",
                    mastery_level=0.3, sessions_count=4, problems_attempted=20,
                    problems_correct=4, last_practiced_at=datetime(2024, 3, 9),
                )
            )
        result = engine.get_recommendations("s1", subject_id="math", now=NOW)
        top = result.recommendations[0]
        assert top.topic_id == "addition"
        assert top.reason == "Strengthen a weak area"
