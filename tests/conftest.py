"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Integration fixtures run against a private in-memory SQLite database per test.
"""
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


# =============================================================================
# Catalog
# =============================================================================

SAMPLE_CATALOG = {
    "subjects": [
        {
            "id": "math",
            "name": "Math",
            "order_index": 0,
            "topics": [
                {"id": "counting", "name": "Counting", "order_index": 0},
                {"id": "addition", "name": "Addition", "order_index": 1,
                 "prerequisites": ["counting"]},
                {"id": "subtraction", "name": "Subtraction", "order_index": 2,
                 "prerequisites": ["addition"]},
                {"id": "multiplication", "name": "Multiplication", "order_index": 3,
                 "prerequisites": ["addition"]},
                {"id": "fractions", "name": "Fractions", "order_index": 4,
                 "prerequisites": ["multiplication", "subtraction"]},
            ],
        },
        {
            "id": "reading",
            "name": "Reading",
            "order_index": 1,
            "topics": [
                {"id": "phonics", "name": "Phonics", "order_index": 0},
                {"id": "sight_words", "name": "Sight Words", "order_index": 1,
                 "prerequisites": ["phonics"]},
            ],
        },
    ],
    "achievements": [
        {"code": "reading_complete", "name": "Bookworm",
         "condition": {"kind": "subject_completed", "subject_id": "reading"},
         "points_reward": 100, "rarity": "epic", "order_index": 100},
    ],
    "include_default_achievements": True,
}


@pytest.fixture
def sample_catalog():
    """A two-subject catalog with a diamond-shaped math graph."""
    import copy

    return copy.deepcopy(SAMPLE_CATALOG)


@pytest.fixture
def policy():
    """Default engine policy."""
    from src.core.policy import EnginePolicy

    return EnginePolicy()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def scope():
    """Transactional scope over a fresh in-memory database."""
    from src.db.database import make_session_factory

    engine, session_scope = make_session_factory("sqlite://")
    yield session_scope
    engine.dispose()


@pytest.fixture
def seeded_scope(scope, sample_catalog):
    """In-memory database with the sample catalog and one student."""
    from src.adaptive.catalog import seed_catalog
    from src.db.models import Student

    with scope() as session:
        seed_catalog(session, sample_catalog)
        session.add(Student(id="s1", display_name="Ada", grade_level=3, timezone="UTC"))
    return scope


@pytest.fixture
def engine(seeded_scope, policy):
    """LearningEngine over the seeded database."""
    from src.adaptive.learning_engine import LearningEngine

    return LearningEngine.initialize(seeded_scope, policy)


@pytest.fixture
def make_outcome():
    """Factory for SessionOutcome events with sensible defaults."""
    from src.adaptive.models import SessionOutcome

    def _make(
        topic_id: str = "counting",
        subject_id: str = "math",
        attempted: int = 10,
        correct: int = 7,
        minutes: int = 20,
        points: int = 50,
        at: datetime = datetime(2024, 3, 4, 15, 0),
        student_id: str = "s1",
        session_id: str | None = None,
    ) -> SessionOutcome:
        return SessionOutcome(
            student_id=student_id,
            subject_id=subject_id,
            topic_id=topic_id,
            problems_attempted=attempted,
            problems_correct=correct,
            duration_minutes=minutes,
            points_earned=points,
            timestamp=at,
            session_id=session_id,
        )

    return _make
