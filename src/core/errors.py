"""
Error taxonomy for the progress engine.

ConfigurationError is fatal and raised at startup. The remaining errors are
per-request: the engine catches them at its operation boundary and reports a
structured status instead of letting one bad event abort a batch.
"""

from __future__ import annotations

from datetime import datetime


class ProgressEngineError(Exception):
    """Base class for all engine errors."""

    pass


class ConfigurationError(ProgressEngineError):
    """Catalog or policy is unusable (prerequisite cycle, unknown condition kind, bad policy)."""

    pass


class NotFoundError(ProgressEngineError):
    """An inbound event references a student, subject or topic that does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class OutOfOrderEventError(ProgressEngineError):
    """A session outcome is older than the last recorded practice for its topic."""

    def __init__(
        self,
        student_id: str,
        topic_id: str,
        timestamp: datetime,
        last_practiced_at: datetime | None,
    ):
        self.student_id = student_id
        self.topic_id = topic_id
        self.timestamp = timestamp
        self.last_practiced_at = last_practiced_at
        super().__init__(
            f"Outcome for student={student_id} topic={topic_id} at {timestamp.isoformat()} "
            f"is older than last practice at "
            f"{last_practiced_at.isoformat() if last_practiced_at else 'unknown'}"
        )


class ConflictError(ProgressEngineError):
    """A unique row already exists (e.g. the achievement was unlocked concurrently)."""

    pass
