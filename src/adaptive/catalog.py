"""
Catalog loading and seeding.

The Catalog bundles the read-only data every request shares: the built
PrerequisiteGraph and the validated achievement rules. It is built once at
startup (or on an explicit reload) and replaced wholesale, never mutated.

seed_catalog() is the content-management entry point used by the CLI; it
validates a JSON document with pydantic and upserts it into the store.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from src.adaptive.achievement_evaluator import AchievementEvaluator
from src.adaptive.achievement_rules import parse_condition
from src.adaptive.prerequisite_graph import PrerequisiteGraph, TopicNode
from src.core.errors import ConfigurationError
from src.core.policy import EnginePolicy
from src.db.models import AchievementDefinition, Subject, Topic, topic_prerequisites


@dataclass(frozen=True)
class Catalog:
    """Read-only catalog shared by all concurrent requests."""

    graph: PrerequisiteGraph
    evaluator: AchievementEvaluator
    subject_names: Mapping[str, str]

    @property
    def topic_count(self) -> int:
        return len(self.graph)

    @property
    def achievement_count(self) -> int:
        return len(self.evaluator.rules)


# ============================================================================
# Loading
# ============================================================================


def load_catalog(session: Session, policy: EnginePolicy | None = None) -> Catalog:
    """
    Build the Catalog from active subjects, topics and achievements.

    Edges to inactive topics are dropped with a warning.

    Raises:
        ConfigurationError: prerequisite cycle, unknown condition kind
    """
    policy = policy or EnginePolicy()

    subjects = session.execute(
        select(Subject.id, Subject.name).where(Subject.is_active.is_(True))
    ).all()
    subject_names = {row.id: row.name for row in subjects}

    topics = session.execute(
        select(Topic).where(Topic.is_active.is_(True), Topic.subject_id.in_(list(subject_names)))
    ).scalars().all()
    active_ids = {topic.id for topic in topics}

    edges: dict[str, list[str]] = {}
    for topic_id, prereq_id in session.execute(
        select(topic_prerequisites.c.topic_id, topic_prerequisites.c.prerequisite_id).order_by(
            topic_prerequisites.c.topic_id, topic_prerequisites.c.prerequisite_id
        )
    ):
        if topic_id not in active_ids:
            continue
        if prereq_id not in active_ids:
            logger.warning(f"Ignoring prerequisite {prereq_id} of {topic_id}: topic is inactive")
            continue
        edges.setdefault(topic_id, []).append(prereq_id)

    graph = PrerequisiteGraph(
        (
            TopicNode(
                id=topic.id,
                subject_id=topic.subject_id,
                name=topic.name,
                order_index=topic.order_index or 0,
                grade_level=topic.grade_level or 0,
                difficulty=topic.difficulty or "MEDIUM",
                prerequisites=tuple(edges.get(topic.id, ())),
            )
            for topic in topics
        ),
        mastery_threshold=policy.mastery_threshold,
    )

    definitions = session.execute(
        select(AchievementDefinition).where(AchievementDefinition.is_active.is_(True))
    ).scalars().all()
    evaluator = AchievementEvaluator.from_definitions(definitions)

    logger.info(
        f"Catalog loaded: {len(subject_names)} subjects, {len(graph)} topics, "
        f"{len(evaluator.rules)} achievements"
    )
    return Catalog(graph=graph, evaluator=evaluator, subject_names=subject_names)


# ============================================================================
# Seeding
# ============================================================================


class TopicSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    grade_level: int = 0
    difficulty: str = "MEDIUM"
    order_index: int = 0
    is_active: bool = True
    prerequisites: list[str] = Field(default_factory=list)


class SubjectSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    slug: str | None = None
    order_index: int = 0
    is_active: bool = True
    topics: list[TopicSpec] = Field(default_factory=list)


class AchievementSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str
    name: str
    condition: dict[str, Any]
    id: str | None = None
    description: str = ""
    icon: str | None = None
    category: str = "general"
    points_reward: int = Field(default=0, ge=0)
    rarity: str = "common"
    order_index: int = 0
    is_active: bool = True

    @field_validator("condition")
    @classmethod
    def _known_condition(cls, value: dict[str, Any]) -> dict[str, Any]:
        try:
            parse_condition(value)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return value


class CatalogDocument(BaseModel):
    """Top-level seed document: {"subjects": [...], "achievements": [...]}."""

    model_config = ConfigDict(extra="forbid")

    subjects: list[SubjectSpec] = Field(default_factory=list)
    achievements: list[AchievementSpec] = Field(default_factory=list)
    include_default_achievements: bool = False


DEFAULT_ACHIEVEMENTS: tuple[dict[str, Any], ...] = (
    {"code": "first_steps", "name": "First Steps", "category": "milestone",
     "description": "Complete your first learning session",
     "condition": {"kind": "first_session"}, "points_reward": 10, "rarity": "common"},
    {"code": "getting_started", "name": "Getting Started", "category": "milestone",
     "description": "Complete 10 learning sessions",
     "condition": {"kind": "session_count", "count": 10}, "points_reward": 25, "rarity": "common"},
    {"code": "dedicated_learner", "name": "Dedicated Learner", "category": "milestone",
     "description": "Complete 50 learning sessions",
     "condition": {"kind": "session_count", "count": 50}, "points_reward": 100, "rarity": "rare"},
    {"code": "on_fire", "name": "On Fire", "category": "streak",
     "description": "Learn 3 days in a row",
     "condition": {"kind": "streak", "days": 3}, "points_reward": 15, "rarity": "common"},
    {"code": "week_warrior", "name": "Week Warrior", "category": "streak",
     "description": "Learn 7 days in a row",
     "condition": {"kind": "streak", "days": 7}, "points_reward": 50, "rarity": "rare"},
    {"code": "monthly_master", "name": "Monthly Master", "category": "streak",
     "description": "Learn 30 days in a row",
     "condition": {"kind": "streak", "days": 30}, "points_reward": 200, "rarity": "epic"},
    {"code": "problem_solver", "name": "Problem Solver", "category": "skill",
     "description": "Solve 100 problems correctly",
     "condition": {"kind": "problems_solved", "count": 100}, "points_reward": 50, "rarity": "rare"},
    {"code": "perfectionist", "name": "Perfectionist", "category": "skill",
     "description": "Finish a session without a single mistake",
     "condition": {"kind": "perfect_session"}, "points_reward": 20, "rarity": "common"},
    {"code": "time_keeper", "name": "Time Keeper", "category": "milestone",
     "description": "Spend 10 hours learning",
     "condition": {"kind": "time_spent", "minutes": 600}, "points_reward": 75, "rarity": "rare"},
    {"code": "topic_master", "name": "Topic Master", "category": "skill",
     "description": "Master 5 topics",
     "condition": {"kind": "topics_mastered", "count": 5}, "points_reward": 100, "rarity": "epic"},
    {"code": "point_collector", "name": "Point Collector", "category": "milestone",
     "description": "Earn 1000 points",
     "condition": {"kind": "points_earned", "points": 1000}, "points_reward": 50, "rarity": "rare"},
    {"code": "subject_expert", "name": "Subject Expert", "category": "skill",
     "description": "Reach 80% mastery in any subject",
     "condition": {"kind": "mastery_level", "level": 80}, "points_reward": 150, "rarity": "legendary"},
)


def _validate_document(data: Mapping[str, Any] | CatalogDocument) -> CatalogDocument:
    if isinstance(data, CatalogDocument):
        return data
    try:
        return CatalogDocument.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid catalog document: {exc}") from exc


def _stored_topic_nodes(session: Session, exclude: set[str]) -> list[TopicNode]:
    """Topics already in the store (with their edges) that a document does not replace."""
    edges: dict[str, list[str]] = {}
    for topic_id, prereq_id in session.execute(
        select(topic_prerequisites.c.topic_id, topic_prerequisites.c.prerequisite_id)
    ):
        if topic_id not in exclude:
            edges.setdefault(topic_id, []).append(prereq_id)

    topics = session.execute(select(Topic).where(Topic.id.not_in(exclude))).scalars().all()
    return [
        TopicNode(
            id=topic.id,
            subject_id=topic.subject_id,
            name=topic.name,
            order_index=topic.order_index or 0,
            prerequisites=tuple(sorted(edges.get(topic.id, ()))),
        )
        for topic in topics
    ]


def seed_catalog(session: Session, data: Mapping[str, Any] | CatalogDocument) -> dict[str, int]:
    """
    Upsert a catalog document into the store.

    The topic graph is built and checked before anything is written, so a
    document with a cycle or a dangling prerequisite changes nothing. Topics
    already in the store count for the check, so a partial document may
    depend on them.

    Args:
        session: Active transaction
        data: Parsed JSON (or an already-validated CatalogDocument)

    Returns:
        Counts of subjects, topics, prerequisite edges and achievements written

    Raises:
        ConfigurationError: invalid document, cycle, unknown prerequisite
    """
    document = _validate_document(data)
    documented = [(subject.id, topic) for subject in document.subjects for topic in subject.topics]

    PrerequisiteGraph(
        [
            TopicNode(
                id=topic.id,
                subject_id=subject_id,
                name=topic.name,
                order_index=topic.order_index,
                prerequisites=tuple(topic.prerequisites),
            )
            for subject_id, topic in documented
        ]
        + _stored_topic_nodes(session, {topic.id for _, topic in documented})
    )

    stats = {"subjects": 0, "topics": 0, "prerequisites": 0, "achievements": 0}

    for subject in document.subjects:
        session.merge(
            Subject(
                id=subject.id,
                name=subject.name,
                slug=subject.slug,
                order_index=subject.order_index,
                is_active=subject.is_active,
            )
        )
        stats["subjects"] += 1
        for topic in subject.topics:
            session.merge(
                Topic(
                    id=topic.id,
                    subject_id=subject.id,
                    name=topic.name,
                    grade_level=topic.grade_level,
                    difficulty=topic.difficulty,
                    order_index=topic.order_index,
                    is_active=topic.is_active,
                )
            )
            stats["topics"] += 1
    session.flush()

    # Edges of seeded topics are replaced, not merged
    seeded = [topic for _, topic in documented]
    if seeded:
        session.execute(
            delete(topic_prerequisites).where(
                topic_prerequisites.c.topic_id.in_([t.id for t in seeded])
            )
        )
    edge_rows = [
        {"topic_id": topic.id, "prerequisite_id": prereq_id}
        for topic in seeded
        for prereq_id in dict.fromkeys(topic.prerequisites)
    ]
    if edge_rows:
        session.execute(insert(topic_prerequisites), edge_rows)
    stats["prerequisites"] = len(edge_rows)

    achievements = list(document.achievements)
    if document.include_default_achievements:
        given = {a.code for a in achievements}
        achievements += [
            AchievementSpec.model_validate(raw)
            for raw in DEFAULT_ACHIEVEMENTS
            if raw["code"] not in given
        ]

    for index, spec in enumerate(achievements):
        existing_id = session.execute(
            select(AchievementDefinition.id).where(AchievementDefinition.code == spec.code)
        ).scalar_one_or_none()
        session.merge(
            AchievementDefinition(
                id=existing_id or spec.id or spec.code,
                code=spec.code,
                name=spec.name,
                description=spec.description,
                icon=spec.icon,
                category=spec.category,
                condition=spec.condition,
                points_reward=spec.points_reward,
                rarity=spec.rarity,
                order_index=spec.order_index or index,
                is_active=spec.is_active,
            )
        )
        stats["achievements"] += 1

    session.flush()
    logger.info(
        f"Catalog seeded: {stats['subjects']} subjects, {stats['topics']} topics, "
        f"{stats['prerequisites']} prerequisites, {stats['achievements']} achievements"
    )
    return stats
