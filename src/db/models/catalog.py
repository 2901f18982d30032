"""
Catalog models: subjects, topics, prerequisite edges and achievements.

These tables are owned by content management. The engine reads them once at
startup to build its read-only Catalog and never writes them during a request.

Prerequisite edges:
- topic_prerequisites(topic_id, prerequisite_id) means prerequisite_id must be
  mastered before topic_id unlocks.
- Cycles are rejected when the PrerequisiteGraph is built, not by the schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Table, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

topic_prerequisites = Table(
    "topic_prerequisites",
    Base.metadata,
    Column("topic_id", Text, ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "prerequisite_id", Text, ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True
    ),
)


class Subject(Base):
    """A school subject (Math, Reading, Science...)."""

    __tablename__ = "subjects"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str | None] = mapped_column(Text)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    topics: Mapped[list[Topic]] = relationship(back_populates="subject")

    def __repr__(self) -> str:
        return f"<Subject {self.id} {self.name!r}>"


class Topic(Base):
    """
    A teachable topic within a subject.

    Attributes:
        grade_level: K-12 grade (0 = kindergarten)
        difficulty: Difficulty tier label (EASY/MEDIUM/HARD)
        order_index: Position within the subject's syllabus, used for tie-breaks
    """

    __tablename__ = "topics"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    subject_id: Mapped[str] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    grade_level: Mapped[int] = mapped_column(Integer, default=0)
    difficulty: Mapped[str] = mapped_column(Text, default="MEDIUM")
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    subject: Mapped[Subject] = relationship(back_populates="topics")
    prerequisites: Mapped[list[Topic]] = relationship(
        secondary=topic_prerequisites,
        primaryjoin=lambda: Topic.id == topic_prerequisites.c.topic_id,
        secondaryjoin=lambda: Topic.id == topic_prerequisites.c.prerequisite_id,
    )

    def __repr__(self) -> str:
        return f"<Topic {self.id} {self.name!r} subject={self.subject_id}>"


class AchievementDefinition(Base):
    """
    A badge definition with a declarative unlock condition.

    condition is a JSON object tagged by "kind" (legacy rows use "type"),
    e.g. {"kind": "streak", "days": 7}. It is validated into a rule object
    when the catalog loads.
    """

    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    code: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    icon: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(Text, default="general")
    condition: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    points_reward: Mapped[int] = mapped_column(Integer, default=0)
    rarity: Mapped[str] = mapped_column(Text, default="common")
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<AchievementDefinition {self.code} active={self.is_active}>"
