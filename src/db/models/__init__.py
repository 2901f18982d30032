# SQLAlchemy models
from .base import Base
from .catalog import (
    AchievementDefinition,
    Subject,
    Topic,
    topic_prerequisites,
)
from .progress import (
    DailyActivityRecord,
    LearningSessionRecord,
    Student,
    StudentAchievementUnlock,
    StudentTopicProgress,
)

__all__ = [
    # Base
    "Base",
    # Catalog
    "Subject",
    "Topic",
    "topic_prerequisites",
    "AchievementDefinition",
    # Progress
    "Student",
    "StudentTopicProgress",
    "LearningSessionRecord",
    "DailyActivityRecord",
    "StudentAchievementUnlock",
]
