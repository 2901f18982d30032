"""
Adaptive Progress & Recommendation Engine.

Turns finished learning sessions into mastery, streak and achievement state,
and ranks what a student should study next.

Components:
- PrerequisiteGraph: Read-only topic DAG with unlock queries
- MasteryTracker: Per (student, topic) mastery updates and summaries
- StreakCalculator: Daily activity ledger and streak arithmetic
- AchievementEvaluator: Declarative rules with exactly-once unlocks
- RecommendationEngine: Ranked, explained next topics
- LearningEngine: Session-end orchestration over all of the above
"""
from src.adaptive.achievement_evaluator import AchievementEvaluator, AchievementRule
from src.adaptive.achievement_rules import ConditionRule, parse_condition
from src.adaptive.catalog import DEFAULT_ACHIEVEMENTS, Catalog, load_catalog, seed_catalog
from src.adaptive.learning_engine import LearningEngine
from src.adaptive.mastery_tracker import MasteryTracker
from src.adaptive.models import (
    AchievementProgress,
    AggregateStats,
    MasteryUpdate,
    OutcomeStatus,
    ProgressSnapshot,
    ReasonCode,
    Recommendation,
    RecommendationResult,
    SessionOutcome,
    SessionOutcomeResult,
    StreakInfo,
    StreakUpdate,
    UnlockEvent,
)
from src.adaptive.prerequisite_graph import PrerequisiteGraph, TopicNode
from src.adaptive.recommendation_engine import RecommendationEngine
from src.adaptive.streak_calculator import StreakCalculator

__all__ = [
    # Main engine
    "LearningEngine",
    # Component classes
    "PrerequisiteGraph",
    "MasteryTracker",
    "StreakCalculator",
    "AchievementEvaluator",
    "RecommendationEngine",
    # Catalog
    "Catalog",
    "TopicNode",
    "AchievementRule",
    "ConditionRule",
    "DEFAULT_ACHIEVEMENTS",
    "load_catalog",
    "seed_catalog",
    "parse_condition",
    # Data models
    "SessionOutcome",
    "SessionOutcomeResult",
    "AggregateStats",
    "ProgressSnapshot",
    "MasteryUpdate",
    "StreakUpdate",
    "StreakInfo",
    "UnlockEvent",
    "AchievementProgress",
    "Recommendation",
    "RecommendationResult",
    # Enums
    "OutcomeStatus",
    "ReasonCode",
]
