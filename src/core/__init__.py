"""
Core Module - Shared domain primitives.

Components:
- errors: Error taxonomy (ConfigurationError, NotFoundError, ...)
- policy: Immutable engine policy (thresholds, steps, recommendation weights)
- mastery: Pure mastery arithmetic (MasteryLevel, step policy, subject means)

Design Principle:
The adaptive engine and the CLI import from src/core/ rather than
reimplementing shared concepts.
"""

from src.core.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OutOfOrderEventError,
    ProgressEngineError,
)
from src.core.mastery import MasteryLevel
from src.core.policy import EnginePolicy, RecommendationWeights

__all__ = [
    # Errors
    "ProgressEngineError",
    "ConfigurationError",
    "NotFoundError",
    "OutOfOrderEventError",
    "ConflictError",
    # Policy
    "EnginePolicy",
    "RecommendationWeights",
    # Mastery
    "MasteryLevel",
]
