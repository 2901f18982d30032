"""
Configuration settings for the tutor progress engine.

Uses Pydantic Settings for environment variable management with .env file support.
Policy constants (mastery, streak, recommendation weights) live here so they are
named and documented in one place rather than spread through the engine.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///./tutor_progress.db",
        description="SQLAlchemy connection string (PostgreSQL in production)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/tutor_progress.log",
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Calendar
    # ========================================
    default_timezone: str = Field(
        default="UTC",
        description="IANA timezone used for students without one",
    )

    # ========================================
    # Mastery Policy
    # ========================================
    mastery_threshold: float = Field(
        default=0.6,
        description="Prerequisite mastery needed before a dependent topic unlocks",
    )
    mastery_initial_level: float = Field(
        default=0.1,
        description="Mastery assigned on the first session for a topic",
    )
    mastery_step: float = Field(
        default=0.05,
        description="Mastery gained per completed session",
    )
    mastery_policy: Literal["flat", "accuracy_weighted"] = Field(
        default="flat",
        description="flat: fixed step; accuracy_weighted: step x session accuracy",
    )
    topic_mastered_level: float = Field(
        default=0.8,
        description="Mastery at which a topic counts as mastered for achievements",
    )

    # ========================================
    # Streak Policy
    # ========================================
    streak_milestones: str = Field(
        default="3,7,14,30,50,100,365",
        description="Comma-separated streak lengths (days) that count as milestones",
    )

    # ========================================
    # Recommendation Weights
    # ========================================
    rec_weight_readiness: float = Field(
        default=0.30,
        description="Weight of the readiness signal (topic unlocked = 1, locked = 0)",
    )
    rec_weight_gap: float = Field(
        default=0.50,
        description="Weight of the mastery gap signal (1 - mastery)",
    )
    rec_weight_recency: float = Field(
        default=0.10,
        description="Weight of the staleness signal (capped at 1 before weighting)",
    )
    rec_weight_weakness: float = Field(
        default=0.25,
        description="Boost applied to topics or subjects flagged as weak areas",
    )
    rec_new_topic_gap: float = Field(
        default=0.9,
        description="Gap value used for never-attempted topics (encourages breadth)",
    )
    rec_recency_horizon_days: float = Field(
        default=14.0,
        description="Days without practice at which the recency signal saturates",
    )
    rec_weak_accuracy_threshold: float = Field(
        default=0.6,
        description="Accuracy below which a practiced topic counts as a weak area",
    )
    rec_weak_min_sessions: int = Field(
        default=2,
        description="Sessions required before accuracy can flag a weak area",
    )
    rec_default_limit: int = Field(
        default=5,
        description="Recommendations returned when no limit is requested",
    )
    rec_max_limit: int = Field(
        default=20,
        description="Upper bound on the requested recommendation limit",
    )

    def get_milestones(self) -> tuple[int, ...]:
        """Parse the milestone list, ignoring blanks."""
        from src.core.errors import ConfigurationError

        try:
            return tuple(
                int(part.strip()) for part in self.streak_milestones.split(",") if part.strip()
            )
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid streak_milestones {self.streak_milestones!r}: expected integers"
            ) from exc

    def get_engine_policy(self):
        """Build the immutable policy object handed to the engine."""
        from src.core.policy import EnginePolicy, RecommendationWeights

        return EnginePolicy(
            mastery_threshold=self.mastery_threshold,
            initial_mastery=self.mastery_initial_level,
            mastery_step=self.mastery_step,
            mastery_policy=self.mastery_policy,
            topic_mastered_level=self.topic_mastered_level,
            streak_milestones=self.get_milestones(),
            default_timezone=self.default_timezone,
            weights=RecommendationWeights(
                readiness=self.rec_weight_readiness,
                gap=self.rec_weight_gap,
                recency=self.rec_weight_recency,
                weakness=self.rec_weight_weakness,
                new_topic_gap=self.rec_new_topic_gap,
                recency_horizon_days=self.rec_recency_horizon_days,
                weak_accuracy_threshold=self.rec_weak_accuracy_threshold,
                weak_min_sessions=self.rec_weak_min_sessions,
            ),
            default_limit=self.rec_default_limit,
            max_limit=self.rec_max_limit,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
