"""
Achievement Evaluator.

Evaluates the achievement catalog against freshly recomputed statistics and
unlocks each achievement at most once per student.

The unlock decision is the insert itself: an insert-if-absent against the
(student_id, achievement_id) unique constraint. A lost race surfaces as a
ConflictError that is treated as "already unlocked".
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.adaptive.achievement_rules import ConditionRule, parse_condition
from src.adaptive.models import AchievementProgress, AggregateStats, SessionOutcome, UnlockEvent
from src.core.errors import ConfigurationError, ConflictError
from src.core.mastery import to_storage_time
from src.db.models import AchievementDefinition, StudentAchievementUnlock
from src.db.utils import insert_if_absent


@dataclass(frozen=True)
class AchievementRule:
    """A validated, active achievement definition."""

    id: str
    code: str
    name: str
    condition: ConditionRule
    points_reward: int = 0
    rarity: str = "common"
    category: str = "general"
    description: str = ""
    icon: str | None = None
    order_index: int = 0

    @classmethod
    def from_definition(cls, definition: AchievementDefinition) -> AchievementRule:
        try:
            condition = parse_condition(definition.condition or {})
        except ConfigurationError as exc:
            raise ConfigurationError(f"Achievement {definition.code}: {exc}") from exc
        return cls(
            id=definition.id,
            code=definition.code,
            name=definition.name,
            condition=condition,
            points_reward=definition.points_reward or 0,
            rarity=definition.rarity or "common",
            category=definition.category or "general",
            description=definition.description or "",
            icon=definition.icon,
            order_index=definition.order_index or 0,
        )


class AchievementEvaluator:
    """
    Stateless evaluator over a read-only list of active rules.
    """

    def __init__(self, rules: Iterable[AchievementRule]):
        self.rules: tuple[AchievementRule, ...] = tuple(
            sorted(rules, key=lambda r: (r.order_index, r.code))
        )
        codes = [r.code for r in self.rules]
        if len(codes) != len(set(codes)):
            raise ConfigurationError("Duplicate achievement codes in catalog")
        self._by_id = {r.id: r for r in self.rules}

    @classmethod
    def from_definitions(cls, definitions: Iterable[AchievementDefinition]) -> AchievementEvaluator:
        """Build from catalog rows; inactive rows are skipped, invalid ones are fatal."""
        return cls(
            AchievementRule.from_definition(d) for d in definitions if d.is_active
        )

    def get(self, achievement_id: str) -> AchievementRule | None:
        return self._by_id.get(achievement_id)

    # ========================================================================
    # Pure evaluation
    # ========================================================================

    def satisfied_rules(
        self,
        stats: AggregateStats,
        trigger: SessionOutcome | None = None,
        exclude: Iterable[str] = (),
    ) -> list[AchievementRule]:
        """Rules whose condition holds, skipping already-unlocked ids."""
        skip = set(exclude)
        return [
            rule
            for rule in self.rules
            if rule.id not in skip and rule.condition.is_satisfied(stats, trigger)
        ]

    def progress(
        self,
        rule: AchievementRule,
        stats: AggregateStats,
        unlocked_at: datetime | None = None,
        trigger: SessionOutcome | None = None,
    ) -> AchievementProgress:
        """Percent progress toward one achievement."""
        if unlocked_at is not None:
            return AchievementProgress(
                achievement_id=rule.id,
                code=rule.code,
                unlocked=True,
                progress=100,
                current=1.0,
                target=1.0,
                unlocked_at=unlocked_at,
            )
        current, target = rule.condition.measure(stats, trigger)
        percent = 100 if target <= 0 else min(100, round(current / target * 100))
        return AchievementProgress(
            achievement_id=rule.id,
            code=rule.code,
            unlocked=False,
            progress=percent,
            current=current,
            target=target,
        )

    # ========================================================================
    # Store-backed operations
    # ========================================================================

    def unlocked(self, session: Session, student_id: str) -> dict[str, datetime]:
        """achievement_id -> unlocked_at for a student."""
        rows = session.execute(
            select(StudentAchievementUnlock.achievement_id, StudentAchievementUnlock.unlocked_at)
            .where(StudentAchievementUnlock.student_id == student_id)
        )
        return {achievement_id: unlocked_at for achievement_id, unlocked_at in rows}

    def check_achievements(
        self,
        session: Session,
        student_id: str,
        stats: AggregateStats,
        trigger: SessionOutcome | None = None,
        now: datetime | None = None,
    ) -> list[UnlockEvent]:
        """
        Unlock every satisfied achievement the student does not have yet.

        Args:
            session: Active transaction
            student_id: Student identifier
            stats: Freshly recomputed aggregate statistics
            trigger: The session outcome that caused this evaluation
                (required for perfect_session)
            now: Unlock timestamp (defaults to UTC now)

        Returns:
            UnlockEvents for achievements unlocked by this call only
        """
        unlocked_at = to_storage_time(now or datetime.now(UTC))
        already = self.unlocked(session, student_id)
        events: list[UnlockEvent] = []

        for rule in self.satisfied_rules(stats, trigger, exclude=already):
            try:
                self._insert_unlock(session, student_id, rule, unlocked_at, trigger)
            except ConflictError:
                logger.debug(f"Achievement {rule.code} already unlocked for student {student_id}")
                continue

            logger.info(f"Achievement unlocked: {rule.code} for student {student_id}")
            events.append(
                UnlockEvent(
                    student_id=student_id,
                    achievement_id=rule.id,
                    code=rule.code,
                    name=rule.name,
                    points_reward=rule.points_reward,
                    rarity=rule.rarity,
                    unlocked_at=unlocked_at,
                )
            )
        return events

    def _insert_unlock(
        self,
        session: Session,
        student_id: str,
        rule: AchievementRule,
        unlocked_at: datetime,
        trigger: SessionOutcome | None,
    ) -> None:
        progress_data: dict[str, Any] = {"kind": rule.condition.kind}
        if trigger is not None and trigger.session_id:
            progress_data["session_id"] = trigger.session_id

        inserted = insert_if_absent(
            session,
            StudentAchievementUnlock,
            {
                "student_id": student_id,
                "achievement_id": rule.id,
                "unlocked_at": unlocked_at,
                "progress_data": progress_data,
            },
            conflict_columns=("student_id", "achievement_id"),
        )
        if not inserted:
            raise ConflictError(f"Achievement {rule.code} already unlocked for {student_id}")

    def student_progress(
        self, session: Session, student_id: str, stats: AggregateStats
    ) -> list[AchievementProgress]:
        """Progress for every active achievement, unlocked ones at 100%."""
        unlocked = self.unlocked(session, student_id)
        return [self.progress(rule, stats, unlocked.get(rule.id)) for rule in self.rules]

