"""
Recommendation Engine.

Ranks "what to study next" from the prerequisite graph and the student's
progress rows.

Candidates are topics below the mastery threshold (or never attempted).
Each gets a weighted priority (see RecommendationWeights):

    readiness  unlocked topics only
    gap        1 - mastery, or new_topic_gap for never-attempted topics
    recency    grows with days since last practice, capped at 1
    weakness   topic or subject flagged as a weak area

Locked topics are returned only when include_prerequisites is set, with
their unlock path. Ordering is deterministic: priority desc, then
order_index, subject and topic id.
"""
from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from src.adaptive.mastery_tracker import MasteryTracker
from src.adaptive.models import ProgressSnapshot, ReasonCode, Recommendation, RecommendationResult
from src.adaptive.prerequisite_graph import PrerequisiteGraph, TopicNode
from src.core.errors import NotFoundError
from src.core.mastery import calculate_days_since
from src.core.policy import EnginePolicy, RecommendationWeights

# Signal precedence when two contributions are equal
_SIGNAL_ORDER = ("weakness", "gap", "recency", "readiness")


@dataclass(frozen=True)
class ScoreBreakdown:
    """Weighted contribution of each signal to one topic's priority."""

    readiness: float
    gap: float
    recency: float
    weakness: float

    @property
    def total(self) -> float:
        return self.readiness + self.gap + self.recency + self.weakness

    def dominant(self) -> str:
        values = {name: getattr(self, name) for name in _SIGNAL_ORDER}
        return max(_SIGNAL_ORDER, key=lambda name: (values[name], -_SIGNAL_ORDER.index(name)))


def find_weak_areas(
    progress: Mapping[str, ProgressSnapshot],
    weights: RecommendationWeights,
) -> tuple[set[str], set[str]]:
    """
    Flag weak topics and subjects from accuracy ratios.

    A topic is weak once it has weak_min_sessions sessions and accuracy below
    weak_accuracy_threshold. A subject is weak on the same test applied to
    its pooled problem counts.

    Returns:
        (weak_topic_ids, weak_subject_ids)
    """
    weak_topics: set[str] = set()
    pooled: dict[str, list[int]] = {}

    for snapshot in progress.values():
        accuracy = snapshot.accuracy
        if (
            accuracy is not None
            and snapshot.sessions_count >= weights.weak_min_sessions
            and accuracy < weights.weak_accuracy_threshold
        ):
            weak_topics.add(snapshot.topic_id)
        totals = pooled.setdefault(snapshot.subject_id, [0, 0, 0])
        totals[0] += snapshot.problems_attempted
        totals[1] += snapshot.problems_correct
        totals[2] += snapshot.sessions_count

    weak_subjects = {
        subject_id
        for subject_id, (attempted, correct, sessions) in pooled.items()
        if attempted
        and sessions >= weights.weak_min_sessions
        and correct / attempted < weights.weak_accuracy_threshold
    }
    return weak_topics, weak_subjects


class RecommendationEngine:
    """Read-only ranking service. Never writes to the store."""

    def __init__(self, graph: PrerequisiteGraph, policy: EnginePolicy | None = None):
        self.graph = graph
        self.policy = policy or EnginePolicy()
        self.weights = self.policy.weights
        self.tracker = MasteryTracker(self.policy)

    # ========================================================================
    # Scoring
    # ========================================================================

    def score(
        self,
        topic: TopicNode,
        snapshot: ProgressSnapshot | None,
        unlocked: bool,
        weak: bool,
        now: datetime | None = None,
    ) -> ScoreBreakdown:
        """Weighted signal contributions for a single topic."""
        w = self.weights
        if snapshot is None:
            gap_signal = w.new_topic_gap
            recency_signal = 0.0
        else:
            gap_signal = 1.0 - snapshot.mastery_level
            days = calculate_days_since(snapshot.last_practiced_at, now) or 0.0
            recency_signal = min(days / w.recency_horizon_days, 1.0)

        return ScoreBreakdown(
            readiness=w.readiness if unlocked else 0.0,
            gap=w.gap * gap_signal,
            recency=w.recency * recency_signal,
            weakness=w.weakness if weak else 0.0,
        )

    def _reason(
        self,
        topic: TopicNode,
        snapshot: ProgressSnapshot | None,
        breakdown: ScoreBreakdown,
        unlocked: bool,
        mastery: Mapping[str, float],
    ) -> ReasonCode:
        if not unlocked:
            return ReasonCode.LOCKED
        signal = breakdown.dominant()
        if signal == "weakness":
            return ReasonCode.STRENGTHEN
        if signal == "gap":
            return ReasonCode.EXPLORE if snapshot is None else ReasonCode.STRENGTHEN
        if signal == "recency":
            return ReasonCode.REVIEW
        blocks_others = any(
            not self.graph.is_mastered(mastery, dependent)
            for dependent in self.graph.dependents(topic.id)
        )
        return ReasonCode.PREREQUISITE if blocks_others else ReasonCode.NEXT_IN_PATH

    def rank(
        self,
        progress: Mapping[str, ProgressSnapshot],
        subject_id: str | None = None,
        include_prerequisites: bool = False,
        weak_topic_ids: Collection[str] = (),
        weak_subject_ids: Collection[str] = (),
        now: datetime | None = None,
    ) -> list[Recommendation]:
        """
        Score and order every candidate topic.

        Args:
            progress: topic_id -> progress snapshot for the student
            subject_id: Restrict candidates to one subject
            include_prerequisites: Also return locked topics, with unlock paths
            weak_topic_ids: Externally flagged weak topics
            weak_subject_ids: Externally flagged weak subjects
            now: Reference time for recency

        Returns:
            All candidates, highest priority first
        """
        mastery = {topic_id: s.mastery_level for topic_id, s in progress.items()}
        derived_topics, derived_subjects = find_weak_areas(progress, self.weights)
        weak_topics = derived_topics | set(weak_topic_ids)
        weak_subjects = derived_subjects | set(weak_subject_ids)

        topics = self.graph.subject_topics(subject_id) if subject_id else self.graph.topics
        scored: list[tuple[tuple, Recommendation]] = []

        for topic in topics:
            if self.graph.is_mastered(mastery, topic.id):
                continue
            unlocked = self.graph.is_unlocked(mastery, topic.id)
            if not unlocked and not include_prerequisites:
                continue

            snapshot = progress.get(topic.id)
            weak = topic.id in weak_topics or topic.subject_id in weak_subjects
            breakdown = self.score(topic, snapshot, unlocked, weak, now)
            reason = self._reason(topic, snapshot, breakdown, unlocked, mastery)
            priority = round(breakdown.total, 6)

            recommendation = Recommendation(
                topic_id=topic.id,
                subject_id=topic.subject_id,
                topic_name=topic.name,
                reason_code=reason,
                priority=round(priority, 4),
                reason=reason.message,
                is_unlocked=unlocked,
                current_mastery=snapshot.mastery_level if snapshot else None,
                unlock_path=() if unlocked else tuple(self.graph.unlock_path(mastery, topic.id)),
            )
            scored.append(((-priority, topic.order_index, topic.subject_id, topic.id), recommendation))

        scored.sort(key=lambda item: item[0])
        return [recommendation for _, recommendation in scored]

    # ========================================================================
    # Store-backed entry point
    # ========================================================================

    def get_recommendations(
        self,
        session: Session,
        student_id: str,
        subject_id: str | None = None,
        limit: int | None = None,
        include_prerequisites: bool = False,
        weak_topic_ids: Collection[str] = (),
        weak_subject_ids: Collection[str] = (),
        now: datetime | None = None,
    ) -> RecommendationResult:
        """
        Ranked recommendations for a student.

        total counts every candidate before the limit is applied.

        Raises:
            NotFoundError: subject_id is not in the catalog
        """
        if subject_id is not None and subject_id not in self.graph.subject_ids:
            raise NotFoundError("subject", subject_id)

        # Prerequisites may cross subjects, so load every progress row
        progress = {
            snapshot.topic_id: snapshot
            for snapshot in self.tracker.list_progress(session, student_id)
        }
        ranked = self.rank(
            progress,
            subject_id=subject_id,
            include_prerequisites=include_prerequisites,
            weak_topic_ids=weak_topic_ids,
            weak_subject_ids=weak_subject_ids,
            now=now,
        )
        resolved_limit = self.policy.clamp_limit(limit)
        logger.debug(
            f"Recommendations for {student_id}: {len(ranked)} candidates, limit={resolved_limit}"
        )
        return RecommendationResult(recommendations=ranked[:resolved_limit], total=len(ranked))
