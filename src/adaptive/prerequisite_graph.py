"""
Prerequisite Graph.

Read-only DAG of topics. An edge topic -> prerequisite means the prerequisite
must reach the mastery threshold before the topic unlocks.

The graph is built once from the catalog and shared by every request; when
the catalog changes it is rebuilt wholesale, never mutated in place.

Construction rejects:
- duplicate topic ids
- prerequisites that reference unknown topics
- cycles (three-color DFS; a back edge to a gray node is a cycle)
"""
from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from src.core.errors import ConfigurationError, NotFoundError

MasteryMap = Mapping[str, float]


@dataclass(frozen=True)
class TopicNode:
    """Catalog view of a topic."""

    id: str
    subject_id: str
    name: str = ""
    order_index: int = 0
    grade_level: int = 0
    difficulty: str = "MEDIUM"
    prerequisites: tuple[str, ...] = field(default_factory=tuple)


class _Color(Enum):
    WHITE = 0  # unvisited
    GRAY = 1  # on the current DFS path
    BLACK = 2  # fully explored


class PrerequisiteGraph:
    """
    Topic dependency graph with mastery-aware queries.

    All queries take the student's mastery map (topic_id -> 0..1); topics
    missing from the map count as never practiced (mastery 0).
    """

    def __init__(self, topics: Iterable[TopicNode], mastery_threshold: float = 0.6):
        self.mastery_threshold = mastery_threshold
        self._topics: dict[str, TopicNode] = {}
        for topic in topics:
            if topic.id in self._topics:
                raise ConfigurationError(f"Duplicate topic id in catalog: {topic.id}")
            self._topics[topic.id] = topic

        self._dependents: dict[str, list[str]] = {topic_id: [] for topic_id in self._topics}
        for topic in self._topics.values():
            for prereq_id in topic.prerequisites:
                if prereq_id not in self._topics:
                    raise ConfigurationError(
                        f"Topic {topic.id} references unknown prerequisite {prereq_id}"
                    )
                self._dependents[prereq_id].append(topic.id)

        self._check_acyclic()
        self._subject_index: dict[str, list[str]] = {}
        for topic in sorted(self._topics.values(), key=self._sort_key):
            self._subject_index.setdefault(topic.subject_id, []).append(topic.id)

        logger.debug(f"Prerequisite graph built: {len(self._topics)} topics")

    # ========================================================================
    # Construction helpers
    # ========================================================================

    def _check_acyclic(self) -> None:
        """Three-color iterative DFS over prerequisite edges."""
        color = {topic_id: _Color.WHITE for topic_id in self._topics}

        for root in sorted(self._topics):
            if color[root] is not _Color.WHITE:
                continue
            path: list[str] = [root]
            stack = [(root, iter(self._topics[root].prerequisites))]
            color[root] = _Color.GRAY

            while stack:
                node, children = stack[-1]
                advanced = False
                for child in children:
                    if color[child] is _Color.GRAY:
                        cycle = path[path.index(child):] + [child]
                        logger.error(f"Prerequisite cycle detected: {' -> '.join(cycle)}")
                        raise ConfigurationError(
                            f"Prerequisite graph contains a cycle: {' -> '.join(cycle)}"
                        )
                    if color[child] is _Color.WHITE:
                        color[child] = _Color.GRAY
                        path.append(child)
                        stack.append((child, iter(self._topics[child].prerequisites)))
                        advanced = True
                        break
                if not advanced:
                    color[node] = _Color.BLACK
                    path.pop()
                    stack.pop()

    def _sort_key(self, topic: TopicNode) -> tuple:
        return (topic.subject_id, topic.order_index, topic.id)

    # ========================================================================
    # Structure
    # ========================================================================

    def __contains__(self, topic_id: str) -> bool:
        return topic_id in self._topics

    def __len__(self) -> int:
        return len(self._topics)

    def get(self, topic_id: str) -> TopicNode:
        try:
            return self._topics[topic_id]
        except KeyError:
            raise NotFoundError("topic", topic_id) from None

    @property
    def topics(self) -> list[TopicNode]:
        return [self._topics[topic_id] for ids in self._subject_index.values() for topic_id in ids]

    @property
    def subject_ids(self) -> list[str]:
        return sorted(self._subject_index)

    def subject_topics(self, subject_id: str) -> list[TopicNode]:
        """Topics of a subject in syllabus order."""
        return [self._topics[topic_id] for topic_id in self._subject_index.get(subject_id, [])]

    def prerequisites(self, topic_id: str) -> tuple[str, ...]:
        return self.get(topic_id).prerequisites

    def dependents(self, topic_id: str) -> list[str]:
        """Topics that list topic_id as a direct prerequisite."""
        self.get(topic_id)
        return list(self._dependents[topic_id])

    def topological_order(self) -> list[str]:
        """All topics, prerequisites before dependents, ties by subject/order_index."""
        indegree = {topic_id: len(node.prerequisites) for topic_id, node in self._topics.items()}
        heap = [self._sort_key(self._topics[t]) for t, deg in indegree.items() if deg == 0]
        heapq.heapify(heap)
        order: list[str] = []
        while heap:
            *_, topic_id = heapq.heappop(heap)
            order.append(topic_id)
            for dependent in self._dependents[topic_id]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(heap, self._sort_key(self._topics[dependent]))
        return order

    # ========================================================================
    # Mastery-aware queries
    # ========================================================================

    def is_mastered(self, mastery: MasteryMap, topic_id: str) -> bool:
        return mastery.get(topic_id, 0.0) >= self.mastery_threshold

    def blocking_prerequisites(self, mastery: MasteryMap, topic_id: str) -> list[str]:
        """Direct prerequisites still below the threshold."""
        return [p for p in self.prerequisites(topic_id) if not self.is_mastered(mastery, p)]

    def is_unlocked(self, mastery: MasteryMap, topic_id: str) -> bool:
        """
        A topic is unlocked when every direct prerequisite is at or above the
        mastery threshold. Topics without prerequisites are always unlocked.
        """
        return not self.blocking_prerequisites(mastery, topic_id)

    def ready_topics(self, mastery: MasteryMap, subject_id: str | None = None) -> list[str]:
        """
        Unlocked topics the student has not yet mastered, in syllabus order.

        Args:
            mastery: topic_id -> mastery level
            subject_id: Restrict to one subject (None for all subjects)
        """
        subjects = [subject_id] if subject_id is not None else self.subject_ids
        ready = []
        for sid in subjects:
            for topic in self.subject_topics(sid):
                if self.is_mastered(mastery, topic.id):
                    continue
                if self.is_unlocked(mastery, topic.id):
                    ready.append(topic.id)
        return ready

    def unlock_path(self, mastery: MasteryMap, target_topic_id: str) -> list[str]:
        """
        Minimal ordered list of unmastered prerequisites to study before the
        target unlocks.

        The path is the closure of unmastered prerequisites (mastered topics
        stop the walk). It is emitted in topological order; among topics that
        are available at the same time the one nearest the target comes first,
        then order_index.

        Returns:
            Empty list when the target is already unlocked
        """
        if self.is_unlocked(mastery, target_topic_id):
            return []

        # BFS distance from the target over unmastered prerequisites
        distance: dict[str, int] = {}
        queue = deque(
            (p, 1) for p in self.prerequisites(target_topic_id) if not self.is_mastered(mastery, p)
        )
        while queue:
            topic_id, depth = queue.popleft()
            if topic_id in distance:
                continue
            distance[topic_id] = depth
            for prereq_id in self._topics[topic_id].prerequisites:
                if prereq_id not in distance and not self.is_mastered(mastery, prereq_id):
                    queue.append((prereq_id, depth + 1))

        remaining = {
            topic_id: sum(1 for p in self._topics[topic_id].prerequisites if p in distance)
            for topic_id in distance
        }

        def key(topic_id: str) -> tuple:
            return (distance[topic_id], self._topics[topic_id].order_index, topic_id)

        heap = [key(t) for t, count in remaining.items() if count == 0]
        heapq.heapify(heap)
        path: list[str] = []
        while heap:
            *_, topic_id = heapq.heappop(heap)
            path.append(topic_id)
            for dependent in self._dependents[topic_id]:
                if dependent in remaining:
                    remaining[dependent] -= 1
                    if remaining[dependent] == 0:
                        heapq.heappush(heap, key(dependent))
        return path
