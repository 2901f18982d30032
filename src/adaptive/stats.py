"""
Aggregate statistics for achievement evaluation.

Always recomputed from the store inside the caller's transaction, so rules
see the state that includes the session that just ended.
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import text
from sqlalchemy.orm import Session

from src.adaptive.models import AggregateStats
from src.adaptive.prerequisite_graph import PrerequisiteGraph
from src.adaptive.streak_calculator import StreakCalculator
from src.core.mastery import subject_means
from src.core.policy import EnginePolicy
from src.db.queries import QUERIES


def collect_aggregate_stats(
    session: Session,
    student_id: str,
    graph: PrerequisiteGraph,
    policy: EnginePolicy,
    today: date | None = None,
) -> AggregateStats:
    """
    Build AggregateStats for one student.

    Args:
        session: Active session
        student_id: Student identifier
        graph: Current catalog graph (defines subject membership)
        policy: Engine policy (mastered level, milestones, timezone)
        today: Student-local date for the streak (defaults to now)
    """
    params = {"student_id": student_id}
    totals = session.execute(text(QUERIES["session_totals"]), params).one()
    points = session.execute(text(QUERIES["points_total"]), params).scalar()
    mastered = session.execute(
        text(QUERIES["topics_mastered"]),
        {**params, "mastered_level": policy.topic_mastered_level},
    ).scalar()

    rows = session.execute(text(QUERIES["topic_mastery"]), params).all()
    topic_mastery = {row.topic_id: float(row.mastery_level) for row in rows}

    streaks = StreakCalculator(policy)
    streak = streaks.current_streak(session, student_id, today)

    return AggregateStats(
        student_id=student_id,
        sessions_count=int(totals.sessions_count or 0),
        current_streak=streak,
        longest_streak=streaks.longest_streak(session, student_id),
        problems_solved=int(totals.problems_solved or 0),
        total_time_minutes=int(totals.total_time_minutes or 0),
        points_earned=int(points or 0),
        topics_mastered=int(mastered or 0),
        subject_mastery=subject_means((row.subject_id, float(row.mastery_level)) for row in rows),
        topic_mastery=topic_mastery,
        subject_topics={
            subject_id: [t.id for t in graph.subject_topics(subject_id)]
            for subject_id in graph.subject_ids
        },
        mastered_level=policy.topic_mastered_level,
    )
