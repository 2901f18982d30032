"""
Centralized SQL Queries for the Progress Engine.

Aggregate read queries shared by achievement evaluation, progress summaries
and recommendations. Keeping them in one place makes it easy to audit which
tables feed which statistic.

Usage:
    from src.db.queries import QUERIES

    row = session.execute(text(QUERIES["session_totals"]), {"student_id": sid}).one()
"""

from __future__ import annotations

# =============================================================================
# SESSION LEDGER
# =============================================================================

# Lifetime session totals from the ledger (duplicates are never inserted)
GET_SESSION_TOTALS = """
    SELECT
        COUNT(*) as sessions_count,
        COALESCE(SUM(problems_correct), 0) as problems_solved,
        COALESCE(SUM(problems_attempted), 0) as problems_attempted,
        COALESCE(SUM(duration_minutes), 0) as total_time_minutes
    FROM learning_sessions
    WHERE student_id = :student_id
"""

# =============================================================================
# DAILY ACTIVITY
# =============================================================================

GET_POINTS_TOTAL = """
    SELECT COALESCE(SUM(points_earned), 0) as points_earned
    FROM daily_activity
    WHERE student_id = :student_id
"""

# =============================================================================
# MASTERY
# =============================================================================

GET_TOPICS_MASTERED = """
    SELECT COUNT(*) as topics_mastered
    FROM student_topic_progress
    WHERE student_id = :student_id
      AND mastery_level >= :mastered_level
"""

GET_TOPIC_MASTERY = """
    SELECT
        topic_id,
        subject_id,
        mastery_level,
        sessions_count,
        problems_attempted,
        problems_correct,
        last_practiced_at
    FROM student_topic_progress
    WHERE student_id = :student_id
    ORDER BY subject_id, topic_id
"""

# Pooled accuracy per subject, used to flag weak subjects
GET_SUBJECT_ACCURACY = """
    SELECT
        subject_id,
        COALESCE(SUM(problems_attempted), 0) as attempted,
        COALESCE(SUM(problems_correct), 0) as correct,
        COALESCE(SUM(sessions_count), 0) as sessions
    FROM student_topic_progress
    WHERE student_id = :student_id
    GROUP BY subject_id
"""

# =============================================================================
# QUERY REGISTRY
# =============================================================================

QUERIES = {
    # Ledger
    "session_totals": GET_SESSION_TOTALS,

    # Activity
    "points_total": GET_POINTS_TOTAL,

    # Mastery
    "topics_mastered": GET_TOPICS_MASTERED,
    "topic_mastery": GET_TOPIC_MASTERY,
    "subject_accuracy": GET_SUBJECT_ACCURACY,
}
