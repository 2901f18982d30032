"""
Streak Calculator.

Daily-activity ledger and streak arithmetic.

Rules:
- A streak counts consecutive local calendar days with a DailyActivityRecord,
  walking backwards from today (or from yesterday while today is still open).
- The first activity of a day creates that day's record with
  streak_day = yesterday's streak_day + 1 (or 1 after a gap). Later activity
  the same day only increments counters.
- Within a run of consecutive days streak_day is the position in the run.
  A day that arrives late and joins a run to the days after it shifts those
  days' streak_day up, so records are only ever renumbered upwards.
- A milestone is reached when a new record lengthens its run past a
  configured threshold that neither joined part had reached.
- Longest streak = max(streak_day) ever recorded, so it never decreases.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from src.adaptive.models import StreakInfo, StreakUpdate
from src.core.policy import EnginePolicy
from src.db.models import DailyActivityRecord, Student
from src.db.utils import insert_if_absent


def count_consecutive_days(active_days: Iterable[date], today: date) -> int:
    """
    Length of the streak ending today, or yesterday if today has no activity.

    Args:
        active_days: Days with recorded activity (any order)
        today: The student's current local date

    Returns:
        Number of consecutive active days; 0 when neither today nor
        yesterday had activity
    """
    days = set(active_days)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def week_start(day: date) -> date:
    """Sunday on or before the given day."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


class StreakCalculator:
    """Stateless streak service over the daily_activity table."""

    def __init__(self, policy: EnginePolicy | None = None):
        self.policy = policy or EnginePolicy()

    # ========================================================================
    # Calendar
    # ========================================================================

    def resolve_timezone(self, tz_name: str | None) -> ZoneInfo:
        """Student timezone, falling back to the policy default on unknown names."""
        if tz_name:
            try:
                return ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(f"Unknown timezone {tz_name!r}, using {self.policy.default_timezone}")
        return ZoneInfo(self.policy.default_timezone)

    def local_date(self, timestamp: datetime, tz_name: str | None = None) -> date:
        """Calendar date of a timestamp in the student's timezone (naive = UTC)."""
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return timestamp.astimezone(self.resolve_timezone(tz_name)).date()

    def today_for(self, session: Session, student_id: str, now: datetime | None = None) -> date:
        tz_name = session.execute(
            select(Student.timezone).where(Student.id == student_id)
        ).scalar_one_or_none()
        return self.local_date(now or datetime.now(UTC), tz_name)

    # ========================================================================
    # Milestones
    # ========================================================================

    def milestone_for(self, run_length: int, reached_before: int | None = None) -> int | None:
        """
        The highest milestone newly crossed when a run grows to run_length.

        reached_before is the longest length the run's parts already had;
        it defaults to run_length - 1 (the run grew by one day at its end).
        """
        if reached_before is None:
            reached_before = run_length - 1
        crossed = [m for m in self.policy.streak_milestones if reached_before < m <= run_length]
        return max(crossed) if crossed else None

    def next_milestone(self, streak: int) -> int | None:
        return next((m for m in self.policy.streak_milestones if m > streak), None)

    # ========================================================================
    # Writes
    # ========================================================================

    def record_activity(
        self,
        session: Session,
        student_id: str,
        activity_date: date,
        minutes: int,
        points: int,
        sessions: int = 1,
    ) -> StreakUpdate:
        """
        Record learning activity for a local calendar day.

        Args:
            session: Active transaction
            student_id: Student identifier
            activity_date: Student-local date of the activity
            minutes: Minutes learned
            points: Points earned
            sessions: Sessions to add to the day's counter

        Returns:
            StreakUpdate describing the streak after this activity
        """
        yesterday = self._get_record(session, student_id, activity_date - timedelta(days=1))
        previous_streak = yesterday.streak_day if yesterday else 0
        streak_day = previous_streak + 1

        created = insert_if_absent(
            session,
            DailyActivityRecord,
            {
                "student_id": student_id,
                "activity_date": activity_date,
                "minutes_learned": minutes,
                "sessions_count": sessions,
                "points_earned": points,
                "streak_day": streak_day,
            },
            conflict_columns=("student_id", "activity_date"),
        )

        if created:
            following = self._following_run_length(session, student_id, activity_date)
            if following:
                self._shift_following_run(session, student_id, activity_date, following, streak_day)
            milestone = self.milestone_for(
                streak_day + following, reached_before=max(previous_streak, following)
            )
            streak_continued = previous_streak > 0
            if milestone:
                logger.info(f"Streak milestone: student={student_id} days={milestone}")
        else:
            session.execute(
                update(DailyActivityRecord)
                .where(
                    DailyActivityRecord.student_id == student_id,
                    DailyActivityRecord.activity_date == activity_date,
                )
                .values(
                    minutes_learned=DailyActivityRecord.minutes_learned + minutes,
                    sessions_count=DailyActivityRecord.sessions_count + sessions,
                    points_earned=DailyActivityRecord.points_earned + points,
                )
                .execution_options(synchronize_session=False)
            )
            milestone = None
            streak_continued = False

        return StreakUpdate(
            streak_continued=streak_continued,
            current_streak=self.current_streak(session, student_id, activity_date),
            longest_streak=self.longest_streak(session, student_id),
            milestone_reached=milestone is not None,
            milestone=milestone,
            activity_date=activity_date,
        )

    def _following_run_length(self, session: Session, student_id: str, activity_date: date) -> int:
        """Consecutive recorded days immediately after activity_date."""
        later = session.execute(
            select(DailyActivityRecord.activity_date)
            .where(
                DailyActivityRecord.student_id == student_id,
                DailyActivityRecord.activity_date > activity_date,
            )
            .order_by(DailyActivityRecord.activity_date)
        ).scalars()
        length = 0
        for day in later:
            if day != activity_date + timedelta(days=length + 1):
                break
            length += 1
        return length

    def _shift_following_run(
        self,
        session: Session,
        student_id: str,
        activity_date: date,
        length: int,
        offset: int,
    ) -> None:
        # The following run was numbered from 1, so adding the new day's
        # streak_day makes the joined run consecutive again.
        session.execute(
            update(DailyActivityRecord)
            .where(
                DailyActivityRecord.student_id == student_id,
                DailyActivityRecord.activity_date > activity_date,
                DailyActivityRecord.activity_date <= activity_date + timedelta(days=length),
            )
            .values(streak_day=DailyActivityRecord.streak_day + offset)
            .execution_options(synchronize_session=False)
        )
        logger.debug(
            f"Late activity joined runs: student={student_id} date={activity_date} "
            f"renumbered {length} following day(s)"
        )

    # ========================================================================
    # Reads
    # ========================================================================

    def _get_record(
        self, session: Session, student_id: str, activity_date: date
    ) -> DailyActivityRecord | None:
        return session.execute(
            select(DailyActivityRecord)
            .where(
                DailyActivityRecord.student_id == student_id,
                DailyActivityRecord.activity_date == activity_date,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def current_streak(self, session: Session, student_id: str, today: date | None = None) -> int:
        """
        Consecutive active days ending today (or yesterday).

        Args:
            session: Active session
            student_id: Student identifier
            today: Student-local date (defaults to now in the student's timezone)
        """
        if today is None:
            today = self.today_for(session, student_id)
        days = session.execute(
            select(DailyActivityRecord.activity_date)
            .where(
                DailyActivityRecord.student_id == student_id,
                DailyActivityRecord.activity_date <= today,
            )
            .order_by(DailyActivityRecord.activity_date.desc())
        ).scalars()
        return count_consecutive_days(days, today)

    def longest_streak(self, session: Session, student_id: str) -> int:
        longest = session.execute(
            select(func.max(DailyActivityRecord.streak_day)).where(
                DailyActivityRecord.student_id == student_id
            )
        ).scalar()
        return int(longest or 0)

    def streak_info(self, session: Session, student_id: str, today: date | None = None) -> StreakInfo:
        """Streak state for display: at-risk flag and next milestone."""
        if today is None:
            today = self.today_for(session, student_id)
        current = self.current_streak(session, student_id, today)
        today_record = self._get_record(session, student_id, today)
        active_today = today_record is not None
        next_milestone = self.next_milestone(current)

        return StreakInfo(
            current_streak=current,
            longest_streak=self.longest_streak(session, student_id),
            streak_at_risk=not active_today and current > 0,
            active_today=active_today,
            today_minutes=today_record.minutes_learned if today_record else 0,
            next_milestone=next_milestone,
            days_to_next_milestone=(next_milestone - current) if next_milestone else None,
        )

    def weekly_engagement(
        self, session: Session, student_id: str, today: date | None = None
    ) -> dict[str, Any]:
        """Activity since the start of the current week (Sunday)."""
        if today is None:
            today = self.today_for(session, student_id)
        start = week_start(today)
        records = session.execute(
            select(DailyActivityRecord)
            .where(
                DailyActivityRecord.student_id == student_id,
                DailyActivityRecord.activity_date >= start,
                DailyActivityRecord.activity_date <= today,
            )
            .order_by(DailyActivityRecord.activity_date)
        ).scalars().all()

        total_minutes = sum(r.minutes_learned for r in records)
        days_active = sum(1 for r in records if r.minutes_learned > 0)
        return {
            "week_start": start.isoformat(),
            "total_minutes": total_minutes,
            "days_active": days_active,
            "average_minutes": round(total_minutes / days_active) if days_active else 0,
            "activities": [
                {
                    "date": r.activity_date.isoformat(),
                    "minutes": r.minutes_learned,
                    "sessions": r.sessions_count,
                    "streak": r.streak_day,
                }
                for r in records
            ],
        }
