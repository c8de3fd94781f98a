"""Service deriving learner statistics and the review list."""
import logging
from datetime import UTC, date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from lingotrack.config import settings
from lingotrack.models.base import ensure_utc, utcnow
from lingotrack.models.models import KeywordProgress, LearningSession
from lingotrack.models.progress_models import DailyActivity, LearningStats
from lingotrack.services.aggregator import ProgressAggregator

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def local_date(value: datetime) -> date:
    """Calendar day of a stored timestamp on the local clock."""
    return ensure_utc(value).astimezone().date()


def calculate_streak(study_dates: Iterable[date], today: Optional[date] = None) -> int:
    """Count consecutive study days ending today.

    A day without study yet still keeps yesterday's streak alive; the first
    missing day ends the count.
    """
    today = today or date.today()
    dates = sorted(set(study_dates), reverse=True)
    if not dates:
        return 0

    expected = today if today in dates else today - ONE_DAY
    streak = 0
    for study_date in dates:
        if study_date > expected:
            continue
        if study_date != expected:
            break
        streak += 1
        expected -= ONE_DAY
    return streak


def calculate_longest_streak(study_dates: Iterable[date]) -> int:
    """Length of the longest run of consecutive study days."""
    dates = sorted(set(study_dates))
    longest = 0
    current = 0
    previous: Optional[date] = None
    for study_date in dates:
        current = current + 1 if previous and study_date - previous == ONE_DAY else 1
        longest = max(longest, current)
        previous = study_date
    return longest


class StatsService:
    """Service for learner statistics and review selection."""

    def __init__(self, db: Session, aggregator: Optional[ProgressAggregator] = None):
        """Initialize the service with a database session."""
        self.db = db
        self.aggregator = aggregator or ProgressAggregator(db)

    def get_study_dates(self, user_id: str) -> Set[date]:
        """Get the distinct local days with any study activity."""
        dates: Set[date] = set()
        sessions = (
            self.db.query(LearningSession.start_time)
            .filter(LearningSession.user_id == user_id)
            .all()
        )
        for (start_time,) in sessions:
            dates.add(local_date(start_time))

        reviews = (
            self.db.query(KeywordProgress.last_reviewed)
            .filter(
                KeywordProgress.user_id == user_id,
                KeywordProgress.last_reviewed.isnot(None),
            )
            .all()
        )
        for (last_reviewed,) in reviews:
            dates.add(local_date(last_reviewed))
        return dates

    def get_learning_stats(self, user_id: str, today: Optional[date] = None) -> LearningStats:
        """Get learning statistics for a user."""
        records = (
            self.db.query(KeywordProgress)
            .filter(KeywordProgress.user_id == user_id)
            .all()
        )
        study_dates = self.get_study_dates(user_id)
        week_ago = utcnow() - timedelta(days=7)
        sessions_this_week = sum(
            1
            for (start_time,) in self.db.query(LearningSession.start_time)
            .filter(LearningSession.user_id == user_id)
            .all()
            if ensure_utc(start_time) > week_ago
        )
        overall = self.aggregator.aggregate_user(user_id)

        return LearningStats(
            total_time_spent=sum(record.total_time_spent or 0.0 for record in records),
            total_keywords_learned=sum(1 for record in records if record.unlocked),
            overall_accuracy=overall.overall_accuracy,
            current_streak=calculate_streak(study_dates, today),
            sessions_this_week=sessions_this_week,
            longest_streak=calculate_longest_streak(study_dates),
        )

    def get_weekly_activity(self, user_id: str, today: Optional[date] = None) -> List[DailyActivity]:
        """Get per-day activity for the seven days ending today."""
        today = today or date.today()
        first_day = today - timedelta(days=6)
        days: Dict[date, DailyActivity] = {
            first_day + timedelta(days=offset): DailyActivity(date=first_day + timedelta(days=offset))
            for offset in range(7)
        }

        sessions = (
            self.db.query(LearningSession)
            .filter(LearningSession.user_id == user_id)
            .all()
        )
        for session in sessions:
            day = days.get(local_date(session.start_time))
            if day is None:
                continue
            day.sessions += 1
            day.answers += session.total_attempts or 0
            day.time_spent += session.time_spent or 0.0

        return [days[key] for key in sorted(days)]

    def get_keywords_for_review(
        self, user_id: str, now: Optional[datetime] = None
    ) -> List[KeywordProgress]:
        """Get unlocked, unmastered keywords that are stale or weak; oldest first."""
        now = ensure_utc(now) if now else utcnow()
        cutoff = now - timedelta(days=settings.review.recency_window_days)
        candidates = (
            self.db.query(KeywordProgress)
            .filter(
                KeywordProgress.user_id == user_id,
                KeywordProgress.unlocked.is_(True),
                KeywordProgress.mastered.is_(False),
            )
            .all()
        )

        due = []
        for record in candidates:
            last_reviewed = ensure_utc(record.last_reviewed)
            stale = last_reviewed is None or last_reviewed < cutoff
            weak = record.accuracy < settings.review.accuracy_threshold
            if stale or weak:
                due.append(record)

        due.sort(key=lambda record: ensure_utc(record.last_reviewed) or datetime.min.replace(tzinfo=UTC))
        logger.debug("User %s has %d keywords due for review", user_id, len(due))
        return due
