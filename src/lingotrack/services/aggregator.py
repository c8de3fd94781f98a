"""Aggregation of per-keyword records into story, theme and overall progress."""
import logging
import math
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from lingotrack.config import settings
from lingotrack.models.models import KeywordProgress, LearningSession, Story, Theme
from lingotrack.models.progress_models import (
    OverallProgress,
    StoryProgress,
    StoryStatus,
    ThemeProgress,
)

logger = logging.getLogger(__name__)


def _non_negative(value: Optional[float]) -> float:
    """Clamp missing and negative values to zero."""
    if value is None or value < 0 or math.isnan(value):
        return 0
    return value


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def compute_story_progress(
    records: Iterable[KeywordProgress],
    total_keywords: Optional[int] = None,
    story_id: Optional[str] = None,
    theme_id: Optional[str] = None,
) -> StoryProgress:
    """Compute the progress of a story from its keyword records.

    A keyword counts as completed once it is unlocked. The denominator is the
    catalogue keyword count, or the number of records when the catalogue knows
    fewer keywords than the learner has already attempted.
    """
    records = list(records)
    completed = sum(1 for record in records if record.unlocked)
    total = max(int(_non_negative(total_keywords)), len(records))
    attempted = [record for record in records if (record.attempts or 0) > 0]

    if total > 0 and completed >= total:
        status = StoryStatus.COMPLETED
    elif completed > 0 or attempted:
        status = StoryStatus.IN_PROGRESS
    else:
        status = StoryStatus.NOT_STARTED

    if records:
        story_id = story_id or records[0].story_id
        theme_id = theme_id or records[0].theme_id

    return StoryProgress(
        story_id=story_id,
        theme_id=theme_id,
        completed_keywords=min(completed, total),
        total_keywords=total,
        status=status,
        average_accuracy=_mean([min(max(r.accuracy or 0.0, 0.0), 1.0) for r in attempted]),
        total_time_spent=sum(_non_negative(r.total_time_spent) for r in records),
        attempted_keywords=len(attempted),
    )


def compute_theme_progress(
    stories: Iterable[StoryProgress],
    theme_id: Optional[str] = None,
) -> ThemeProgress:
    """Compute the progress of a theme from its stories.

    Average accuracy is the unweighted mean of per-story averages over the
    stories the learner has started, not an attempt-weighted mean.
    """
    stories = list(stories)
    if stories and theme_id is None:
        theme_id = stories[0].theme_id

    completed = 0
    keywords_learned = 0
    for story in stories:
        story_total = int(_non_negative(story.total_keywords))
        story_completed = min(int(_non_negative(story.completed_keywords)), story_total)
        keywords_learned += story_completed
        if story_total > 0 and story_completed == story_total:
            completed += 1

    active = [story for story in stories if story.has_activity]
    return ThemeProgress(
        theme_id=theme_id,
        total_stories=len(stories),
        completed_stories=completed,
        total_keywords_learned=keywords_learned,
        average_accuracy=_mean([story.average_accuracy for story in active]),
        total_time_spent=sum(_non_negative(story.total_time_spent) for story in stories),
        attempted_keywords=sum(int(_non_negative(story.attempted_keywords)) for story in stories),
        stories=stories,
    )


def compute_overall_progress(
    themes: Iterable[ThemeProgress],
    user_id: Optional[str] = None,
) -> OverallProgress:
    """Compute overall progress; no themes or no stories yields 0%."""
    themes = list(themes)
    total_stories = sum(int(_non_negative(theme.total_stories)) for theme in themes)
    completed_stories = sum(
        min(int(_non_negative(theme.completed_stories)), int(_non_negative(theme.total_stories)))
        for theme in themes
    )
    percentage = (
        round_half_up(completed_stories / total_stories * 100) if total_stories > 0 else 0
    )
    active = [theme for theme in themes if theme.attempted_keywords > 0]

    return OverallProgress(
        user_id=user_id,
        themes=themes,
        total_stories=total_stories,
        completed_stories=completed_stories,
        percentage=percentage,
        total_keywords_learned=sum(
            int(_non_negative(theme.total_keywords_learned)) for theme in themes
        ),
        total_time_spent=sum(_non_negative(theme.total_time_spent) for theme in themes),
        overall_accuracy=_mean([theme.average_accuracy for theme in active]),
    )


class ProgressAggregator:
    """Service computing progress views for a user with a short-lived cache."""

    def __init__(self, db: Session, cache_ttl: Optional[float] = None):
        """Initialize the service with a database session."""
        self.db = db
        self.cache_ttl = settings.sync.cache_ttl_seconds if cache_ttl is None else cache_ttl
        self._cache: Dict[str, Tuple[float, OverallProgress]] = {}

    def get_keyword_records(
        self, user_id: str, story_id: Optional[str] = None
    ) -> List[KeywordProgress]:
        """Get keyword records of a user, optionally for one story."""
        query = self.db.query(KeywordProgress).filter(KeywordProgress.user_id == user_id)
        if story_id is not None:
            query = query.filter(KeywordProgress.story_id == story_id)
        return query.all()

    def get_story_progress(self, user_id: str, story_id: str) -> StoryProgress:
        """Compute progress of a single story for a user."""
        story = self.db.query(Story).filter(Story.id == story_id).first()
        records = self.get_keyword_records(user_id, story_id)
        progress = compute_story_progress(
            records,
            total_keywords=story.keyword_count if story else None,
            story_id=story_id,
            theme_id=story.theme_id if story else None,
        )
        progress.active_session_id = self._active_session_ids(user_id).get(story_id)
        return progress

    def aggregate_user(self, user_id: str) -> OverallProgress:
        """Compute the overall progress of a user, served from cache while fresh."""
        cached = self._cache.get(user_id)
        if cached is not None and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]

        records_by_story: Dict[str, List[KeywordProgress]] = defaultdict(list)
        for record in self.get_keyword_records(user_id):
            records_by_story[record.story_id].append(record)

        active_sessions = self._active_session_ids(user_id)
        stories_by_theme: Dict[str, List[StoryProgress]] = defaultdict(list)
        theme_ids: List[str] = [theme.id for theme in self.db.query(Theme).order_by(Theme.id)]

        for story in self.db.query(Story).order_by(Story.id).all():
            progress = compute_story_progress(
                records_by_story.pop(story.id, []),
                total_keywords=story.keyword_count,
                story_id=story.id,
                theme_id=story.theme_id,
            )
            progress.active_session_id = active_sessions.get(story.id)
            stories_by_theme[story.theme_id].append(progress)

        # Stories the learner touched that the catalogue does not know about
        for story_id, records in records_by_story.items():
            logger.warning("Story %s not found in catalogue, using %d keyword records", story_id, len(records))
            progress = compute_story_progress(records, story_id=story_id)
            progress.active_session_id = active_sessions.get(story_id)
            stories_by_theme[progress.theme_id].append(progress)

        for theme_id in stories_by_theme:
            if theme_id not in theme_ids:
                theme_ids.append(theme_id)

        themes = [
            compute_theme_progress(stories_by_theme.get(theme_id, []), theme_id=theme_id)
            for theme_id in theme_ids
        ]
        overall = compute_overall_progress(themes, user_id=user_id)
        self._cache[user_id] = (time.monotonic(), overall)
        logger.debug(
            "Aggregated progress for user %s: %d/%d stories (%d%%)",
            user_id,
            overall.completed_stories,
            overall.total_stories,
            overall.percentage,
        )
        return overall

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop cached views for a user, or for everyone."""
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

    def _active_session_ids(self, user_id: str) -> Dict[str, str]:
        sessions = (
            self.db.query(LearningSession)
            .filter(
                LearningSession.user_id == user_id,
                LearningSession.is_active.is_(True),
            )
            .all()
        )
        return {session.story_id: session.id for session in sessions}
