"""Service owning the learner's active session and its recovery snapshot."""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, Set, Union

from sqlalchemy.orm import Session

from lingotrack.config import settings
from lingotrack.errors import (
    ConflictError,
    RecoveryExpiredError,
    SessionNotFoundError,
    StoreQuotaExceededError,
)
from lingotrack.models.base import ensure_utc, utcnow
from lingotrack.models.models import KeywordProgress, LearningSession
from lingotrack.models.progress_models import (
    Expired,
    KeywordDelta,
    LearningMode,
    NoRecovery,
    ProgressSnapshot,
    RecoveryState,
    Resumable,
    SessionEndReason,
    SessionRecoveryData,
    StoryStatus,
)
from lingotrack.monitoring import (
    active_sessions,
    answers_recorded,
    keywords_mastered,
    recovery_outcomes,
    sessions_ended,
    sessions_started,
    store_operations,
    sync_failures,
)
from lingotrack.services.aggregator import ProgressAggregator
from lingotrack.services.events import (
    MILESTONE_REACHED,
    SESSION_ENDED,
    SESSION_STARTED,
    EventEmitter,
)
from lingotrack.services.progress_store import ProgressStore
from lingotrack.services.remote import RemoteProgressService

logger = logging.getLogger(__name__)

# Tolerance for running-average rounding at the mastery boundary
_EPSILON = 1e-9


def recovery_key(user_id: str) -> str:
    """Store key of a user's session recovery snapshot."""
    return f"session_recovery:{user_id}"


class SessionManager:
    """Service managing the single active learning session of each user."""

    def __init__(
        self,
        db: Session,
        store: ProgressStore,
        aggregator: Optional[ProgressAggregator] = None,
        remote: Optional[RemoteProgressService] = None,
        events: Optional[EventEmitter] = None,
    ):
        """Initialize the service with a database session and its collaborators."""
        self.db = db
        self.store = store
        self.aggregator = aggregator or ProgressAggregator(db)
        self.remote = remote
        self.events = events or EventEmitter()
        self.mastery_threshold = settings.session.mastery_threshold
        self.recovery_window = timedelta(hours=settings.session.recovery_window_hours)
        # Sessions started by this manager and counted in the active gauge
        self._live_sessions: Set[str] = set()

    def get_session(self, session_id: str) -> Optional[LearningSession]:
        """Get a session by its ID."""
        return self.db.query(LearningSession).filter(LearningSession.id == session_id).first()

    def get_active_session(self, user_id: str) -> Optional[LearningSession]:
        """Get the user's active learning session."""
        return (
            self.db.query(LearningSession)
            .filter(
                LearningSession.user_id == user_id,
                LearningSession.is_active.is_(True),
            )
            .first()
        )

    def start_session(
        self,
        user_id: str,
        story_id: str,
        theme_id: str,
        mode: Union[LearningMode, str],
    ) -> LearningSession:
        """Start a learning session; fails if one is already active for the user."""
        session = self._create_session(user_id, story_id, theme_id, LearningMode(mode))
        self._emit_session_started(session)
        return session

    async def record_answer(
        self,
        session_id: str,
        keyword_id: str,
        is_correct: bool,
        time_spent: float,
    ) -> KeywordProgress:
        """Record an answer to a keyword within an active session."""
        session = self.get_session(session_id)
        if not session or not session.is_active:
            raise SessionNotFoundError(session_id)

        time_spent = max(float(time_spent or 0.0), 0.0)
        now = utcnow()

        record = self._get_or_create_keyword(session, keyword_id)
        was_mastered = record.mastered
        was_unlocked = record.unlocked

        # Running average over all attempts
        score = 1.0 if is_correct else 0.0
        accuracy = (record.accuracy * record.attempts + score) / (record.attempts + 1)
        record.accuracy = min(max(accuracy, 0.0), 1.0)
        record.attempts += 1
        if is_correct:
            record.correct_attempts += 1
            record.unlocked = True
        record.mastered = self.is_mastered(record.accuracy)
        record.total_time_spent += time_spent
        record.last_reviewed = now
        record.next_review = now + timedelta(days=settings.review.recency_window_days)

        session.total_attempts += 1
        if is_correct:
            session.correct_attempts += 1
        session.time_spent += time_spent
        session.keywords_attempted = list(session.keywords_attempted or []) + [keyword_id]
        completed = list(session.keywords_completed or [])
        if is_correct and keyword_id not in completed:
            session.keywords_completed = completed + [keyword_id]

        self.db.commit()
        self.db.refresh(record)

        self._save_recovery(session, can_recover=True)
        self.aggregator.invalidate(session.user_id)
        answers_recorded.labels(correct=str(bool(is_correct)).lower()).inc()
        logger.info(
            "User %s answered %s/%s %s (accuracy %.2f after %d attempts)",
            session.user_id,
            session.story_id,
            keyword_id,
            "correctly" if is_correct else "incorrectly",
            record.accuracy,
            record.attempts,
        )

        if record.mastered and not was_mastered:
            keywords_mastered.inc()
            self.events.emit(MILESTONE_REACHED, {
                "type": "keyword_mastered",
                "user_id": session.user_id,
                "story_id": session.story_id,
                "keyword_id": keyword_id,
                "accuracy": record.accuracy,
            })
        if record.unlocked and not was_unlocked:
            self._check_unlock_milestones(session)

        await self._push_update(session, record, is_correct, time_spent)
        return record

    def end_session(
        self,
        session_id: str,
        reason: Union[SessionEndReason, str] = SessionEndReason.COMPLETED,
    ) -> None:
        """End a session. Ending an unknown or already ended session is a no-op."""
        reason = SessionEndReason(reason)
        session = self.get_session(session_id)
        if not session or not session.is_active:
            logger.debug("Session %s is not active, nothing to end", session_id)
            return

        session.is_active = False
        session.is_completed = reason == SessionEndReason.COMPLETED
        session.end_reason = reason.value
        session.end_time = utcnow()
        self.db.commit()

        # An explicit interruption (app sent to background) stays resumable
        self._save_recovery(session, can_recover=reason == SessionEndReason.INTERRUPTED)

        self.aggregator.invalidate(session.user_id)
        self.aggregator.aggregate_user(session.user_id)

        self._release_active(session)
        sessions_ended.labels(reason=reason.value).inc()
        self._emit_session_ended(session)
        logger.info("Ended session %s for user %s: %s", session.id, session.user_id, reason.value)

    def load_recovery_data(self, user_id: str) -> Optional[SessionRecoveryData]:
        """Read the user's recovery snapshot from the store."""
        data = self.store.get(recovery_key(user_id))
        if not data:
            return None
        try:
            return SessionRecoveryData.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.error("Discarding malformed recovery snapshot for user %s: %s", user_id, str(e))
            self.discard_recovery(user_id)
            return None

    def detect_recovery_state(self, user_id: str) -> RecoveryState:
        """Classify the user's recovery snapshot; run once at startup.

        A resumable snapshot whose session was never ended means the process
        was killed mid-session, so that session is closed as interrupted here.
        """
        snapshot = self.load_recovery_data(user_id)
        if snapshot is None or not snapshot.can_recover:
            recovery_outcomes.labels(outcome="none").inc()
            return NoRecovery()

        session = self.get_session(snapshot.session_id)
        if session is not None and not session.is_active \
                and session.end_reason != SessionEndReason.INTERRUPTED.value:
            logger.info("Session %s already ended, discarding its snapshot", session.id)
            self.discard_recovery(user_id)
            recovery_outcomes.labels(outcome="none").inc()
            return NoRecovery()

        if session is not None and session.is_active:
            self._mark_interrupted(session, snapshot.saved_at)

        if self._is_expired(snapshot):
            logger.info("Recovery snapshot for session %s has expired", snapshot.session_id)
            recovery_outcomes.labels(outcome="expired").inc()
            return Expired(snapshot)

        logger.info("Session %s of user %s can be resumed", snapshot.session_id, user_id)
        recovery_outcomes.labels(outcome="resumable").inc()
        return Resumable(snapshot)

    def recover_session(self, recovery_data: SessionRecoveryData) -> LearningSession:
        """Resume an interrupted session from its snapshot as a new active session."""
        if self._is_expired(recovery_data):
            raise RecoveryExpiredError(recovery_data.session_id, recovery_data.saved_at)

        previous = self.get_session(recovery_data.session_id)
        if previous is not None and previous.is_active:
            self._mark_interrupted(previous, recovery_data.saved_at)

        session = self._create_session(
            recovery_data.user_id,
            recovery_data.story_id,
            recovery_data.theme_id,
            recovery_data.mode,
        )
        snapshot = recovery_data.progress_snapshot
        session.keywords_attempted = list(snapshot.keywords_attempted or snapshot.completed_keywords)
        session.keywords_completed = list(snapshot.completed_keywords)
        session.total_attempts = snapshot.attempts
        session.correct_attempts = snapshot.correct_attempts
        session.time_spent = snapshot.time_spent
        session.recovered_from = recovery_data.session_id
        self.db.commit()

        # Overwrites, and so consumes, the old snapshot
        self._save_recovery(session, can_recover=True)
        recovery_outcomes.labels(outcome="recovered").inc()
        self._emit_session_started(session)
        logger.info("Recovered session %s as %s", recovery_data.session_id, session.id)
        return session

    def discard_recovery(self, user_id: str) -> None:
        """Drop the user's recovery snapshot."""
        self.store.remove(recovery_key(user_id))

    def is_mastered(self, accuracy: float) -> bool:
        """Check whether an accuracy reaches the mastery threshold."""
        return accuracy >= self.mastery_threshold - _EPSILON

    def _create_session(
        self,
        user_id: str,
        story_id: str,
        theme_id: str,
        mode: LearningMode,
    ) -> LearningSession:
        active = self.get_active_session(user_id)
        if active:
            raise ConflictError(user_id, active.id)

        session = LearningSession(
            id=f"session_{uuid.uuid4().hex}",
            user_id=user_id,
            story_id=story_id,
            theme_id=theme_id,
            mode=mode.value,
            start_time=utcnow(),
            is_active=True,
            is_completed=False,
            total_attempts=0,
            correct_attempts=0,
            time_spent=0.0,
            keywords_attempted=[],
            keywords_completed=[],
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)

        self._save_recovery(session, can_recover=True)
        self.aggregator.invalidate(user_id)
        active_sessions.inc()
        self._live_sessions.add(session.id)
        sessions_started.labels(mode=mode.value).inc()
        logger.info("Started session %s for user %s on story %s", session.id, user_id, story_id)
        return session

    def _get_or_create_keyword(self, session: LearningSession, keyword_id: str) -> KeywordProgress:
        record = (
            self.db.query(KeywordProgress)
            .filter(
                KeywordProgress.user_id == session.user_id,
                KeywordProgress.story_id == session.story_id,
                KeywordProgress.keyword_id == keyword_id,
            )
            .first()
        )
        if record:
            return record

        record = KeywordProgress(
            user_id=session.user_id,
            story_id=session.story_id,
            theme_id=session.theme_id,
            keyword_id=keyword_id,
            unlocked=False,
            mastered=False,
            accuracy=0.0,
            correct_attempts=0,
            attempts=0,
            total_time_spent=0.0,
        )
        self.db.add(record)
        return record

    def _build_recovery_data(self, session: LearningSession, can_recover: bool) -> SessionRecoveryData:
        attempted = list(session.keywords_attempted or [])
        return SessionRecoveryData(
            session_id=session.id,
            user_id=session.user_id,
            story_id=session.story_id,
            theme_id=session.theme_id,
            mode=LearningMode(session.mode),
            progress_snapshot=ProgressSnapshot(
                completed_keywords=list(session.keywords_completed or []),
                current_keyword=attempted[-1] if attempted else "",
                attempts=session.total_attempts,
                start_time=ensure_utc(session.start_time),
                correct_attempts=session.correct_attempts,
                time_spent=session.time_spent,
                keywords_attempted=attempted,
            ),
            saved_at=utcnow(),
            can_recover=can_recover,
        )

    def _save_recovery(self, session: LearningSession, can_recover: bool) -> None:
        current = self.store.get(recovery_key(session.user_id))
        if not can_recover and current and current.get("session_id") != session.id:
            # The snapshot belongs to another session
            return
        data = self._build_recovery_data(session, can_recover)
        try:
            self.store.set(recovery_key(session.user_id), data.to_dict())
        except StoreQuotaExceededError as e:
            store_operations.labels(operation_type="quota_exceeded").inc()
            logger.error("Failed to save recovery snapshot for session %s: %s", session.id, str(e))

    def _release_active(self, session: LearningSession) -> None:
        if session.id in self._live_sessions:
            self._live_sessions.discard(session.id)
            active_sessions.dec()

    def _is_expired(self, recovery_data: SessionRecoveryData, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now - ensure_utc(recovery_data.saved_at) > self.recovery_window

    def _mark_interrupted(self, session: LearningSession, last_seen: datetime) -> None:
        session.is_active = False
        session.is_completed = False
        session.end_reason = SessionEndReason.INTERRUPTED.value
        session.end_time = ensure_utc(last_seen)
        self.db.commit()

        self.aggregator.invalidate(session.user_id)
        self._release_active(session)
        sessions_ended.labels(reason=SessionEndReason.INTERRUPTED.value).inc()
        self._emit_session_ended(session)
        logger.warning("Session %s of user %s was interrupted", session.id, session.user_id)

    def _check_unlock_milestones(self, session: LearningSession) -> None:
        story = self.aggregator.get_story_progress(session.user_id, session.story_id)
        if story.status == StoryStatus.COMPLETED:
            self.events.emit(MILESTONE_REACHED, {
                "type": "story_completed",
                "user_id": session.user_id,
                "story_id": session.story_id,
                "theme_id": session.theme_id,
            })

        learned = (
            self.db.query(KeywordProgress)
            .filter(
                KeywordProgress.user_id == session.user_id,
                KeywordProgress.unlocked.is_(True),
            )
            .count()
        )
        if learned in settings.session.milestones:
            self.events.emit(MILESTONE_REACHED, {
                "type": "keywords_learned",
                "user_id": session.user_id,
                "count": learned,
            })

    async def _push_update(
        self,
        session: LearningSession,
        record: KeywordProgress,
        is_correct: bool,
        time_spent: float,
    ) -> None:
        if self.remote is None:
            return
        delta = KeywordDelta(
            is_correct=bool(is_correct),
            time_spent=time_spent,
            accuracy=record.accuracy,
            attempts=record.attempts,
            mastered=record.mastered,
            unlocked=record.unlocked,
        )
        try:
            await self.remote.push_keyword_update(
                session.user_id, session.story_id, record.keyword_id, delta
            )
        except Exception as e:
            sync_failures.labels(operation="push_keyword_update").inc()
            logger.error(
                "Failed to push keyword update %s/%s for user %s: %s",
                session.story_id,
                record.keyword_id,
                session.user_id,
                str(e),
            )

    def _emit_session_started(self, session: LearningSession) -> None:
        self.events.emit(SESSION_STARTED, {
            "session_id": session.id,
            "user_id": session.user_id,
            "story_id": session.story_id,
            "theme_id": session.theme_id,
            "mode": session.mode,
            "recovered_from": session.recovered_from,
        })

    def _emit_session_ended(self, session: LearningSession) -> None:
        start = ensure_utc(session.start_time)
        end = ensure_utc(session.end_time)
        self.events.emit(SESSION_ENDED, {
            "session_id": session.id,
            "user_id": session.user_id,
            "story_id": session.story_id,
            "reason": session.end_reason,
            "duration": (end - start).total_seconds() if start and end else 0.0,
            "accuracy": session.accuracy,
            "keywords_completed": len(session.keywords_completed or []),
        })
