"""Value objects derived from persisted progress."""
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class LearningMode(Enum):
    """Ways a story can be studied."""
    CONTEXT_GUESSING = "context_guessing"
    FOCUS_MODE = "focus_mode"
    PRONUNCIATION = "pronunciation"
    RESCUE_MODE = "rescue_mode"
    THEATER_MODE = "theater_mode"


class SessionEndReason(Enum):
    """Why a learning session ended."""
    COMPLETED = "completed"
    USER_EXIT = "user_exit"
    INTERRUPTED = "interrupted"


class StoryStatus(Enum):
    """Completion state of a story."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class StoryProgress:
    """Aggregated progress of one story."""
    story_id: Optional[str]
    theme_id: Optional[str]
    completed_keywords: int
    total_keywords: int
    status: StoryStatus
    average_accuracy: float = 0.0
    total_time_spent: float = 0.0
    attempted_keywords: int = 0
    active_session_id: Optional[str] = None

    @property
    def progress_percentage(self) -> float:
        if self.total_keywords <= 0:
            return 0.0
        return self.completed_keywords / self.total_keywords * 100

    @property
    def has_activity(self) -> bool:
        """Whether any keyword of the story has been attempted."""
        return self.attempted_keywords > 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryProgress":
        return cls(
            story_id=data.get("story_id"),
            theme_id=data.get("theme_id"),
            completed_keywords=int(data.get("completed_keywords", 0)),
            total_keywords=int(data.get("total_keywords", 0)),
            status=StoryStatus(data.get("status", StoryStatus.NOT_STARTED.value)),
            average_accuracy=float(data.get("average_accuracy", 0.0)),
            total_time_spent=float(data.get("total_time_spent", 0.0)),
            attempted_keywords=int(data.get("attempted_keywords", 0)),
            active_session_id=data.get("active_session_id"),
        )


@dataclass
class ThemeProgress:
    """Aggregated progress of one theme. Derived, never mutated directly."""
    theme_id: Optional[str]
    total_stories: int
    completed_stories: int
    total_keywords_learned: int
    average_accuracy: float
    total_time_spent: float = 0.0
    attempted_keywords: int = 0
    stories: List[StoryProgress] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stories"] = [story.to_dict() for story in self.stories]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThemeProgress":
        return cls(
            theme_id=data.get("theme_id"),
            total_stories=int(data.get("total_stories", 0)),
            completed_stories=int(data.get("completed_stories", 0)),
            total_keywords_learned=int(data.get("total_keywords_learned", 0)),
            average_accuracy=float(data.get("average_accuracy", 0.0)),
            total_time_spent=float(data.get("total_time_spent", 0.0)),
            attempted_keywords=int(data.get("attempted_keywords", 0)),
            stories=[StoryProgress.from_dict(s) for s in data.get("stories", [])],
        )


@dataclass
class OverallProgress:
    """Progress across all themes; owns the global percentage denominator."""
    user_id: Optional[str]
    themes: List[ThemeProgress]
    total_stories: int
    completed_stories: int
    percentage: int
    total_keywords_learned: int
    total_time_spent: float
    overall_accuracy: float
    last_synced_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "themes": [theme.to_dict() for theme in self.themes],
            "total_stories": self.total_stories,
            "completed_stories": self.completed_stories,
            "percentage": self.percentage,
            "total_keywords_learned": self.total_keywords_learned,
            "total_time_spent": self.total_time_spent,
            "overall_accuracy": self.overall_accuracy,
            "last_synced_at": _format_datetime(self.last_synced_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverallProgress":
        return cls(
            user_id=data.get("user_id"),
            themes=[ThemeProgress.from_dict(t) for t in data.get("themes", [])],
            total_stories=int(data.get("total_stories", 0)),
            completed_stories=int(data.get("completed_stories", 0)),
            percentage=int(data.get("percentage", 0)),
            total_keywords_learned=int(data.get("total_keywords_learned", 0)),
            total_time_spent=float(data.get("total_time_spent", 0.0)),
            overall_accuracy=float(data.get("overall_accuracy", 0.0)),
            last_synced_at=_parse_datetime(data.get("last_synced_at")),
        )


@dataclass
class ProgressSnapshot:
    """Session counters captured in a recovery snapshot."""
    completed_keywords: List[str] = field(default_factory=list)
    current_keyword: str = ""
    attempts: int = 0
    start_time: Optional[datetime] = None
    correct_attempts: int = 0
    time_spent: float = 0.0
    keywords_attempted: List[str] = field(default_factory=list)


@dataclass
class SessionRecoveryData:
    """Point-in-time copy of a session used to resume after an unplanned exit."""
    session_id: str
    user_id: str
    story_id: str
    theme_id: str
    mode: LearningMode
    progress_snapshot: ProgressSnapshot
    saved_at: datetime
    can_recover: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "story_id": self.story_id,
            "theme_id": self.theme_id,
            "mode": self.mode.value,
            "progress_snapshot": {
                "completed_keywords": list(self.progress_snapshot.completed_keywords),
                "current_keyword": self.progress_snapshot.current_keyword,
                "attempts": self.progress_snapshot.attempts,
                "start_time": _format_datetime(self.progress_snapshot.start_time),
                "correct_attempts": self.progress_snapshot.correct_attempts,
                "time_spent": self.progress_snapshot.time_spent,
                "keywords_attempted": list(self.progress_snapshot.keywords_attempted),
            },
            "saved_at": self.saved_at.isoformat(),
            "can_recover": self.can_recover,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecoveryData":
        snapshot = data.get("progress_snapshot") or {}
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            story_id=data["story_id"],
            theme_id=data["theme_id"],
            mode=LearningMode(data["mode"]),
            progress_snapshot=ProgressSnapshot(
                completed_keywords=list(snapshot.get("completed_keywords", [])),
                current_keyword=snapshot.get("current_keyword", ""),
                attempts=int(snapshot.get("attempts", 0)),
                start_time=_parse_datetime(snapshot.get("start_time")),
                correct_attempts=int(snapshot.get("correct_attempts", 0)),
                time_spent=float(snapshot.get("time_spent", 0.0)),
                keywords_attempted=list(snapshot.get("keywords_attempted", [])),
            ),
            saved_at=datetime.fromisoformat(data["saved_at"]),
            can_recover=bool(data.get("can_recover", False)),
        )


@dataclass(frozen=True)
class NoRecovery:
    """No interrupted session was found at startup."""


@dataclass(frozen=True)
class Resumable:
    """An interrupted session can be resumed."""
    snapshot: SessionRecoveryData


@dataclass(frozen=True)
class Expired:
    """An interrupted session was found but is too old to resume."""
    snapshot: SessionRecoveryData


RecoveryState = Union[NoRecovery, Resumable, Expired]


@dataclass
class KeywordDelta:
    """Change pushed to the remote progress service after an answer."""
    is_correct: bool
    time_spent: float
    accuracy: float
    attempts: int
    mastered: bool
    unlocked: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LearningStats:
    """Learner statistics used for gamification."""
    total_time_spent: float
    total_keywords_learned: int
    overall_accuracy: float
    current_streak: int
    sessions_this_week: int
    longest_streak: int = 0


@dataclass
class DailyActivity:
    """Study activity on one calendar day."""
    date: date
    sessions: int = 0
    answers: int = 0
    time_spent: float = 0.0
