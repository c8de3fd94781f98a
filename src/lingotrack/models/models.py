"""Database models for progress tracking."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from lingotrack.models.base import Base, TimestampMixin


class Theme(Base, TimestampMixin):
    """Content theme grouping several stories."""

    __tablename__ = "themes"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)

    # Relationships
    stories = relationship("Story", back_populates="theme")


class Story(Base, TimestampMixin):
    """Story model; keyword_count is the completion denominator."""

    __tablename__ = "stories"

    id = Column(String, primary_key=True)
    theme_id = Column(String, ForeignKey("themes.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    keyword_count = Column(Integer, nullable=False, default=0)

    # Relationships
    theme = relationship("Theme", back_populates="stories")


class KeywordProgress(Base, TimestampMixin):
    """Per-user progress on a single keyword of a story."""

    __tablename__ = "keyword_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "story_id", "keyword_id", name="uq_keyword_progress"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    story_id = Column(String, nullable=False, index=True)
    theme_id = Column(String, nullable=False)
    keyword_id = Column(String, nullable=False)
    unlocked = Column(Boolean, default=False, nullable=False)
    mastered = Column(Boolean, default=False, nullable=False)
    accuracy = Column(Float, default=0.0, nullable=False)  # 0-1
    correct_attempts = Column(Integer, default=0, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    total_time_spent = Column(Float, default=0.0, nullable=False)  # in seconds
    last_reviewed = Column(DateTime(timezone=True))
    next_review = Column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return (
            f"<KeywordProgress {self.user_id}/{self.story_id}/{self.keyword_id} "
            f"accuracy={self.accuracy:.2f} attempts={self.attempts}>"
        )


class LearningSession(Base, TimestampMixin):
    """Learning session model."""

    __tablename__ = "learning_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    story_id = Column(String, nullable=False)
    theme_id = Column(String, nullable=False)
    mode = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    is_active = Column(Boolean, default=True, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    end_reason = Column(String)  # completed, user_exit, interrupted
    total_attempts = Column(Integer, default=0, nullable=False)
    correct_attempts = Column(Integer, default=0, nullable=False)
    time_spent = Column(Float, default=0.0, nullable=False)  # in seconds
    keywords_attempted = Column(JSON, default=list, nullable=False)
    keywords_completed = Column(JSON, default=list, nullable=False)
    recovered_from = Column(String, nullable=True)

    @property
    def accuracy(self) -> float:
        """Share of correct answers in this session."""
        if not self.total_attempts:
            return 0.0
        return self.correct_attempts / self.total_attempts


class StoreEntry(Base, TimestampMixin):
    """Row of the key/value progress store."""

    __tablename__ = "store_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)  # JSON encoded
    size = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
