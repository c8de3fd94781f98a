"""Configuration settings for progress tracking."""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)

# Learning settings
MASTERY_THRESHOLD = 0.8
MILESTONES = [10, 50, 100, 500]  # learned keywords


def _get_milestones() -> list[int]:
    """Get learned-keyword milestones from environment variable."""
    raw = os.getenv("MILESTONES")
    if not raw:
        return list(MILESTONES)
    return sorted(int(value) for value in raw.split(",") if value.strip())


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///lingotrack.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class SessionSettings:
    """Learning session settings."""
    mastery_threshold: float = float(os.getenv("MASTERY_THRESHOLD", str(MASTERY_THRESHOLD)))
    recovery_window_hours: float = float(os.getenv("RECOVERY_WINDOW_HOURS", "24"))
    milestones: list[int] = field(default_factory=_get_milestones)


@dataclass
class SyncSettings:
    """Remote synchronisation settings."""
    interval_seconds: float = float(os.getenv("SYNC_INTERVAL_SECONDS", "60"))
    cache_ttl_seconds: float = float(os.getenv("CACHE_TTL_SECONDS", "30"))
    remote_base_url: Optional[str] = os.getenv("REMOTE_BASE_URL")
    remote_timeout: float = float(os.getenv("REMOTE_TIMEOUT", "30"))


@dataclass
class ReviewSettings:
    """Review selection settings."""
    recency_window_days: int = int(os.getenv("REVIEW_WINDOW_DAYS", "7"))
    accuracy_threshold: float = float(os.getenv("REVIEW_ACCURACY_THRESHOLD", "0.6"))


@dataclass
class StoreSettings:
    """Key/value store quota settings."""
    max_entry_bytes: int = int(os.getenv("STORE_MAX_ENTRY_BYTES", str(512 * 1024)))
    max_total_bytes: int = int(os.getenv("STORE_MAX_TOTAL_BYTES", str(6 * 1024 * 1024)))


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_session_settings() -> SessionSettings:
    """Get session settings."""
    return SessionSettings()


def get_sync_settings() -> SyncSettings:
    """Get sync settings."""
    return SyncSettings()


def get_review_settings() -> ReviewSettings:
    """Get review settings."""
    return ReviewSettings()


def get_store_settings() -> StoreSettings:
    """Get store settings."""
    return StoreSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    session: SessionSettings = field(default_factory=get_session_settings)
    sync: SyncSettings = field(default_factory=get_sync_settings)
    review: ReviewSettings = field(default_factory=get_review_settings)
    store: StoreSettings = field(default_factory=get_store_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not 0 <= self.session.mastery_threshold <= 1:
            raise ValueError("MASTERY_THRESHOLD must be between 0 and 1")

        if not 0 <= self.review.accuracy_threshold <= 1:
            raise ValueError("REVIEW_ACCURACY_THRESHOLD must be between 0 and 1")

        if self.session.recovery_window_hours <= 0:
            raise ValueError("RECOVERY_WINDOW_HOURS must be positive")

        if self.sync.interval_seconds <= 0:
            raise ValueError("SYNC_INTERVAL_SECONDS must be positive")

        if self.review.recency_window_days < 0:
            raise ValueError("REVIEW_WINDOW_DAYS cannot be negative")

        if self.store.max_entry_bytes > self.store.max_total_bytes:
            raise ValueError("STORE_MAX_ENTRY_BYTES cannot be greater than STORE_MAX_TOTAL_BYTES")


# Create global settings instance
settings = Settings()
settings.validate()
