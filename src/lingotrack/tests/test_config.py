"""Tests for configuration settings."""
import pytest

from lingotrack.config import MASTERY_THRESHOLD, MILESTONES, SessionSettings, Settings, settings


def test_settings_defaults():
    """Test default settings values."""
    assert MASTERY_THRESHOLD == 0.8
    assert settings.session.mastery_threshold == 0.8
    assert settings.session.recovery_window_hours == 24
    assert settings.session.milestones == MILESTONES
    assert settings.review.recency_window_days == 7
    assert settings.review.accuracy_threshold == 0.6
    assert settings.sync.interval_seconds == 60
    assert settings.store.max_entry_bytes <= settings.store.max_total_bytes


def test_milestones_from_env(monkeypatch):
    """Test that milestones can be overridden by environment variables."""
    monkeypatch.setenv("MILESTONES", "25, 5,100")

    assert SessionSettings().milestones == [5, 25, 100]


def test_validate_rejects_invalid_threshold():
    """Test validation of the mastery threshold."""
    invalid = Settings()
    invalid.session.mastery_threshold = 1.5

    with pytest.raises(ValueError, match="MASTERY_THRESHOLD"):
        invalid.validate()


def test_validate_rejects_invalid_store_limits():
    """Test validation of store quotas."""
    invalid = Settings()
    invalid.store.max_entry_bytes = invalid.store.max_total_bytes + 1

    with pytest.raises(ValueError, match="STORE_MAX_ENTRY_BYTES"):
        invalid.validate()


def test_validate_rejects_non_positive_recovery_window():
    """Test validation of the recovery window."""
    invalid = Settings()
    invalid.session.recovery_window_hours = 0

    with pytest.raises(ValueError, match="RECOVERY_WINDOW_HOURS"):
        invalid.validate()
