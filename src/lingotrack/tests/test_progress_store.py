"""Tests for the progress store."""
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from lingotrack.errors import StoreQuotaExceededError
from lingotrack.models.base import utcnow
from lingotrack.models.models import StoreEntry
from lingotrack.services.progress_store import ProgressStore


def test_set_and_get(store: ProgressStore) -> None:
    """Test storing and reading a JSON value."""
    store.set("snapshot", {"attempts": 3, "keywords": ["gate"]})

    assert store.get("snapshot") == {"attempts": 3, "keywords": ["gate"]}
    assert store.get("missing") is None


def test_set_overwrites(store: ProgressStore) -> None:
    """Test that writing a key again replaces its value and size."""
    store.set("snapshot", {"attempts": 1})
    store.set("snapshot", {"attempts": 2, "padding": "x" * 100})

    assert store.get("snapshot")["attempts"] == 2
    assert store.total_size() > 100


def test_remove(store: ProgressStore) -> None:
    """Test removing keys, including missing ones."""
    store.set("snapshot", [1, 2, 3])

    store.remove("snapshot")
    store.remove("snapshot")

    assert store.get("snapshot") is None
    assert store.total_size() == 0


def test_expired_entries_read_as_missing(db: Session, store: ProgressStore) -> None:
    """Test that an expired entry is dropped on read."""
    store.set("short", "value", ttl=60)
    entry = db.query(StoreEntry).filter(StoreEntry.key == "short").first()
    entry.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    assert store.get("short") is None
    assert db.query(StoreEntry).count() == 0


def test_malformed_entry_is_dropped(db: Session, store: ProgressStore) -> None:
    """Test that a corrupt value reads as missing."""
    db.add(StoreEntry(key="broken", value="{not json", size=9))
    db.commit()

    assert store.get("broken") is None
    assert db.query(StoreEntry).count() == 0


def test_entry_too_large(db: Session) -> None:
    """Test the per-entry size limit."""
    store = ProgressStore(db, max_entry_bytes=50, max_total_bytes=1000)

    with pytest.raises(StoreQuotaExceededError) as exc_info:
        store.set("big", "x" * 100)

    assert exc_info.value.key == "big"
    assert exc_info.value.limit == 50
    assert store.get("big") is None


def test_total_quota(db: Session) -> None:
    """Test the total quota, counting an overwritten key only once."""
    store = ProgressStore(db, max_entry_bytes=100, max_total_bytes=150)
    store.set("first", "a" * 60)
    store.set("first", "b" * 60)

    with pytest.raises(StoreQuotaExceededError):
        store.set("second", "c" * 90)

    assert store.get("first") == "b" * 60


def test_quota_purges_expired_entries(db: Session) -> None:
    """Test that expired entries are purged before refusing a write."""
    store = ProgressStore(db, max_entry_bytes=100, max_total_bytes=150)
    store.set("old", "a" * 80, ttl=60)
    entry = db.query(StoreEntry).filter(StoreEntry.key == "old").first()
    entry.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    store.set("new", "b" * 80)

    assert store.get("new") == "b" * 80
    assert store.get("old") is None
