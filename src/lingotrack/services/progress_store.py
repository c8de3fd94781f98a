"""Key/value store for progress snapshots and session recovery data."""
import json
import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from lingotrack.config import settings
from lingotrack.errors import StoreQuotaExceededError
from lingotrack.models.base import ensure_utc, utcnow
from lingotrack.models.models import StoreEntry
from lingotrack.monitoring import store_operations

logger = logging.getLogger(__name__)


class ProgressStore:
    """Durable JSON key/value store with per-entry TTL and a size quota."""

    def __init__(
        self,
        db: Session,
        max_entry_bytes: Optional[int] = None,
        max_total_bytes: Optional[int] = None,
    ):
        """Initialize the store with a database session."""
        self.db = db
        self.max_entry_bytes = max_entry_bytes or settings.store.max_entry_bytes
        self.max_total_bytes = max_total_bytes or settings.store.max_total_bytes

    def get(self, key: str) -> Optional[Any]:
        """Get a value by key; missing and expired keys read as None."""
        store_operations.labels(operation_type="get").inc()
        entry = self.db.query(StoreEntry).filter(StoreEntry.key == key).first()
        if not entry:
            return None

        expires_at = ensure_utc(entry.expires_at)
        if expires_at is not None and expires_at <= utcnow():
            logger.debug("Store entry %s expired at %s", key, expires_at)
            self.db.delete(entry)
            self.db.commit()
            return None

        try:
            return json.loads(entry.value)
        except ValueError:
            logger.error("Store entry %s holds malformed JSON, dropping it", key)
            self.db.delete(entry)
            self.db.commit()
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a JSON-serialisable value, optionally expiring after ttl seconds."""
        store_operations.labels(operation_type="set").inc()
        encoded = json.dumps(value)
        size = len(encoded.encode("utf-8"))
        if size > self.max_entry_bytes:
            raise StoreQuotaExceededError(key, size, self.max_entry_bytes)

        used = self.total_size(exclude=key)
        if used + size > self.max_total_bytes:
            self.purge_expired()
            used = self.total_size(exclude=key)
            if used + size > self.max_total_bytes:
                raise StoreQuotaExceededError(key, used + size, self.max_total_bytes)

        expires_at = utcnow() + timedelta(seconds=ttl) if ttl is not None else None
        entry = self.db.query(StoreEntry).filter(StoreEntry.key == key).first()
        if entry:
            entry.value = encoded
            entry.size = size
            entry.expires_at = expires_at
        else:
            entry = StoreEntry(key=key, value=encoded, size=size, expires_at=expires_at)
            self.db.add(entry)
        self.db.commit()

    def remove(self, key: str) -> None:
        """Remove a key; removing a missing key is a no-op."""
        store_operations.labels(operation_type="remove").inc()
        self.db.query(StoreEntry).filter(StoreEntry.key == key).delete()
        self.db.commit()

    def total_size(self, exclude: Optional[str] = None) -> int:
        """Get the number of bytes held by the store."""
        query = self.db.query(func.coalesce(func.sum(StoreEntry.size), 0))
        if exclude is not None:
            query = query.filter(StoreEntry.key != exclude)
        return int(query.scalar() or 0)

    def purge_expired(self) -> int:
        """Delete expired entries and return how many were removed."""
        now = utcnow()
        entries = (
            self.db.query(StoreEntry)
            .filter(StoreEntry.expires_at.isnot(None))
            .all()
        )
        removed = 0
        for entry in entries:
            if ensure_utc(entry.expires_at) <= now:
                self.db.delete(entry)
                removed += 1
        if removed:
            self.db.commit()
            logger.info("Purged %d expired store entries", removed)
        return removed
