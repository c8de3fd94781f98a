"""Errors raised by the progress tracking services."""
from datetime import datetime
from typing import Optional


class ProgressError(Exception):
    """Base class for progress tracking errors."""


class ConflictError(ProgressError):
    """A session is already active for the user."""

    def __init__(self, user_id: str, active_session_id: str):
        self.user_id = user_id
        self.active_session_id = active_session_id
        super().__init__(
            f"User {user_id} already has an active session {active_session_id}"
        )


class RecoveryExpiredError(ProgressError):
    """A recovery snapshot is older than the recovery window."""

    def __init__(self, session_id: str, saved_at: datetime):
        self.session_id = session_id
        self.saved_at = saved_at
        super().__init__(
            f"Recovery snapshot for session {session_id} saved at {saved_at.isoformat()} has expired"
        )


class SessionNotFoundError(ProgressError):
    """The session does not exist or is no longer active."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Active session {session_id} not found")


class TransientSyncFailure(ProgressError):
    """A network or storage failure while talking to the remote progress service."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class StoreQuotaExceededError(ProgressError):
    """A value does not fit into the key/value store quota."""

    def __init__(self, key: str, size: int, limit: int):
        self.key = key
        self.size = size
        self.limit = limit
        super().__init__(f"Value for {key} ({size} bytes) exceeds the {limit} byte limit")
