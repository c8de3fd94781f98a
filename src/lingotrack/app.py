"""Application wiring for one learner's progress tracking."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from lingotrack.config import settings
from lingotrack.models.base import SessionLocal, init_db
from lingotrack.models.progress_models import NoRecovery, RecoveryState
from lingotrack.services.aggregator import ProgressAggregator
from lingotrack.services.events import EventEmitter
from lingotrack.services.progress_store import ProgressStore
from lingotrack.services.remote import (
    DatabaseRemoteProgressService,
    HttpRemoteProgressService,
    RemoteProgressService,
)
from lingotrack.services.session_manager import SessionManager
from lingotrack.services.stats_service import StatsService
from lingotrack.services.sync_coordinator import SyncCoordinator


class ProgressApp:
    """Owns the services of one signed-in learner and their lifecycle."""

    def __init__(
        self,
        user_id: str,
        remote: Optional[RemoteProgressService] = None,
        events: Optional[EventEmitter] = None,
    ):
        """Initialize the application."""
        self.user_id = user_id
        self.remote = remote
        self.events = events or EventEmitter()
        self.db: Optional[Session] = None
        self.store: Optional[ProgressStore] = None
        self.aggregator: Optional[ProgressAggregator] = None
        self.sessions: Optional[SessionManager] = None
        self.stats: Optional[StatsService] = None
        self.sync: Optional[SyncCoordinator] = None
        self.recovery_state: RecoveryState = NoRecovery()
        self.running = False
        self.logger = logging.getLogger(__name__)

    def _create_remote(self) -> RemoteProgressService:
        if settings.sync.remote_base_url:
            return HttpRemoteProgressService()
        self.logger.info("No REMOTE_BASE_URL configured, syncing against the local database")
        return DatabaseRemoteProgressService(SessionLocal)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            init_db()
            self.db = SessionLocal()
            self.logger.info("Database initialized")

            if self.remote is None:
                self.remote = self._create_remote()

            self.store = ProgressStore(self.db)
            self.aggregator = ProgressAggregator(self.db)
            self.sessions = SessionManager(
                self.db,
                self.store,
                aggregator=self.aggregator,
                remote=self.remote,
                events=self.events,
            )
            self.stats = StatsService(self.db, aggregator=self.aggregator)

            # Computed once; the caller decides whether to resume or discard
            self.recovery_state = self.sessions.detect_recovery_state(self.user_id)
            self.logger.info("Recovery state for user %s: %s", self.user_id, type(self.recovery_state).__name__)

            self.sync = SyncCoordinator(self.user_id, self.remote, store=self.store)
            await self.sync.start()
            self.logger.info("Progress sync started")

            self.running = True

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            self.running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running:
            return

        try:
            if self.sync:
                await self.sync.stop()
                self.sync = None
                self.logger.info("Progress sync stopped")

            if self.remote:
                await self.remote.close()

            if self.db:
                self.db.close()
                self.db = None
                self.logger.info("Database session closed")

        finally:
            self.running = False
