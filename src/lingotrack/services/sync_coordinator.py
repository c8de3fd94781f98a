"""Service reconciling the local progress view with the remote progress service."""
import asyncio
import logging
import time
from typing import Optional

from lingotrack.config import settings
from lingotrack.errors import TransientSyncFailure
from lingotrack.models.base import utcnow
from lingotrack.models.progress_models import OverallProgress
from lingotrack.monitoring import sync_attempts, sync_duration, sync_failures
from lingotrack.services.progress_store import ProgressStore
from lingotrack.services.remote import RemoteProgressService

logger = logging.getLogger(__name__)


def progress_key(user_id: str) -> str:
    """Store key of a user's cached overall progress."""
    return f"overall_progress:{user_id}"


def validate_progress(progress: Optional[OverallProgress], user_id: str) -> OverallProgress:
    """Reject fetched progress that belongs to someone else or lacks ids."""
    problem = None
    if progress is None:
        problem = "no progress returned"
    elif progress.user_id != user_id:
        problem = f"progress belongs to user {progress.user_id!r}"
    else:
        for theme in progress.themes:
            if not theme.theme_id:
                problem = "theme without id"
                break
            if any(not story.story_id or not story.theme_id for story in theme.stories):
                problem = f"story without id in theme {theme.theme_id}"
                break

    if problem is not None:
        raise TransientSyncFailure("fetch_user_progress", ValueError(problem))
    return progress


class SyncCoordinator:
    """Periodically refreshes a user's overall progress from the remote copy.

    Remote wins: every successful fetch replaces the local view. Failures are
    logged and leave the last good view in place.
    """

    def __init__(
        self,
        user_id: str,
        remote: RemoteProgressService,
        store: Optional[ProgressStore] = None,
        interval: Optional[float] = None,
    ):
        """Initialize the coordinator for one user."""
        self.user_id = user_id
        self.remote = remote
        self.store = store
        self.interval = interval or settings.sync.interval_seconds
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self._progress: Optional[OverallProgress] = None
        self._generation = 0

    @property
    def progress(self) -> Optional[OverallProgress]:
        """Last successfully synced view."""
        return self._progress

    def load_cached(self) -> Optional[OverallProgress]:
        """Load the last persisted view so something is visible before the first sync."""
        if self.store is None or self._progress is not None:
            return self._progress
        data = self.store.get(progress_key(self.user_id))
        if data:
            try:
                self._progress = OverallProgress.from_dict(data)
            except (KeyError, ValueError, TypeError) as e:
                logger.error("Ignoring malformed cached progress for user %s: %s", self.user_id, str(e))
        return self._progress

    async def sync_progress(self) -> Optional[OverallProgress]:
        """Fetch remote progress and overwrite the local view.

        Never raises for fetch or storage failures. A sync that is overtaken by
        a newer one drops its result.
        """
        self._generation += 1
        generation = self._generation
        sync_attempts.inc()
        started = time.monotonic()

        try:
            progress = validate_progress(
                await self.remote.fetch_user_progress(self.user_id), self.user_id
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            sync_failures.labels(operation="fetch_user_progress").inc()
            logger.error("Error syncing progress for user %s: %s", self.user_id, str(e))
            return self._progress
        finally:
            sync_duration.observe(time.monotonic() - started)

        if generation != self._generation:
            logger.debug("Sync %d for user %s superseded, dropping result", generation, self.user_id)
            return self._progress

        progress.last_synced_at = utcnow()
        self._progress = progress

        if self.store is not None:
            try:
                self.store.set(progress_key(self.user_id), progress.to_dict())
            except Exception as e:
                sync_failures.labels(operation="cache_progress").inc()
                logger.error("Error caching progress for user %s: %s", self.user_id, str(e))

        logger.info(
            "Synced progress for user %s: %d%% (%d/%d stories)",
            self.user_id,
            progress.percentage,
            progress.completed_stories,
            progress.total_stories,
        )
        return progress

    async def start(self) -> None:
        """Sync once, then keep syncing on the fixed interval."""
        if self.running:
            return

        self.running = True
        logger.info("Starting progress sync for user %s every %.0f seconds", self.user_id, self.interval)
        self.load_cached()
        await self.sync_progress()
        self.task = asyncio.create_task(self._run_periodic_sync())

    async def stop(self) -> None:
        """Stop the periodic sync."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping progress sync for user %s", self.user_id)

        if self.task is not None:
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
            self.task = None

    async def _run_periodic_sync(self) -> None:
        """Run the periodic sync task."""
        while self.running:
            try:
                await asyncio.sleep(self.interval)
                await self.sync_progress()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in progress sync task: %s", str(e))
