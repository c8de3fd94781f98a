"""Tests for the sync coordinator."""
import asyncio
from typing import Optional

import httpx
import pytest

from lingotrack.errors import TransientSyncFailure
from lingotrack.models.progress_models import OverallProgress, StoryProgress, StoryStatus, ThemeProgress
from lingotrack.services.progress_store import ProgressStore
from lingotrack.services.remote import HttpRemoteProgressService, RemoteProgressService
from lingotrack.services.sync_coordinator import SyncCoordinator, progress_key, validate_progress


def make_progress(user_id: str, completed: int, total: int = 10) -> OverallProgress:
    return OverallProgress(
        user_id=user_id,
        themes=[],
        total_stories=total,
        completed_stories=completed,
        percentage=round(completed / total * 100),
        total_keywords_learned=completed * 3,
        total_time_spent=120.0,
        overall_accuracy=0.8,
    )


class SlowRemote(RemoteProgressService):
    """Remote whose fetches complete in the order they are released."""

    def __init__(self):
        self.pending = []

    async def fetch_user_progress(self, user_id: str) -> OverallProgress:
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    async def push_keyword_update(self, user_id, story_id, keyword_id, delta) -> None:
        pass


@pytest.mark.asyncio
async def test_sync_progress_replaces_view(remote, store: ProgressStore, user_id: str) -> None:
    """Test that a successful sync overwrites the local view and caches it."""
    remote.progress = make_progress(user_id, completed=4)
    coordinator = SyncCoordinator(user_id, remote, store=store)

    progress = await coordinator.sync_progress()

    assert progress.completed_stories == 4
    assert progress.last_synced_at is not None
    assert coordinator.progress is progress
    assert store.get(progress_key(user_id))["completed_stories"] == 4


@pytest.mark.asyncio
async def test_sync_failure_keeps_last_view(remote, store: ProgressStore, user_id: str) -> None:
    """Test that a failing fetch leaves the cached view unchanged and does not raise."""
    remote.progress = make_progress(user_id, completed=2)
    coordinator = SyncCoordinator(user_id, remote, store=store)
    before = await coordinator.sync_progress()

    remote.fail_fetch = True
    remote.progress = make_progress(user_id, completed=9)
    after = await coordinator.sync_progress()

    assert after is before
    assert coordinator.progress.completed_stories == 2
    assert store.get(progress_key(user_id))["completed_stories"] == 2


@pytest.mark.asyncio
async def test_sync_failure_without_previous_view(remote, user_id: str) -> None:
    """Test a failing first sync."""
    remote.fail_fetch = True
    coordinator = SyncCoordinator(user_id, remote)

    assert await coordinator.sync_progress() is None
    assert coordinator.progress is None


@pytest.mark.asyncio
async def test_superseded_sync_is_dropped(user_id: str) -> None:
    """Test that a newer sync wins over an older one finishing later."""
    remote = SlowRemote()
    coordinator = SyncCoordinator(user_id, remote)

    older = asyncio.create_task(coordinator.sync_progress())
    await asyncio.sleep(0)
    newer = asyncio.create_task(coordinator.sync_progress())
    await asyncio.sleep(0)

    remote.pending[1].set_result(make_progress(user_id, completed=7))
    await newer
    remote.pending[0].set_result(make_progress(user_id, completed=1))
    await older

    assert coordinator.progress.completed_stories == 7


@pytest.mark.asyncio
async def test_load_cached(remote, store: ProgressStore, user_id: str) -> None:
    """Test that a persisted view is shown before the first sync."""
    store.set(progress_key(user_id), make_progress(user_id, completed=5).to_dict())
    coordinator = SyncCoordinator(user_id, remote, store=store)

    cached: Optional[OverallProgress] = coordinator.load_cached()

    assert cached.completed_stories == 5
    assert remote.fetch_calls == 0


@pytest.mark.asyncio
async def test_start_and_stop(remote, store: ProgressStore, user_id: str) -> None:
    """Test the periodic sync lifecycle."""
    remote.progress = make_progress(user_id, completed=3)
    coordinator = SyncCoordinator(user_id, remote, store=store, interval=0.01)

    await coordinator.start()
    assert coordinator.running is True
    assert remote.fetch_calls == 1

    await asyncio.sleep(0.05)
    assert remote.fetch_calls > 1

    await coordinator.stop()
    calls = remote.fetch_calls
    await asyncio.sleep(0.03)

    assert coordinator.running is False
    assert coordinator.task is None
    assert remote.fetch_calls == calls


@pytest.mark.asyncio
async def test_periodic_sync_survives_failures(remote, user_id: str) -> None:
    """Test that the loop keeps running after failed fetches."""
    remote.fail_fetch = True
    coordinator = SyncCoordinator(user_id, remote, interval=0.01)

    await coordinator.start()
    await asyncio.sleep(0.05)
    remote.fail_fetch = False
    remote.progress = make_progress(user_id, completed=6)
    await asyncio.sleep(0.05)
    await coordinator.stop()

    assert coordinator.progress.completed_stories == 6


def test_validate_progress_accepts_own_progress(user_id: str) -> None:
    """Test that well-formed progress passes validation unchanged."""
    progress = make_progress(user_id, completed=3)

    assert validate_progress(progress, user_id) is progress


@pytest.mark.parametrize(
    "progress",
    [
        None,
        OverallProgress(None, [], 0, 0, 0, 0, 0.0, 0.0),
        OverallProgress("someone-else", [], 0, 0, 0, 0, 0.0, 0.0),
    ],
)
def test_validate_progress_rejects_foreign_progress(progress, user_id: str) -> None:
    """Test that missing or foreign progress is a transient failure."""
    with pytest.raises(TransientSyncFailure) as exc_info:
        validate_progress(progress, user_id)

    assert exc_info.value.operation == "fetch_user_progress"


def test_validate_progress_rejects_missing_ids(user_id: str) -> None:
    """Test that themes and stories without ids are rejected."""
    nameless_theme = make_progress(user_id, completed=0)
    nameless_theme.themes = [ThemeProgress(None, 1, 0, 0, 0.0)]
    nameless_story = make_progress(user_id, completed=0)
    story = StoryProgress(None, "travel", 0, 3, StoryStatus.NOT_STARTED)
    nameless_story.themes = [ThemeProgress("travel", 1, 0, 0, 0.0, stories=[story])]

    with pytest.raises(TransientSyncFailure):
        validate_progress(nameless_theme, user_id)
    with pytest.raises(TransientSyncFailure):
        validate_progress(nameless_story, user_id)


@pytest.mark.asyncio
async def test_sync_rejects_progress_of_other_user(remote, store: ProgressStore, user_id: str) -> None:
    """Test that progress for another user never replaces the local view."""
    remote.progress = make_progress(user_id, completed=2)
    coordinator = SyncCoordinator(user_id, remote, store=store)
    before = await coordinator.sync_progress()

    remote.progress = make_progress("someone-else", completed=9)
    after = await coordinator.sync_progress()

    assert after is before
    assert coordinator.progress.user_id == user_id
    assert store.get(progress_key(user_id))["completed_stories"] == 2


@pytest.mark.asyncio
async def test_sync_rejects_empty_http_body(store: ProgressStore, user_id: str) -> None:
    """Test that an empty JSON body from the backend keeps the last good view."""
    bodies = [make_progress(user_id, completed=4).to_dict(), {}]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=bodies.pop(0))

    remote = HttpRemoteProgressService(
        base_url="https://progress.example.com/api/",
        transport=httpx.MockTransport(handler),
    )
    coordinator = SyncCoordinator(user_id, remote, store=store)

    first = await coordinator.sync_progress()
    second = await coordinator.sync_progress()
    await remote.close()

    assert second is first
    assert coordinator.progress.user_id == user_id
    assert coordinator.progress.completed_stories == 4
    assert store.get(progress_key(user_id))["user_id"] == user_id
