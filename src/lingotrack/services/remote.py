"""Remote progress service contract and its adapters."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.orm import Session

from lingotrack.config import settings
from lingotrack.errors import TransientSyncFailure
from lingotrack.models.progress_models import KeywordDelta, OverallProgress
from lingotrack.services.aggregator import ProgressAggregator

logger = logging.getLogger(__name__)


class RemoteProgressService(ABC):
    """Authoritative progress copy the local view is reconciled against."""

    @abstractmethod
    async def fetch_user_progress(self, user_id: str) -> OverallProgress:
        """Fetch the authoritative overall progress of a user."""

    @abstractmethod
    async def push_keyword_update(
        self, user_id: str, story_id: str, keyword_id: str, delta: KeywordDelta
    ) -> None:
        """Push the result of one keyword answer."""

    async def close(self) -> None:
        """Release any held resources."""


class HttpRemoteProgressService(RemoteProgressService):
    """HTTP client for the backend progress API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        base_url = base_url or settings.sync.remote_base_url
        if not base_url:
            raise ValueError("REMOTE_BASE_URL is required for the HTTP progress service")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.sync.remote_timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientSyncFailure(operation, e) from e
        return response

    async def fetch_user_progress(self, user_id: str) -> OverallProgress:
        response = await self._request("fetch_user_progress", "GET", f"/users/{user_id}/progress")
        try:
            return OverallProgress.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise TransientSyncFailure("fetch_user_progress", e) from e

    async def push_keyword_update(
        self, user_id: str, story_id: str, keyword_id: str, delta: KeywordDelta
    ) -> None:
        await self._request(
            "push_keyword_update",
            "POST",
            f"/users/{user_id}/stories/{story_id}/keywords/{keyword_id}",
            json=delta.to_dict(),
        )
        logger.debug("Pushed keyword update %s/%s for user %s", story_id, keyword_id, user_id)


class DatabaseRemoteProgressService(RemoteProgressService):
    """Backend-side service reading the shared SQL store.

    Keyword rows are written by the session manager before the push, so a push
    has nothing left to persist.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def fetch_user_progress(self, user_id: str) -> OverallProgress:
        # Blocking SQL runs off the event loop
        return await asyncio.to_thread(self._aggregate, user_id)

    def _aggregate(self, user_id: str) -> OverallProgress:
        db = self.session_factory()
        try:
            return ProgressAggregator(db, cache_ttl=0).aggregate_user(user_id)
        except Exception as e:
            raise TransientSyncFailure("fetch_user_progress", e) from e
        finally:
            db.close()

    async def push_keyword_update(
        self, user_id: str, story_id: str, keyword_id: str, delta: KeywordDelta
    ) -> None:
        logger.debug(
            "Keyword %s/%s of user %s already stored (accuracy %.2f)",
            story_id,
            keyword_id,
            user_id,
            delta.accuracy,
        )
