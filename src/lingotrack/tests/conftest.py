"""Test configuration."""
import os
from typing import Generator, List, Optional, Tuple

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from faker import Faker
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Import after environment setup
from lingotrack.models.base import init_db
from lingotrack.models.models import Story, Theme
from lingotrack.models.progress_models import KeywordDelta, OverallProgress
from lingotrack.services.aggregator import ProgressAggregator
from lingotrack.services.events import EventEmitter
from lingotrack.services.progress_store import ProgressStore
from lingotrack.services.remote import RemoteProgressService
from lingotrack.services.session_manager import SessionManager
from lingotrack.services.stats_service import StatsService

fake = Faker()


class FakeRemote(RemoteProgressService):
    """In-memory remote progress service recording pushes."""

    def __init__(self, progress: Optional[OverallProgress] = None):
        self.progress = progress
        self.fail_fetch = False
        self.fail_push = False
        self.fetch_calls = 0
        self.pushes: List[Tuple[str, str, str, KeywordDelta]] = []

    async def fetch_user_progress(self, user_id: str) -> OverallProgress:
        self.fetch_calls += 1
        if self.fail_fetch:
            raise ConnectionError("remote unavailable")
        if self.progress is None:
            return OverallProgress(user_id, [], 0, 0, 0, 0, 0.0, 0.0)
        return self.progress

    async def push_keyword_update(self, user_id, story_id, keyword_id, delta) -> None:
        if self.fail_push:
            raise ConnectionError("remote unavailable")
        self.pushes.append((user_id, story_id, keyword_id, delta))


@pytest.fixture
def session_factory() -> sessionmaker:
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user_id() -> str:
    """Create a test user ID."""
    return fake.uuid4()


@pytest.fixture
def catalogue(db: Session) -> List[Story]:
    """Create two themes with three stories of three keywords each."""
    travel = Theme(id="travel", title="Travel")
    food = Theme(id="food", title="Food")
    stories = [
        Story(id="airport", theme_id="travel", title="At the airport", keyword_count=3),
        Story(id="hotel", theme_id="travel", title="Hotel check-in", keyword_count=3),
        Story(id="market", theme_id="food", title="At the market", keyword_count=3),
    ]
    db.add_all([travel, food, *stories])
    db.commit()
    return stories


@pytest.fixture
def store(db: Session) -> ProgressStore:
    """Create a progress store instance."""
    return ProgressStore(db)


@pytest.fixture
def aggregator(db: Session) -> ProgressAggregator:
    """Create an aggregator without caching."""
    return ProgressAggregator(db, cache_ttl=0)


@pytest.fixture
def events() -> EventEmitter:
    """Create an event emitter."""
    return EventEmitter()


@pytest.fixture
def remote() -> FakeRemote:
    """Create a fake remote progress service."""
    return FakeRemote()


@pytest.fixture
def session_manager(
    db: Session,
    store: ProgressStore,
    aggregator: ProgressAggregator,
    remote: FakeRemote,
    events: EventEmitter,
) -> SessionManager:
    """Create a session manager instance."""
    return SessionManager(db, store, aggregator=aggregator, remote=remote, events=events)


@pytest.fixture
def stats_service(db: Session, aggregator: ProgressAggregator) -> StatsService:
    """Create a stats service instance."""
    return StatsService(db, aggregator=aggregator)
