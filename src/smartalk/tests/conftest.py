"""Test configuration."""
import os
import random
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Generator, List

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from smartalk.config import PersistenceSettings, RescueSettings, ReviewSettings, SRSSettings
from smartalk.models.base import init_db
from smartalk.services.events import ALL_EVENTS, Event, EventChannel
from smartalk.services.keyword_service import KeywordService
from smartalk.services.rescue_mode_service import RescueModeController
from smartalk.services.review_session_service import ReviewSessionManager
from smartalk.services.srs_store import SRSRecordStore
from smartalk.services.storage import InMemoryRepository, SnapshotWriter

START = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    """Create a seeded random source."""
    return random.Random(42)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh in-memory database session for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def repository() -> InMemoryRepository:
    """Create an in-memory snapshot repository."""
    return InMemoryRepository()


@pytest.fixture
def writer(repository: InMemoryRepository) -> SnapshotWriter:
    """Create a batching snapshot writer."""
    return SnapshotWriter(repository, PersistenceSettings(write_through=False))


@pytest.fixture
def events() -> EventChannel:
    """Create an event channel."""
    return EventChannel()


@pytest.fixture
def published(events: EventChannel) -> List[Event]:
    """Collect every event published on the channel."""
    received: List[Event] = []
    events.subscribe(ALL_EVENTS, received.append)
    return received


@pytest.fixture
def srs_store(
    repository: InMemoryRepository,
    writer: SnapshotWriter,
    events: EventChannel,
    clock: FakeClock,
) -> SRSRecordStore:
    """Create an SRS record store."""
    return SRSRecordStore(repository, writer, events, srs_settings=SRSSettings(), clock=clock)


@pytest.fixture
def keyword_service(db: Session) -> KeywordService:
    """Create a keyword service instance."""
    return KeywordService(db)


@pytest.fixture
def review_manager(
    repository: InMemoryRepository,
    writer: SnapshotWriter,
    events: EventChannel,
    srs_store: SRSRecordStore,
    keyword_service: KeywordService,
    rng: random.Random,
    clock: FakeClock,
) -> ReviewSessionManager:
    """Create a review session manager."""
    return ReviewSessionManager(
        repository,
        writer,
        events,
        srs_store,
        keyword_service,
        review_settings=ReviewSettings(),
        srs_settings=SRSSettings(),
        rng=rng,
        clock=clock,
    )


@pytest.fixture
def rescue_controller(
    repository: InMemoryRepository,
    writer: SnapshotWriter,
    events: EventChannel,
    rng: random.Random,
    clock: FakeClock,
) -> RescueModeController:
    """Create a rescue mode controller."""
    return RescueModeController(
        repository,
        writer,
        events,
        rescue_settings=RescueSettings(),
        rng=rng,
        clock=clock,
    )
