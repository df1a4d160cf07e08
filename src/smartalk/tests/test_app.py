"""Tests for the review engine application."""
import random
from typing import List

import pytest
from faker import Faker
from sqlalchemy.orm import Session

from smartalk.app import SmarTalkEngine
from smartalk.config import Settings
from smartalk.models.srs_models import SelfAssessment
from smartalk.services.events import ALL_EVENTS, Event
from smartalk.services.storage import (
    KEYWORD_SRS_STATES_KEY,
    RESCUE_MODE_STATES_KEY,
    REVIEW_SESSIONS_KEY,
    InMemoryRepository,
    SqlAlchemyRepository,
)

fake = Faker()


@pytest.fixture
def engine(db: Session, repository: InMemoryRepository, clock) -> SmarTalkEngine:
    """Create an engine on the test database and an in-memory repository."""
    return SmarTalkEngine(
        db=db,
        repository=repository,
        rng=random.Random(3),
        clock=clock,
        app_settings=Settings(),
    )


@pytest.fixture
def user_id() -> str:
    """Create a test user id."""
    return fake.uuid4()


def test_start_review_without_due_keywords(engine: SmarTalkEngine, user_id: str) -> None:
    """Test that no session is created when nothing is due."""
    engine.srs_store.track_keyword(user_id, "apple")
    assert engine.start_review(user_id) is None


def test_learning_flow(engine: SmarTalkEngine, user_id: str, clock) -> None:
    """Test a learner going through practice, review and rescue mode."""
    received: List[Event] = []
    engine.events.subscribe(ALL_EVENTS, received.append)
    engine.keywords.add_keyword("apple", "apple", "fruit", image_url="https://cdn.example.com/apple.png")
    engine.keywords.add_keyword("pear", "pear", "fruit", image_url="https://cdn.example.com/pear.png")

    engine.srs_store.record_attempt(user_id, "apple", False)
    session = engine.start_review(user_id)
    assert session.total_items == 1

    item = session.items[0]
    assert "https://cdn.example.com/pear.png" in item.distractor_images
    assert engine.review_sessions.submit_answer(
        session.session_id, 0, item.correct_image, SelfAssessment.HAD_TO_THINK, 1500
    )
    clock.advance(seconds=12)
    summary = engine.review_sessions.complete(session.session_id)
    assert summary.accuracy == 1.0
    assert engine.srs_store.get_due_states(user_id) == []

    for _ in range(3):
        engine.rescue_mode.record_attempt(user_id, "apple", session.session_id, 45)
    assert engine.rescue_mode.get_current_pass_threshold(user_id) == 60

    assert engine.validate_state() is True
    assert [event.name for event in received] == [
        "keyword_attempt_recorded",
        "review_session_created",
        "review_answer_submitted",
        "review_session_completed",
        "triggered",
    ]


def test_purge_user(engine: SmarTalkEngine, user_id: str) -> None:
    """Test deleting everything stored for a user."""
    engine.srs_store.record_attempt(user_id, "apple", False)
    engine.start_review(user_id)
    for _ in range(3):
        engine.rescue_mode.record_failure(user_id, "apple", "session_1", 30)

    removed = engine.purge_user(user_id)

    assert removed == {"keyword_states": 1, "review_sessions": 1, "rescue_states": 1}
    assert engine.srs_store.get_user_states(user_id) == []
    assert engine.rescue_mode.get_state(user_id) is None


@pytest.mark.asyncio
async def test_start_stop(engine: SmarTalkEngine, repository: InMemoryRepository, user_id: str) -> None:
    """Test that stopping the engine writes pending state."""
    await engine.start()
    assert engine.running is True
    assert engine.scheduler.running is True

    engine.srs_store.record_attempt(user_id, "apple", False)
    engine.start_review(user_id)
    engine.rescue_mode.record_failure(user_id, "apple", "session_1", 30)

    await engine.stop()
    assert engine.running is False
    assert engine.scheduler.tasks == {}
    assert engine.writer.pending == frozenset()
    assert len(repository.load_snapshot(KEYWORD_SRS_STATES_KEY)) == 1
    assert len(repository.load_snapshot(REVIEW_SESSIONS_KEY)) == 1
    assert len(repository.load_snapshot(RESCUE_MODE_STATES_KEY)) == 1


@pytest.mark.asyncio
async def test_snapshots_use_separate_session(db: Session, user_id: str, clock) -> None:
    """Test that the default repository writes through its own session."""
    engine = SmarTalkEngine(db=db, clock=clock, app_settings=Settings())
    assert isinstance(engine.repository, SqlAlchemyRepository)
    assert engine.repository.db is not db
    assert engine.repository.db.get_bind() is db.get_bind()

    engine.srs_store.record_attempt(user_id, "apple", True)
    await engine.stop()

    assert len(SqlAlchemyRepository(db).load_snapshot(KEYWORD_SRS_STATES_KEY)) == 1
    assert engine.db is db


@pytest.mark.asyncio
async def test_engine_owns_database_session() -> None:
    """Test that an engine without a session opens and closes its own."""
    engine = SmarTalkEngine(repository=InMemoryRepository())
    assert engine.db is not None

    await engine.start()
    await engine.stop()
    assert engine.db is None


if __name__ == "__main__":
    pytest.main([__file__])
