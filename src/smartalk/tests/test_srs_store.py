"""Tests for the SRS record store."""
from datetime import timedelta
from typing import List

import pytest
from faker import Faker

from smartalk.config import SRSSettings
from smartalk.models.srs_models import LearningStatus, ReviewItem, ReviewResult
from smartalk.services.events import Event, EventChannel
from smartalk.services.srs_store import SRSRecordStore
from smartalk.services.storage import KEYWORD_SRS_STATES_KEY, InMemoryRepository, SnapshotWriter

fake = Faker()


@pytest.fixture
def user_id() -> str:
    """Create a test user id."""
    return fake.uuid4()


def test_first_attempt_creates_state(srs_store: SRSRecordStore, user_id: str, clock) -> None:
    """Test that recording an attempt creates the keyword state."""
    state = srs_store.record_attempt(user_id, "apple", ReviewResult.CORRECT)

    assert srs_store.get_keyword_state(user_id, "apple") is state
    assert state.status == LearningStatus.IN_PROGRESS
    assert state.attempts == 1
    assert state.correct_attempts == 1
    assert state.accuracy == 1.0
    assert state.first_learned_at == clock.now
    assert state.last_attempt_at == clock.now


def test_boolean_result(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test that a plain boolean is accepted as the attempt result."""
    state = srs_store.record_attempt(user_id, "apple", False)
    assert state.last_result == ReviewResult.INCORRECT
    assert state.correct_attempts == 0
    assert state.accuracy == 0.0


def test_attempt_event(srs_store: SRSRecordStore, published: List[Event], user_id: str) -> None:
    """Test the event published for every attempt."""
    srs_store.record_attempt(user_id, "apple", True)
    srs_store.record_attempt(user_id, "apple", True)

    assert [event.name for event in published] == ["keyword_attempt_recorded"] * 2
    payload = published[-1].payload
    assert payload["user_id"] == user_id
    assert payload["keyword_id"] == "apple"
    assert payload["previous_level"] == 0
    assert payload["level"] == 1
    assert payload["level_change"] == 1
    assert payload["strategy"] == "level_table"


def test_due_states_ordering(srs_store: SRSRecordStore, user_id: str, clock) -> None:
    """Test that due keywords come earliest first and untouched keywords are excluded."""
    srs_store.track_keyword(user_id, "dog")
    srs_store.record_attempt(user_id, "banana", False)
    srs_store.record_attempt(user_id, "apple", False)
    srs_store.record_attempt(user_id, "cherry", False, now=clock.now - timedelta(hours=1))
    srs_store.record_attempt(user_id, "egg", True)
    srs_store.record_attempt(user_id, "egg", True)

    due = srs_store.get_due_states(user_id)
    assert [state.keyword_id for state in due] == ["cherry", "apple", "banana"]

    later = srs_store.get_due_items(user_id, now=clock.now + timedelta(hours=4))
    assert [item.keyword_id for item in later] == ["cherry", "apple", "banana", "egg"]


def test_other_users_are_not_due(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test that due queries are scoped to one user."""
    srs_store.record_attempt(user_id, "apple", False)
    assert srs_store.get_due_states(fake.uuid4()) == []


def test_status_completed(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test that enough accurate attempts complete a keyword."""
    for result in (True, True, False, True, True):
        state = srs_store.record_attempt(user_id, "apple", result)
    assert state.accuracy == pytest.approx(0.8)
    assert state.status == LearningStatus.COMPLETED


def test_status_mastered(srs_store: SRSRecordStore, user_id: str, clock) -> None:
    """Test that reaching the top level masters a keyword."""
    state = srs_store.record_attempt(user_id, "apple", True)
    state.level = 7
    state.consecutive_correct = 1

    srs_store.record_attempt(user_id, "apple", True)
    assert state.level == 8
    assert state.status == LearningStatus.MASTERED
    assert state.mastered_at == clock.now


def test_track_keyword(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test that tracking a keyword twice keeps one state."""
    first = srs_store.track_keyword(user_id, "apple")
    second = srs_store.track_keyword(user_id, "apple")

    assert first is second
    assert first.status == LearningStatus.NOT_STARTED
    assert first.next_review_at is None
    assert first.ease_factor == 2.5


def test_statistics(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test aggregate statistics for a user."""
    srs_store.track_keyword(user_id, "dog")
    srs_store.record_attempt(user_id, "apple", True)
    srs_store.record_attempt(user_id, "apple", True)
    srs_store.record_attempt(user_id, "banana", False)

    stats = srs_store.get_statistics(user_id)
    assert stats["total_keywords"] == 3
    assert stats["due_keywords"] == 1
    assert stats["by_status"]["not_started"] == 1
    assert stats["by_status"]["in_progress"] == 2
    assert stats["average_level"] == pytest.approx(0.5)
    assert stats["accuracy"] == pytest.approx(2 / 3)


def test_apply_review_item(srs_store: SRSRecordStore, user_id: str, clock) -> None:
    """Test that an SM-2 outcome is written back to the keyword."""
    srs_store.record_attempt(user_id, "apple", True)
    item = ReviewItem(
        keyword_id="apple",
        keyword="apple",
        audio_url="audio/apple",
        correct_image="images/apple",
        distractor_images=[],
        options=["images/apple"],
        current_interval=6,
        ease_factor=2.6,
        review_count=2,
        next_review_at=clock.now + timedelta(days=6),
    )

    state = srs_store.apply_review_item(user_id, item)
    assert state.interval_days == 6
    assert state.ease_factor == 2.6
    assert state.sm2_review_count == 2
    assert state.next_review_at == clock.now + timedelta(days=6)
    assert state.level == 0


def test_apply_review_item_unknown_keyword(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test that results for unknown keywords are ignored."""
    item = ReviewItem(
        keyword_id="ghost",
        keyword="ghost",
        audio_url="",
        correct_image="",
        distractor_images=[],
        options=[],
        current_interval=1,
        ease_factor=2.5,
        review_count=0,
    )
    assert srs_store.apply_review_item(user_id, item) is None


def test_purge_user(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test deleting every state of one user."""
    other = fake.uuid4()
    srs_store.record_attempt(user_id, "apple", True)
    srs_store.record_attempt(user_id, "banana", True)
    srs_store.record_attempt(other, "apple", True)

    assert srs_store.purge_user(user_id) == 2
    assert srs_store.get_user_states(user_id) == []
    assert len(srs_store.get_user_states(other)) == 1


def test_validate_integrity(srs_store: SRSRecordStore, user_id: str) -> None:
    """Test that corrupt states fail the integrity check."""
    state = srs_store.record_attempt(user_id, "apple", True)
    assert srs_store.validate_integrity() is True

    state.correct_attempts = 5
    assert srs_store.validate_integrity() is False


def test_state_survives_reload(
    srs_store: SRSRecordStore,
    repository: InMemoryRepository,
    writer: SnapshotWriter,
    user_id: str,
    clock,
) -> None:
    """Test that flushed states are loaded by a new store."""
    srs_store.record_attempt(user_id, "apple", True)
    srs_store.record_attempt(user_id, "apple", True)
    assert KEYWORD_SRS_STATES_KEY in writer.pending
    assert writer.flush() is True

    reloaded = SRSRecordStore(repository, writer, EventChannel(), srs_settings=SRSSettings(), clock=clock)
    state = reloaded.get_keyword_state(user_id, "apple")
    assert state.level == 1
    assert state.status == LearningStatus.IN_PROGRESS
    assert state.next_review_at == clock.now + timedelta(hours=4)


def test_malformed_records_are_skipped(repository: InMemoryRepository, writer: SnapshotWriter, clock) -> None:
    """Test that one bad record does not prevent loading the rest."""
    repository.save_snapshot(
        KEYWORD_SRS_STATES_KEY,
        [{"keyword_id": "broken"}, {"user_id": "u1", "keyword_id": "apple", "status": "in_progress", "level": 2}],
    )

    store = SRSRecordStore(repository, writer, EventChannel(), srs_settings=SRSSettings(), clock=clock)
    assert store.get_keyword_state("u1", "broken") is None
    assert store.get_keyword_state("u1", "apple").level == 2


if __name__ == "__main__":
    pytest.main([__file__])
