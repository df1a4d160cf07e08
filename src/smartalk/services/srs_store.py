"""SRS record store: per user and keyword spaced repetition state."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from smartalk.config import SRSSettings, settings
from smartalk.models.srs_models import (
    DueItem,
    KeywordSRSState,
    LearningStatus,
    ReviewItem,
    ReviewResult,
)
from smartalk.services.events import EventChannel
from smartalk.services.srs_strategies import LevelTableStrategy, SpacedRepetitionStrategy
from smartalk.services.storage import KEYWORD_SRS_STATES_KEY, SnapshotWriter, StateRepository
from smartalk.utils import Clock, UserLocks, utcnow

logger = logging.getLogger(__name__)


class SRSRecordStore:
    """Holds KeywordSRSState records and applies attempt outcomes to them."""

    def __init__(
        self,
        repository: StateRepository,
        writer: SnapshotWriter,
        events: EventChannel,
        strategy: Optional[SpacedRepetitionStrategy] = None,
        srs_settings: Optional[SRSSettings] = None,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.writer = writer
        self.events = events
        self.settings = srs_settings or settings.srs
        self.strategy = strategy or LevelTableStrategy(self.settings)
        self.clock = clock
        self._locks = UserLocks()
        self._states: Dict[Tuple[str, str], KeywordSRSState] = {}

        self._load()

    # ===== Persistence =====

    def _load(self) -> None:
        """Load states from the repository."""
        try:
            records = self.repository.load_snapshot(KEYWORD_SRS_STATES_KEY) or []
        except Exception as e:
            logger.error("Error loading keyword SRS states: %s", e)
            return

        for data in records:
            try:
                state = KeywordSRSState.from_data(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed keyword SRS state %s: %s", data, e)
                continue
            self._states[(state.user_id, state.keyword_id)] = state
        logger.info("Loaded %d keyword SRS states", len(self._states))

    def _snapshot(self) -> List[Dict[str, Any]]:
        return [self._states[key].to_data() for key in sorted(self._states)]

    def _mark_dirty(self) -> None:
        self.writer.mark_dirty(KEYWORD_SRS_STATES_KEY, self._snapshot)

    # ===== Queries =====

    def get_keyword_state(self, user_id: str, keyword_id: str) -> Optional[KeywordSRSState]:
        """Get the state of one keyword for a user."""
        return self._states.get((user_id, keyword_id))

    def get_user_states(self, user_id: str) -> List[KeywordSRSState]:
        """Get all keyword states of a user ordered by keyword id."""
        return sorted(
            (state for (owner, _), state in self._states.items() if owner == user_id),
            key=lambda state: state.keyword_id,
        )

    def get_due_states(self, user_id: str, now: Optional[datetime] = None) -> List[KeywordSRSState]:
        """Get started keywords whose review time has passed, earliest due first."""
        now = now or self.clock()
        due = [
            state
            for state in self.get_user_states(user_id)
            if state.status != LearningStatus.NOT_STARTED
            and state.next_review_at is not None
            and state.next_review_at <= now
        ]
        return sorted(due, key=lambda state: (state.next_review_at, state.keyword_id))

    def get_due_items(self, user_id: str, now: Optional[datetime] = None) -> List[DueItem]:
        """Due-item list for reminder schedulers."""
        return [
            DueItem(keyword_id=state.keyword_id, next_review_at=state.next_review_at)
            for state in self.get_due_states(user_id, now)
        ]

    def get_statistics(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Aggregate learning statistics for a user."""
        states = self.get_user_states(user_id)
        attempts = sum(state.attempts for state in states)
        correct = sum(state.correct_attempts for state in states)
        started = [state for state in states if state.status != LearningStatus.NOT_STARTED]

        return {
            "total_keywords": len(states),
            "due_keywords": len(self.get_due_states(user_id, now)),
            "by_status": {
                status.value: sum(1 for state in states if state.status == status)
                for status in LearningStatus
            },
            "average_level": (
                sum(state.level for state in started) / len(started) if started else 0.0
            ),
            "accuracy": correct / attempts if attempts else 0.0,
        }

    # ===== Mutations =====

    def track_keyword(self, user_id: str, keyword_id: str) -> KeywordSRSState:
        """Register a keyword for a user without recording an attempt."""
        with self._locks(user_id):
            state = self._states.get((user_id, keyword_id))
            if state:
                return state

            state = self._new_state(user_id, keyword_id)
            self._states[(user_id, keyword_id)] = state
            self._mark_dirty()
            logger.debug("Tracking keyword %s for user %s", keyword_id, user_id)
            return state

    def _new_state(self, user_id: str, keyword_id: str) -> KeywordSRSState:
        return KeywordSRSState(
            user_id=user_id,
            keyword_id=keyword_id,
            ease_factor=self.settings.initial_ease_factor,
            interval_days=self.settings.initial_interval_days,
        )

    def record_attempt(
        self,
        user_id: str,
        keyword_id: str,
        result: Union[ReviewResult, bool],
        now: Optional[datetime] = None,
    ) -> KeywordSRSState:
        """Record an attempt at a keyword and reschedule it on the level table.

        The state is created on the first attempt.
        """
        if isinstance(result, bool):
            result = ReviewResult.CORRECT if result else ReviewResult.INCORRECT
        now = now or self.clock()

        with self._locks(user_id):
            state = self._states.get((user_id, keyword_id))
            if state is None:
                state = self._new_state(user_id, keyword_id)
                self._states[(user_id, keyword_id)] = state

            previous_level = state.level
            state.attempts += 1
            if result == ReviewResult.CORRECT:
                state.correct_attempts += 1
            state.accuracy = state.correct_attempts / state.attempts

            if state.status == LearningStatus.NOT_STARTED:
                state.first_learned_at = now

            self.strategy.record_outcome(state, result, now)
            state.last_attempt_at = now
            self._update_status(state, now)
            self._mark_dirty()

        logger.debug(
            "Recorded %s attempt for keyword %s (user %s): level %d -> %d",
            result.value,
            keyword_id,
            user_id,
            previous_level,
            state.level,
        )
        self.events.publish(
            "keyword_attempt_recorded",
            {
                "user_id": user_id,
                "keyword_id": keyword_id,
                "result": result.value,
                "previous_level": previous_level,
                "level": state.level,
                "level_change": state.level - previous_level,
                "accuracy": state.accuracy,
                "next_review_at": state.next_review_at.isoformat(),
                "strategy": self.strategy.name,
            },
        )
        return state

    def _update_status(self, state: KeywordSRSState, now: datetime) -> None:
        if state.level >= self.settings.max_level:
            state.status = LearningStatus.MASTERED
            if state.mastered_at is None:
                state.mastered_at = now
        elif (
            state.accuracy >= self.settings.completion_accuracy
            and state.attempts >= self.settings.completion_attempts
        ):
            state.status = LearningStatus.COMPLETED
        else:
            state.status = LearningStatus.IN_PROGRESS

    def apply_review_item(
        self, user_id: str, item: ReviewItem, now: Optional[datetime] = None
    ) -> Optional[KeywordSRSState]:
        """Write the SM-2 outcome of a review item back to its keyword."""
        now = now or self.clock()
        with self._locks(user_id):
            state = self._states.get((user_id, item.keyword_id))
            if state is None:
                logger.warning(
                    "Ignoring review result for unknown keyword %s (user %s)",
                    item.keyword_id,
                    user_id,
                )
                return None

            state.ease_factor = item.ease_factor
            state.interval_days = item.current_interval
            state.sm2_review_count = item.review_count
            state.next_review_at = item.next_review_at or now + timedelta(days=item.current_interval)
            state.last_attempt_at = now
            self._mark_dirty()
            return state

    def purge_user(self, user_id: str) -> int:
        """Delete every state of a user. Returns the number of removed states."""
        with self._locks(user_id):
            keys = [key for key in self._states if key[0] == user_id]
            for key in keys:
                del self._states[key]
            if keys:
                self._mark_dirty()
        logger.info("Purged %d keyword SRS states for user %s", len(keys), user_id)
        return len(keys)

    def validate_integrity(self) -> bool:
        """Check every state for consistency."""
        for (user_id, keyword_id), state in self._states.items():
            problem = None
            if not user_id or not keyword_id:
                problem = "missing identifiers"
            elif state.user_id != user_id or state.keyword_id != keyword_id:
                problem = "identifier mismatch"
            elif not 0 <= state.level <= self.settings.max_level:
                problem = f"level {state.level} out of range"
            elif not 0.0 <= state.accuracy <= 1.0:
                problem = f"accuracy {state.accuracy} out of range"
            elif state.correct_attempts > state.attempts:
                problem = "more correct attempts than attempts"
            elif state.ease_factor < self.settings.min_ease_factor:
                problem = f"ease factor {state.ease_factor} below minimum"
            elif state.status != LearningStatus.NOT_STARTED and state.next_review_at is None:
                problem = "started keyword without review time"

            if problem:
                logger.warning(
                    "Integrity check failed for keyword %s (user %s): %s",
                    keyword_id,
                    user_id,
                    problem,
                )
                return False
        return True
