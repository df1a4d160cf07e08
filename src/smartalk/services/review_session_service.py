"""Service for running short self-assessed review sessions."""
import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError

from smartalk.config import ReviewSettings, SRSSettings, settings
from smartalk.models.models import Keyword
from smartalk.models.srs_models import (
    KeywordSRSState,
    ReviewItem,
    ReviewSession,
    ReviewSummary,
    SelfAssessment,
    SessionStatus,
)
from smartalk.services.events import EventChannel
from smartalk.services.keyword_service import KeywordService
from smartalk.services.srs_store import SRSRecordStore
from smartalk.services.srs_strategies import SM2Strategy
from smartalk.services.storage import REVIEW_SESSIONS_KEY, SnapshotWriter, StateRepository
from smartalk.utils import Clock, UserLocks, utcnow

logger = logging.getLogger(__name__)


class EmptyReviewError(ValueError):
    """Raised when a review session is requested without due keywords."""


class ReviewSessionManager:
    """Builds review sessions from due keywords, scores answers with SM-2
    and writes the outcome back to the SRS record store."""

    def __init__(
        self,
        repository: StateRepository,
        writer: SnapshotWriter,
        events: EventChannel,
        srs_store: SRSRecordStore,
        keyword_service: KeywordService,
        strategy: Optional[SM2Strategy] = None,
        review_settings: Optional[ReviewSettings] = None,
        srs_settings: Optional[SRSSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.writer = writer
        self.events = events
        self.srs_store = srs_store
        self.keyword_service = keyword_service
        self.settings = review_settings or settings.review
        self.srs_settings = srs_settings or settings.srs
        self.strategy = strategy or SM2Strategy(self.srs_settings)
        self.rng = rng or random.Random()
        self.clock = clock
        self._locks = UserLocks()
        self._sessions: Dict[str, ReviewSession] = {}

        self._load()

    # ===== Persistence =====

    def _load(self) -> None:
        """Load sessions from the repository."""
        try:
            records = self.repository.load_snapshot(REVIEW_SESSIONS_KEY) or []
        except Exception as e:
            logger.error("Error loading review sessions: %s", e)
            return

        for data in records:
            try:
                session = ReviewSession.from_data(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed review session: %s", e)
                continue
            self._sessions[session.session_id] = session
        logger.info("Loaded %d review sessions", len(self._sessions))

    def _snapshot(self) -> List[Dict[str, Any]]:
        return [session.to_data() for session in self._sessions.values()]

    def _mark_dirty(self) -> None:
        self.writer.mark_dirty(REVIEW_SESSIONS_KEY, self._snapshot)

    # ===== Session creation =====

    def target_duration(self, item_count: int) -> int:
        """Target session length in seconds."""
        return min(item_count * self.settings.seconds_per_item, self.settings.max_duration)

    def create(self, user_id: str, due_keywords: Sequence[KeywordSRSState]) -> ReviewSession:
        """Create a review session from due keywords.

        Raises:
            EmptyReviewError: if there is nothing to review.
        """
        if not due_keywords:
            raise EmptyReviewError(f"No due keywords to review for user {user_id}")

        items = [self._create_item(state) for state in due_keywords]
        self.rng.shuffle(items)

        session = ReviewSession(
            session_id=f"review_{uuid.uuid4().hex}",
            user_id=user_id,
            items=items,
            started_at=self.clock(),
            target_duration=self.target_duration(len(items)),
        )

        with self._locks(user_id):
            self._sessions[session.session_id] = session
            self._mark_dirty()

        logger.info(
            "Created review session %s for user %s with %d items",
            session.session_id,
            user_id,
            len(items),
        )
        self.events.publish(
            "review_session_created",
            {
                "session_id": session.session_id,
                "user_id": user_id,
                "items_count": len(items),
                "target_duration": session.target_duration,
            },
        )
        return session

    def _lookup_keyword(self, keyword_id: str) -> Optional[Keyword]:
        try:
            return self.keyword_service.get_keyword(keyword_id)
        except SQLAlchemyError as e:
            logger.error("Error looking up keyword %s: %s", keyword_id, e)
            return None

    def _media_url(self, kind: str, name: str) -> str:
        return f"{self.settings.media_base_url}/{kind}/{name}"

    def _create_item(self, state: KeywordSRSState) -> ReviewItem:
        keyword = self._lookup_keyword(state.keyword_id)
        if keyword is None:
            logger.warning("Keyword %s not in catalogue, using generated media", state.keyword_id)

        text = keyword.text if keyword else state.keyword_id
        correct_image = (keyword.image_url if keyword else None) or self._media_url("images", text)
        audio_url = (keyword.audio_url if keyword else None) or self._media_url("audio", text)

        distractors = self._pick_distractors(keyword, text, correct_image)
        options = [correct_image] + distractors
        self.rng.shuffle(options)

        return ReviewItem(
            keyword_id=state.keyword_id,
            keyword=text,
            audio_url=audio_url,
            correct_image=correct_image,
            distractor_images=distractors,
            options=options,
            current_interval=state.interval_days,
            ease_factor=state.ease_factor,
            review_count=state.sm2_review_count,
            initial_interval=state.interval_days,
            initial_ease_factor=state.ease_factor,
            initial_review_count=state.sm2_review_count,
        )

    def _pick_distractors(self, keyword: Optional[Keyword], text: str, correct_image: str) -> List[str]:
        """Pick distractor images from the keyword's topic, padding with
        generated images when the topic is too small."""
        count = self.settings.distractor_count
        pool: List[str] = []

        if keyword is not None:
            try:
                neighbours = self.keyword_service.get_topic_keywords(keyword.topic, exclude_id=keyword.id)
            except SQLAlchemyError as e:
                logger.error("Error loading topic %s: %s", keyword.topic, e)
                neighbours = []
            for other in neighbours:
                image = other.image_url or self._media_url("images", other.text)
                if image != correct_image and image not in pool:
                    pool.append(image)

        chosen = self.rng.sample(pool, min(count, len(pool)))

        index = 1
        while len(chosen) < count:
            placeholder = self._media_url("images", f"distractor{index}_{text}")
            if placeholder not in chosen and placeholder != correct_image:
                chosen.append(placeholder)
            index += 1
        return chosen

    # ===== Answers =====

    def submit_answer(
        self,
        session_id: str,
        item_index: int,
        selection: str,
        self_assessment: Union[SelfAssessment, str],
        response_time_ms: int,
    ) -> bool:
        """Record an answer for one item. Returns False if the answer was rejected.

        Submitting the same item again replaces the previous answer.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Ignoring answer for unknown review session %s", session_id)
            return False
        if session.is_completed:
            logger.warning("Ignoring answer for completed review session %s", session_id)
            return False
        if not 0 <= item_index < session.total_items:
            logger.warning("Ignoring answer for item %d of review session %s", item_index, session_id)
            return False
        try:
            assessment = SelfAssessment(self_assessment)
        except ValueError:
            logger.warning("Ignoring answer with unknown self-assessment %r", self_assessment)
            return False

        now = self.clock()
        with self._locks(session.user_id):
            item = session.items[item_index]
            resubmitted = item.is_answered
            if resubmitted:
                self._retract_answer(session, item)

            item.user_selection = selection
            item.self_assessment = assessment
            item.response_time_ms = response_time_ms
            item.is_correct = selection == item.correct_image

            session.completed_items += 1
            if item.is_correct:
                session.correct_answers += 1
            setattr(session, assessment.value, getattr(session, assessment.value) + 1)

            self.strategy.record_outcome(item, assessment, now)
            self.srs_store.apply_review_item(session.user_id, item, now)
            self._mark_dirty()

        self.events.publish(
            "review_answer_submitted",
            {
                "session_id": session_id,
                "user_id": session.user_id,
                "item_index": item_index,
                "keyword_id": item.keyword_id,
                "is_correct": item.is_correct,
                "self_assessment": assessment.value,
                "response_time_ms": response_time_ms,
                "interval_days": item.current_interval,
                "ease_factor": item.ease_factor,
                "resubmitted": resubmitted,
            },
        )
        return True

    def _retract_answer(self, session: ReviewSession, item: ReviewItem) -> None:
        """Undo the counters and SM-2 update of a previous answer."""
        session.completed_items -= 1
        if item.is_correct:
            session.correct_answers -= 1
        bucket = item.self_assessment.value
        setattr(session, bucket, getattr(session, bucket) - 1)

        item.current_interval = item.initial_interval
        item.ease_factor = item.initial_ease_factor
        item.review_count = item.initial_review_count
        item.next_review_at = None

    # ===== Navigation =====

    def get_session(self, session_id: str) -> Optional[ReviewSession]:
        """Get a review session by its ID."""
        return self._sessions.get(session_id)

    def get_current_item(self, session_id: str) -> Optional[ReviewItem]:
        """Get the item the session is currently showing."""
        session = self._sessions.get(session_id)
        if not session or session.current_item_index >= session.total_items:
            return None
        return session.items[session.current_item_index]

    def move_to_next_item(self, session_id: str) -> bool:
        """Advance to the next item. Returns False when no item is left."""
        session = self._sessions.get(session_id)
        if not session or session.is_completed:
            return False

        with self._locks(session.user_id):
            if session.current_item_index < session.total_items:
                session.current_item_index += 1
                self._mark_dirty()
            return session.current_item_index < session.total_items

    # ===== Completion =====

    def summarize(self, session: ReviewSession) -> ReviewSummary:
        """Build the summary of a session."""
        return ReviewSummary(
            session_id=session.session_id,
            user_id=session.user_id,
            total_items=session.total_items,
            completed_items=session.completed_items,
            correct_answers=session.correct_answers,
            accuracy=session.correct_answers / session.total_items if session.total_items else 0.0,
            instantly_got_it=session.instantly_got_it,
            had_to_think=session.had_to_think,
            forgot=session.forgot,
            target_duration=session.target_duration,
            actual_duration=session.actual_duration,
        )

    def complete(self, session_id: str) -> Optional[ReviewSummary]:
        """Finish a session and return its summary."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning("Cannot complete unknown review session %s", session_id)
            return None
        if session.is_completed:
            logger.debug("Review session %s already completed", session_id)
            return self.summarize(session)

        now = self.clock()
        with self._locks(session.user_id):
            session.status = SessionStatus.COMPLETED
            session.completed_at = now
            session.actual_duration = int((now - session.started_at).total_seconds())
            self._mark_dirty()

        summary = self.summarize(session)
        logger.info(
            "Completed review session %s: %d/%d correct in %ds",
            session_id,
            summary.correct_answers,
            summary.total_items,
            summary.actual_duration,
        )
        self.events.publish(
            "review_session_completed",
            {
                "session_id": session_id,
                "user_id": session.user_id,
                "duration": summary.actual_duration,
                "target_duration": summary.target_duration,
                "total_items": summary.total_items,
                "completed_items": summary.completed_items,
                "accuracy": summary.accuracy,
                "instantly_got_it": summary.instantly_got_it,
                "had_to_think": summary.had_to_think,
                "forgot": summary.forgot,
            },
        )
        return summary

    # ===== Housekeeping =====

    def reap_stale_sessions(self, now: Optional[datetime] = None) -> int:
        """Drop completed sessions past the retention window and abandoned
        sessions past the stale window. Returns the number of dropped sessions."""
        now = now or self.clock()
        retention = timedelta(seconds=self.settings.completed_retention)
        stale_after = timedelta(seconds=self.settings.stale_after)

        completed, abandoned = [], []
        for session_id, session in list(self._sessions.items()):
            if session.is_completed:
                if session.completed_at and now - session.completed_at > retention:
                    completed.append(session_id)
            elif now - session.started_at > stale_after:
                abandoned.append(session_id)

        for session_id in completed + abandoned:
            del self._sessions[session_id]

        if completed or abandoned:
            self._mark_dirty()
            logger.info(
                "Reaped %d completed and %d abandoned review sessions",
                len(completed),
                len(abandoned),
            )
            self.events.publish(
                "review_sessions_reaped",
                {"completed": len(completed), "abandoned": len(abandoned)},
            )
        return len(completed) + len(abandoned)

    def purge_user(self, user_id: str) -> int:
        """Delete every session of a user."""
        with self._locks(user_id):
            session_ids = [sid for sid, session in self._sessions.items() if session.user_id == user_id]
            for session_id in session_ids:
                del self._sessions[session_id]
            if session_ids:
                self._mark_dirty()
        return len(session_ids)

    def validate_integrity(self) -> bool:
        """Check that session counters agree with the answered items."""
        for session_id, session in self._sessions.items():
            answered = [item for item in session.items if item.is_answered]
            buckets = session.instantly_got_it + session.had_to_think + session.forgot
            problem = None
            if session.completed_items != len(answered):
                problem = "completed item count mismatch"
            elif session.correct_answers != sum(1 for item in answered if item.is_correct):
                problem = "correct answer count mismatch"
            elif buckets != session.completed_items:
                problem = "self-assessment tallies mismatch"
            elif not 0 <= session.current_item_index <= session.total_items:
                problem = "current item index out of range"
            elif any(item.ease_factor < self.srs_settings.min_ease_factor for item in session.items):
                problem = "ease factor below minimum"
            elif session.is_completed and session.completed_at is None:
                problem = "completed session without completion time"

            if problem:
                logger.warning("Integrity check failed for review session %s: %s", session_id, problem)
                return False
        return True
