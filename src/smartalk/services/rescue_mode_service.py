"""Rescue mode: relaxed pronunciation scoring for struggling learners.

A user enters rescue mode after ``trigger_threshold`` consecutive failed
pronunciation attempts during pronunciation training. While active the pass
threshold is lowered and a bonus is added to raw scores. Passing under
rescue conditions, or exiting manually, returns the user to normal mode.
Failures from other learning phases are never counted.
"""
import copy
import logging
import random
import uuid
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional, Union

from smartalk.config import RescueSettings, settings
from smartalk.models.srs_models import (
    LearningPhase,
    RescueEventType,
    RescueModeEvent,
    RescueModeState,
)
from smartalk.monitoring import rescue_mode_active
from smartalk.services.events import EventChannel
from smartalk.services.storage import (
    RESCUE_MODE_EVENTS_KEY,
    RESCUE_MODE_STATES_KEY,
    SnapshotWriter,
    StateRepository,
)
from smartalk.utils import Clock, UserLocks, utcnow

logger = logging.getLogger(__name__)

MAX_SCORE = 100


@dataclass
class PracticeAttemptResult:
    """How a single pronunciation attempt was judged."""
    raw_score: float
    score: float
    pass_threshold: int
    passed: bool
    rescue_active: bool
    triggered: bool = False
    counted: bool = True


@dataclass
class RescueVideo:
    """Slow-motion mouth video shown while rescue mode is active."""
    url: str
    playback_speed: float
    loop_count: int


class RescueModeController:
    """Per-user rescue mode state machine."""

    def __init__(
        self,
        repository: StateRepository,
        writer: SnapshotWriter,
        events: EventChannel,
        rescue_settings: Optional[RescueSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.writer = writer
        self.events = events
        self.settings = rescue_settings or settings.rescue
        self.rng = rng or random.Random()
        self.clock = clock
        self._locks = UserLocks()
        self._states: Dict[str, RescueModeState] = {}
        self._event_log: List[RescueModeEvent] = []

        self._load()

    # ===== Persistence =====

    def _load(self) -> None:
        """Load states and the event log from the repository."""
        try:
            state_records = self.repository.load_snapshot(RESCUE_MODE_STATES_KEY) or []
            event_records = self.repository.load_snapshot(RESCUE_MODE_EVENTS_KEY) or []
        except Exception as e:
            logger.error("Error loading rescue mode data: %s", e)
            return

        for data in state_records:
            try:
                state = RescueModeState.from_data(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed rescue mode state: %s", e)
                continue
            self._states[state.user_id] = state

        for data in event_records:
            try:
                self._event_log.append(RescueModeEvent.from_data(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Skipping malformed rescue mode event: %s", e)

        del self._event_log[:-self.settings.max_events]
        rescue_mode_active.set(sum(1 for state in self._states.values() if state.is_active))

        logger.info(
            "Loaded %d rescue mode states and %d events",
            len(self._states),
            len(self._event_log),
        )

    def _mark_states_dirty(self) -> None:
        self.writer.mark_dirty(
            RESCUE_MODE_STATES_KEY,
            lambda: [self._states[user_id].to_data() for user_id in sorted(self._states)],
        )

    def _mark_events_dirty(self) -> None:
        self.writer.mark_dirty(
            RESCUE_MODE_EVENTS_KEY,
            lambda: [event.to_data() for event in self._event_log],
        )

    # ===== State machine =====

    def _parse_phase(self, learning_phase: Union[LearningPhase, str]) -> Optional[LearningPhase]:
        try:
            return LearningPhase(learning_phase)
        except ValueError:
            logger.warning("Ignoring attempt with unknown learning phase %r", learning_phase)
            return None

    def _is_counted_phase(self, phase: Optional[LearningPhase]) -> bool:
        return phase is not None and phase.value in self.settings.enabled_phases

    def _video_url(self, keyword_id: str) -> str:
        return self.settings.video_url_template.format(keyword_id=keyword_id)

    def generate_phonetic_tips(self, keyword_id: str) -> List[str]:
        """General pronunciation tips followed by tips for the keyword itself."""
        specific = self.settings.keyword_phonetic_tips.get(keyword_id.lower(), [])
        return list(self.settings.common_phonetic_tips) + list(specific)

    def _new_state(self, user_id: str, keyword_id: str, session_id: str, phase: LearningPhase) -> RescueModeState:
        return RescueModeState(
            user_id=user_id,
            keyword_id=keyword_id,
            session_id=session_id,
            trigger_threshold=self.settings.trigger_threshold,
            lowered_pass_threshold=self.settings.rescue_pass_threshold,
            bonus_scoring=self.settings.bonus_scoring,
            rescue_video_url=self._video_url(keyword_id),
            phonetic_tips=self.generate_phonetic_tips(keyword_id),
            learning_phase=phase,
        )

    def record_failure(
        self,
        user_id: str,
        keyword_id: str,
        session_id: str,
        score: float,
        learning_phase: Union[LearningPhase, str] = LearningPhase.PRONUNCIATION_TRAINING,
        phonetic_tips: Optional[List[str]] = None,
    ) -> bool:
        """Record a failed pronunciation attempt.

        Returns True if this failure switched rescue mode on.
        """
        phase = self._parse_phase(learning_phase)
        if not self._is_counted_phase(phase):
            logger.debug("Ignoring %s failure for user %s", learning_phase, user_id)
            return False

        event = None
        with self._locks(user_id):
            state = self._states.get(user_id)
            if state is None:
                state = self._new_state(user_id, keyword_id, session_id, phase)
                self._states[user_id] = state

            state.consecutive_pronunciation_failures += 1
            state.total_pronunciation_attempts += 1
            state.keyword_id = keyword_id
            state.session_id = session_id
            state.learning_phase = phase
            state.phonetic_tips = (
                list(phonetic_tips) if phonetic_tips else self.generate_phonetic_tips(keyword_id)
            )

            if not state.is_active and state.consecutive_pronunciation_failures >= state.trigger_threshold:
                event = self._trigger(state, score)
            self._mark_states_dirty()

        if event:
            logger.info(
                "Rescue mode triggered for user %s after %d consecutive failures",
                user_id,
                state.consecutive_pronunciation_failures,
            )
            self._publish(event)
        return event is not None

    def _trigger(self, state: RescueModeState, score_before_rescue: float) -> RescueModeEvent:
        state.is_active = True
        state.triggered_at = self.clock()
        state.rescue_video_url = self._video_url(state.keyword_id)
        state.supportive_message = self.rng.choice(self.settings.supportive_messages)
        return self._record_event(
            RescueEventType.TRIGGERED,
            state,
            score_before_rescue=score_before_rescue,
        )

    def record_improvement(self, user_id: str, new_score: float, passed_with_rescue: bool) -> bool:
        """Record a successful attempt.

        The failure streak is always reset. Returns True if the user left
        rescue mode because they passed under rescue conditions.
        """
        event = None
        with self._locks(user_id):
            state = self._states.get(user_id)
            if state is None:
                logger.debug("No rescue mode state for user %s", user_id)
                return False

            state.consecutive_pronunciation_failures = 0
            if state.is_active and passed_with_rescue:
                time_in_rescue = self._elapsed_ms(state)
                state.is_active = False
                state.supportive_message = ""
                event = self._record_event(
                    RescueEventType.USER_IMPROVED,
                    state,
                    score_after_rescue=new_score,
                    rescue_effective=True,
                    time_in_rescue_mode=time_in_rescue,
                )
            self._mark_states_dirty()

        if event:
            logger.info(
                "User %s improved in rescue mode after %.0f ms",
                user_id,
                event.time_in_rescue_mode,
            )
            self._publish(event)
        return event is not None

    def exit_rescue_mode(self, user_id: str) -> bool:
        """Leave rescue mode on user request regardless of score."""
        with self._locks(user_id):
            state = self._states.get(user_id)
            if not state or not state.is_active:
                logger.debug("User %s is not in rescue mode", user_id)
                return False

            time_in_rescue = self._elapsed_ms(state)
            state.is_active = False
            state.supportive_message = ""
            event = self._record_event(
                RescueEventType.EXITED,
                state,
                time_in_rescue_mode=time_in_rescue,
            )
            self._mark_states_dirty()

        logger.info("User %s exited rescue mode", user_id)
        self._publish(event)
        return True

    def record_attempt(
        self,
        user_id: str,
        keyword_id: str,
        session_id: str,
        raw_score: float,
        learning_phase: Union[LearningPhase, str] = LearningPhase.PRONUNCIATION_TRAINING,
        phonetic_tips: Optional[List[str]] = None,
    ) -> PracticeAttemptResult:
        """Judge a pronunciation attempt and feed the outcome into the state machine."""
        phase = self._parse_phase(learning_phase)
        rescue_active = self.should_use_lowered_threshold(user_id)
        score = self.calculate_rescue_score(user_id, raw_score)
        threshold = self.get_current_pass_threshold(user_id)
        result = PracticeAttemptResult(
            raw_score=raw_score,
            score=score,
            pass_threshold=threshold,
            passed=score >= threshold,
            rescue_active=rescue_active,
        )

        if not self._is_counted_phase(phase):
            result.counted = False
            return result

        if result.passed:
            self.record_improvement(user_id, score, passed_with_rescue=rescue_active)
        else:
            result.triggered = self.record_failure(
                user_id, keyword_id, session_id, raw_score, phase, phonetic_tips
            )
        return result

    def _elapsed_ms(self, state: RescueModeState) -> float:
        if state.triggered_at is None:
            return 0.0
        return (self.clock() - state.triggered_at).total_seconds() * 1000

    # ===== Scoring =====

    def get_state(self, user_id: str) -> Optional[RescueModeState]:
        """Get the rescue mode state of a user."""
        return self._states.get(user_id)

    def should_use_lowered_threshold(self, user_id: str) -> bool:
        state = self._states.get(user_id)
        return bool(state and state.is_active)

    def get_current_pass_threshold(self, user_id: str) -> int:
        """Pass threshold the practice UI should apply for a user."""
        state = self._states.get(user_id)
        if state and state.is_active:
            return state.lowered_pass_threshold
        return self.settings.normal_pass_threshold

    def calculate_rescue_score(self, user_id: str, raw_score: float) -> float:
        """Apply the rescue bonus to a raw score, never exceeding 100."""
        state = self._states.get(user_id)
        if state and state.is_active and state.bonus_scoring:
            return min(MAX_SCORE, raw_score + self.settings.bonus_points)
        return min(MAX_SCORE, raw_score)

    # ===== Rescue resources =====

    def get_rescue_video_url(self, user_id: str) -> Optional[str]:
        """Slow-motion mouth video, only while rescue mode is active."""
        state = self._states.get(user_id)
        return state.rescue_video_url if state and state.is_active else None

    def get_rescue_video(self, user_id: str) -> Optional[RescueVideo]:
        url = self.get_rescue_video_url(user_id)
        if url is None:
            return None
        return RescueVideo(
            url=url,
            playback_speed=self.settings.video_playback_speed,
            loop_count=self.settings.video_loop_count,
        )

    def get_phonetic_tips(self, user_id: str) -> List[str]:
        state = self._states.get(user_id)
        return list(state.phonetic_tips) if state and state.is_active else []

    def record_video_played(self, user_id: str) -> bool:
        return self._record_resource_event(user_id, RescueEventType.VIDEO_PLAYED)

    def record_tips_shown(self, user_id: str) -> bool:
        return self._record_resource_event(user_id, RescueEventType.TIPS_SHOWN)

    def _record_resource_event(self, user_id: str, event_type: RescueEventType) -> bool:
        with self._locks(user_id):
            state = self._states.get(user_id)
            if not state or not state.is_active:
                logger.debug("Ignoring %s for user %s outside rescue mode", event_type.value, user_id)
                return False
            event = self._record_event(event_type, state, time_in_rescue_mode=self._elapsed_ms(state))
        self._publish(event)
        return True

    # ===== Event log =====

    def _record_event(
        self,
        event_type: RescueEventType,
        state: RescueModeState,
        score_before_rescue: Optional[float] = None,
        score_after_rescue: Optional[float] = None,
        rescue_effective: bool = False,
        time_in_rescue_mode: Optional[float] = None,
    ) -> RescueModeEvent:
        event = RescueModeEvent(
            event_id=f"rescue_event_{uuid.uuid4().hex}",
            event_type=event_type,
            timestamp=self.clock(),
            user_id=state.user_id,
            keyword_id=state.keyword_id,
            session_id=state.session_id,
            consecutive_failures=state.consecutive_pronunciation_failures,
            total_attempts=state.total_pronunciation_attempts,
            rescue_effective=rescue_effective,
            learning_phase=state.learning_phase.value,
            score_before_rescue=score_before_rescue,
            score_after_rescue=score_after_rescue,
            time_in_rescue_mode=time_in_rescue_mode,
            phonetic_tips_used=list(state.phonetic_tips),
        )
        self._event_log.append(event)

        # Keep the newest max_events entries
        del self._event_log[:-self.settings.max_events]

        self._mark_events_dirty()
        return event

    def _publish(self, event: RescueModeEvent) -> None:
        payload = event.to_data()
        payload.pop("event_type")
        payload["phonetic_tips_used"] = len(event.phonetic_tips_used)
        self.events.publish(event.event_type.value, payload)

    def get_events(self, user_id: Optional[str] = None) -> List[RescueModeEvent]:
        """Get the event log, optionally for one user."""
        return [event for event in self._event_log if user_id is None or event.user_id == user_id]

    def get_statistics(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Derive rescue mode statistics by replaying the event log.

        Improvements only count when the log still holds the trigger that
        opened their episode, so the success rate never exceeds 1.
        """
        events = self.get_events(user_id)
        triggers = 0
        improvements: List[RescueModeEvent] = []
        open_episodes = set()
        for event in events:
            if event.event_type == RescueEventType.TRIGGERED:
                triggers += 1
                open_episodes.add(event.user_id)
            elif event.event_type == RescueEventType.USER_IMPROVED and event.user_id in open_episodes:
                improvements.append(event)
                open_episodes.discard(event.user_id)
            elif event.event_type == RescueEventType.EXITED:
                open_episodes.discard(event.user_id)
        timed = [e.time_in_rescue_mode for e in improvements if e.time_in_rescue_mode]

        statistics: Dict[str, Any] = {
            "total_triggers": triggers,
            "success_rate": len(improvements) / triggers if triggers else 0.0,
            "average_time_to_improvement": sum(timed) / len(timed) if timed else 0.0,
            "effectiveness_rate": (
                sum(1 for e in events if e.rescue_effective) / len(events) if events else 0.0
            ),
        }

        if user_id is not None:
            statistics["user_specific_stats"] = {
                "triggers": triggers,
                "improvements": len(improvements),
                "average_failures": (
                    sum(e.consecutive_failures for e in events) / len(events) if events else 0.0
                ),
            }
        return statistics

    # ===== Administration =====

    def get_config(self) -> RescueSettings:
        """Return a copy of the active rescue mode settings."""
        return copy.deepcopy(self.settings)

    def update_config(self, **changes: Any) -> RescueSettings:
        """Change rescue mode settings at runtime.

        Thresholds and bonus scoring are pushed into every stored state so
        the new values apply from the next attempt on.
        """
        known = {f.name for f in fields(RescueSettings)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown rescue mode settings: {', '.join(unknown)}")

        updated = replace(copy.deepcopy(self.settings), **changes)
        updated.validate()
        self.settings = updated

        for user_id in list(self._states):
            with self._locks(user_id):
                state = self._states.get(user_id)
                if state is None:
                    continue
                state.trigger_threshold = updated.trigger_threshold
                state.lowered_pass_threshold = updated.rescue_pass_threshold
                state.bonus_scoring = updated.bonus_scoring
        if self._states:
            self._mark_states_dirty()

        logger.info("Rescue mode settings updated: %s", ", ".join(sorted(changes)))
        return self.get_config()

    def reset_user_state(self, user_id: str) -> bool:
        """Forget a user's rescue mode state (account reset)."""
        with self._locks(user_id):
            state = self._states.pop(user_id, None)
            if state is None:
                return False
            self._mark_states_dirty()

        self.events.publish("rescue_state_reset", {"user_id": user_id, "was_active": state.is_active})
        return True

    def validate_integrity(self) -> bool:
        """Check every rescue mode state for consistency."""
        for user_id, state in self._states.items():
            problem = None
            if state.user_id != user_id:
                problem = "identifier mismatch"
            elif state.consecutive_pronunciation_failures < 0:
                problem = "negative failure streak"
            elif state.total_pronunciation_attempts < state.consecutive_pronunciation_failures:
                problem = "failure streak longer than total attempts"
            elif state.trigger_threshold < 1:
                problem = "non-positive trigger threshold"
            elif state.is_active and state.triggered_at is None:
                problem = "active without trigger time"

            if problem:
                logger.warning("Integrity check failed for rescue state of user %s: %s", user_id, problem)
                return False
        return True
