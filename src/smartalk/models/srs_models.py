"""In-memory records for spaced repetition, review sessions and rescue mode.

Every record converts to and from a plain dict (``to_data``/``from_data``)
so the services can persist their collections as JSON snapshots.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class LearningStatus(Enum):
    """Learning status of a keyword for one user."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MASTERED = "mastered"


class ReviewResult(Enum):
    """Outcome of a single attempt at a keyword."""
    CORRECT = "correct"
    INCORRECT = "incorrect"
    PARTIAL = "partial"


class SelfAssessment(Enum):
    """Recall difficulty reported by the learner during a review session."""
    INSTANTLY_GOT_IT = "instantly_got_it"  # 😎
    HAD_TO_THINK = "had_to_think"  # 🤔
    FORGOT = "forgot"  # 🤯


class SessionStatus(Enum):
    """Review session lifecycle."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class LearningPhase(Enum):
    """Practice phase a pronunciation attempt belongs to."""
    CONTEXT_GUESSING = "context_guessing"
    PRONUNCIATION_TRAINING = "pronunciation_training"


class RescueEventType(Enum):
    """Events recorded in the rescue mode log."""
    TRIGGERED = "triggered"
    VIDEO_PLAYED = "video_played"
    TIPS_SHOWN = "tips_shown"
    USER_IMPROVED = "user_improved"
    EXITED = "exited"


def _dump_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _load_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class KeywordSRSState:
    """Spaced repetition state of one keyword for one user."""
    user_id: str
    keyword_id: str
    status: LearningStatus = LearningStatus.NOT_STARTED
    level: int = 0
    next_review_at: Optional[datetime] = None
    review_count: int = 0
    consecutive_correct: int = 0
    last_result: Optional[ReviewResult] = None
    attempts: int = 0
    correct_attempts: int = 0
    accuracy: float = 0.0
    # SM-2 parameters written back by review sessions
    ease_factor: float = 2.5
    interval_days: int = 1
    sm2_review_count: int = 0
    first_learned_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    mastered_at: Optional[datetime] = None

    def to_data(self) -> Dict[str, Any]:
        """Convert to serializable data for storage."""
        return {
            "user_id": self.user_id,
            "keyword_id": self.keyword_id,
            "status": self.status.value,
            "level": self.level,
            "next_review_at": _dump_dt(self.next_review_at),
            "review_count": self.review_count,
            "consecutive_correct": self.consecutive_correct,
            "last_result": self.last_result.value if self.last_result else None,
            "attempts": self.attempts,
            "correct_attempts": self.correct_attempts,
            "accuracy": self.accuracy,
            "ease_factor": self.ease_factor,
            "interval_days": self.interval_days,
            "sm2_review_count": self.sm2_review_count,
            "first_learned_at": _dump_dt(self.first_learned_at),
            "last_attempt_at": _dump_dt(self.last_attempt_at),
            "mastered_at": _dump_dt(self.mastered_at),
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "KeywordSRSState":
        """Create a state instance from stored data."""
        return cls(
            user_id=data["user_id"],
            keyword_id=data["keyword_id"],
            status=LearningStatus(data.get("status", LearningStatus.NOT_STARTED.value)),
            level=data.get("level", 0),
            next_review_at=_load_dt(data.get("next_review_at")),
            review_count=data.get("review_count", 0),
            consecutive_correct=data.get("consecutive_correct", 0),
            last_result=ReviewResult(data["last_result"]) if data.get("last_result") else None,
            attempts=data.get("attempts", 0),
            correct_attempts=data.get("correct_attempts", 0),
            accuracy=data.get("accuracy", 0.0),
            ease_factor=data.get("ease_factor", 2.5),
            interval_days=data.get("interval_days", 1),
            sm2_review_count=data.get("sm2_review_count", 0),
            first_learned_at=_load_dt(data.get("first_learned_at")),
            last_attempt_at=_load_dt(data.get("last_attempt_at")),
            mastered_at=_load_dt(data.get("mastered_at")),
        )


@dataclass
class DueItem:
    """Entry of the due-item list handed to reminder schedulers."""
    keyword_id: str
    next_review_at: datetime


@dataclass
class ReviewItem:
    """One keyword presented inside a review session (SM-2 state)."""
    keyword_id: str
    keyword: str
    audio_url: str
    correct_image: str
    distractor_images: List[str]
    options: List[str]
    current_interval: int
    ease_factor: float
    review_count: int
    # SM-2 state the item started the session with
    initial_interval: int = 1
    initial_ease_factor: float = 2.5
    initial_review_count: int = 0
    user_selection: Optional[str] = None
    self_assessment: Optional[SelfAssessment] = None
    response_time_ms: Optional[int] = None
    is_correct: Optional[bool] = None
    next_review_at: Optional[datetime] = None

    @property
    def is_answered(self) -> bool:
        return self.self_assessment is not None

    def to_data(self) -> Dict[str, Any]:
        return {
            "keyword_id": self.keyword_id,
            "keyword": self.keyword,
            "audio_url": self.audio_url,
            "correct_image": self.correct_image,
            "distractor_images": list(self.distractor_images),
            "options": list(self.options),
            "current_interval": self.current_interval,
            "ease_factor": self.ease_factor,
            "review_count": self.review_count,
            "initial_interval": self.initial_interval,
            "initial_ease_factor": self.initial_ease_factor,
            "initial_review_count": self.initial_review_count,
            "user_selection": self.user_selection,
            "self_assessment": self.self_assessment.value if self.self_assessment else None,
            "response_time_ms": self.response_time_ms,
            "is_correct": self.is_correct,
            "next_review_at": _dump_dt(self.next_review_at),
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "ReviewItem":
        assessment = data.get("self_assessment")
        return cls(
            keyword_id=data["keyword_id"],
            keyword=data["keyword"],
            audio_url=data["audio_url"],
            correct_image=data["correct_image"],
            distractor_images=list(data["distractor_images"]),
            options=list(data["options"]),
            current_interval=data["current_interval"],
            ease_factor=data["ease_factor"],
            review_count=data["review_count"],
            initial_interval=data.get("initial_interval", data["current_interval"]),
            initial_ease_factor=data.get("initial_ease_factor", data["ease_factor"]),
            initial_review_count=data.get("initial_review_count", data["review_count"]),
            user_selection=data.get("user_selection"),
            self_assessment=SelfAssessment(assessment) if assessment else None,
            response_time_ms=data.get("response_time_ms"),
            is_correct=data.get("is_correct"),
            next_review_at=_load_dt(data.get("next_review_at")),
        )


@dataclass
class ReviewSession:
    """A short, bounded review session built from due keywords."""
    session_id: str
    user_id: str
    items: List[ReviewItem]
    started_at: datetime
    target_duration: int  # seconds
    current_item_index: int = 0
    actual_duration: Optional[int] = None
    completed_items: int = 0
    correct_answers: int = 0
    instantly_got_it: int = 0
    had_to_think: int = 0
    forgot: int = 0
    status: SessionStatus = SessionStatus.IN_PROGRESS
    completed_at: Optional[datetime] = None

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def to_data(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "items": [item.to_data() for item in self.items],
            "started_at": _dump_dt(self.started_at),
            "target_duration": self.target_duration,
            "current_item_index": self.current_item_index,
            "actual_duration": self.actual_duration,
            "completed_items": self.completed_items,
            "correct_answers": self.correct_answers,
            "instantly_got_it": self.instantly_got_it,
            "had_to_think": self.had_to_think,
            "forgot": self.forgot,
            "status": self.status.value,
            "completed_at": _dump_dt(self.completed_at),
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "ReviewSession":
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            items=[ReviewItem.from_data(item) for item in data["items"]],
            started_at=_load_dt(data["started_at"]),
            target_duration=data["target_duration"],
            current_item_index=data.get("current_item_index", 0),
            actual_duration=data.get("actual_duration"),
            completed_items=data.get("completed_items", 0),
            correct_answers=data.get("correct_answers", 0),
            instantly_got_it=data.get("instantly_got_it", 0),
            had_to_think=data.get("had_to_think", 0),
            forgot=data.get("forgot", 0),
            status=SessionStatus(data.get("status", SessionStatus.IN_PROGRESS.value)),
            completed_at=_load_dt(data.get("completed_at")),
        )


@dataclass
class ReviewSummary:
    """Result of a completed review session."""
    session_id: str
    user_id: str
    total_items: int
    completed_items: int
    correct_answers: int
    accuracy: float
    instantly_got_it: int
    had_to_think: int
    forgot: int
    target_duration: int
    actual_duration: Optional[int]


@dataclass
class RescueModeState:
    """Rescue mode state of one user."""
    user_id: str
    keyword_id: str
    session_id: str
    trigger_threshold: int
    lowered_pass_threshold: int
    is_active: bool = False
    triggered_at: Optional[datetime] = None
    consecutive_pronunciation_failures: int = 0
    total_pronunciation_attempts: int = 0
    bonus_scoring: bool = True
    supportive_message: str = ""
    rescue_video_url: str = ""
    phonetic_tips: List[str] = field(default_factory=list)
    learning_phase: LearningPhase = LearningPhase.PRONUNCIATION_TRAINING

    def to_data(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "keyword_id": self.keyword_id,
            "session_id": self.session_id,
            "trigger_threshold": self.trigger_threshold,
            "lowered_pass_threshold": self.lowered_pass_threshold,
            "is_active": self.is_active,
            "triggered_at": _dump_dt(self.triggered_at),
            "consecutive_pronunciation_failures": self.consecutive_pronunciation_failures,
            "total_pronunciation_attempts": self.total_pronunciation_attempts,
            "bonus_scoring": self.bonus_scoring,
            "supportive_message": self.supportive_message,
            "rescue_video_url": self.rescue_video_url,
            "phonetic_tips": list(self.phonetic_tips),
            "learning_phase": self.learning_phase.value,
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "RescueModeState":
        return cls(
            user_id=data["user_id"],
            keyword_id=data["keyword_id"],
            session_id=data["session_id"],
            trigger_threshold=data["trigger_threshold"],
            lowered_pass_threshold=data["lowered_pass_threshold"],
            is_active=data.get("is_active", False),
            triggered_at=_load_dt(data.get("triggered_at")),
            consecutive_pronunciation_failures=data.get("consecutive_pronunciation_failures", 0),
            total_pronunciation_attempts=data.get("total_pronunciation_attempts", 0),
            bonus_scoring=data.get("bonus_scoring", True),
            supportive_message=data.get("supportive_message", ""),
            rescue_video_url=data.get("rescue_video_url", ""),
            phonetic_tips=list(data.get("phonetic_tips", [])),
            learning_phase=LearningPhase(
                data.get("learning_phase", LearningPhase.PRONUNCIATION_TRAINING.value)
            ),
        )


@dataclass
class RescueModeEvent:
    """Entry of the rescue mode event log."""
    event_id: str
    event_type: RescueEventType
    timestamp: datetime
    user_id: str
    keyword_id: str
    session_id: str
    consecutive_failures: int
    total_attempts: int
    rescue_effective: bool
    learning_phase: str
    score_before_rescue: Optional[float] = None
    score_after_rescue: Optional[float] = None
    time_in_rescue_mode: Optional[float] = None  # ms
    difficulty: str = "unknown"
    phonetic_tips_used: List[str] = field(default_factory=list)

    def to_data(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": _dump_dt(self.timestamp),
            "user_id": self.user_id,
            "keyword_id": self.keyword_id,
            "session_id": self.session_id,
            "consecutive_failures": self.consecutive_failures,
            "total_attempts": self.total_attempts,
            "rescue_effective": self.rescue_effective,
            "learning_phase": self.learning_phase,
            "score_before_rescue": self.score_before_rescue,
            "score_after_rescue": self.score_after_rescue,
            "time_in_rescue_mode": self.time_in_rescue_mode,
            "difficulty": self.difficulty,
            "phonetic_tips_used": list(self.phonetic_tips_used),
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "RescueModeEvent":
        return cls(
            event_id=data["event_id"],
            event_type=RescueEventType(data["event_type"]),
            timestamp=_load_dt(data["timestamp"]),
            user_id=data["user_id"],
            keyword_id=data["keyword_id"],
            session_id=data["session_id"],
            consecutive_failures=data.get("consecutive_failures", 0),
            total_attempts=data.get("total_attempts", 0),
            rescue_effective=data.get("rescue_effective", False),
            learning_phase=data.get("learning_phase", LearningPhase.PRONUNCIATION_TRAINING.value),
            score_before_rescue=data.get("score_before_rescue"),
            score_after_rescue=data.get("score_after_rescue"),
            time_in_rescue_mode=data.get("time_in_rescue_mode"),
            difficulty=data.get("difficulty", "unknown"),
            phonetic_tips_used=list(data.get("phonetic_tips_used", [])),
        )
