"""Configuration settings for the review engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)

# SRS level table, hours until the next review (index = level)
INTERVAL_HOURS = [0, 4, 8, 24, 48, 168, 336, 720, 1440]

SUPPORTIVE_MESSAGES = [
    "🆘 Don't worry, let me help! Watch this slow-motion demo.",
    "💪 Pronunciation takes practice, let's go step by step!",
    "🎯 Focus on the mouth shape, you can do it!",
    "✨ Take your time, everyone has their own pace.",
]

COMMON_PHONETIC_TIPS = [
    "Pay attention to where your tongue sits",
    "Slow down and say every sound clearly",
    "Watch how the mouth shape changes",
    "Control the airflow",
]

KEYWORD_PHONETIC_TIPS = {
    "hello": [
        "Keep the h soft",
        "Open the e sound fully",
        "Touch the roof of the mouth with the tongue tip for l",
    ],
    "world": [
        "Round the lips for w",
        "Curl the tongue back for r",
        "Finish with a crisp d",
    ],
    "pronunciation": [
        "Stress the nun syllable",
        "Practise one syllable at a time",
        "Say tion as shun",
    ],
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///smartalk.db")
    echo: bool = _env_bool("DATABASE_ECHO", "false")


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class SRSSettings:
    """Spaced repetition settings."""
    interval_hours: list[int] = field(default_factory=lambda: list(INTERVAL_HOURS))
    max_level: int = 8
    promotion_streak: int = int(os.getenv("SRS_PROMOTION_STREAK", "2"))
    completion_accuracy: float = float(os.getenv("SRS_COMPLETION_ACCURACY", "0.8"))
    completion_attempts: int = int(os.getenv("SRS_COMPLETION_ATTEMPTS", "3"))
    initial_interval_days: int = 1
    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3


@dataclass
class ReviewSettings:
    """Fast review session settings."""
    seconds_per_item: int = int(os.getenv("REVIEW_SECONDS_PER_ITEM", "15"))
    max_duration: int = int(os.getenv("REVIEW_MAX_DURATION", "120"))
    distractor_count: int = int(os.getenv("REVIEW_DISTRACTOR_COUNT", "2"))
    completed_retention: int = int(os.getenv("REVIEW_COMPLETED_RETENTION", "3600"))
    stale_after: int = int(os.getenv("REVIEW_STALE_AFTER", "86400"))
    media_base_url: str = os.getenv("MEDIA_BASE_URL", "https://api.smartalk.app")


@dataclass
class RescueSettings:
    """Rescue mode settings."""
    trigger_threshold: int = int(os.getenv("RESCUE_TRIGGER_THRESHOLD", "3"))
    enabled_phases: list[str] = field(default_factory=lambda: ["pronunciation_training"])
    normal_pass_threshold: int = int(os.getenv("RESCUE_NORMAL_PASS_THRESHOLD", "70"))
    rescue_pass_threshold: int = int(os.getenv("RESCUE_PASS_THRESHOLD", "60"))
    bonus_points: int = int(os.getenv("RESCUE_BONUS_POINTS", "5"))
    bonus_scoring: bool = _env_bool("RESCUE_BONUS_SCORING", "true")
    supportive_messages: list[str] = field(default_factory=lambda: list(SUPPORTIVE_MESSAGES))
    common_phonetic_tips: list[str] = field(default_factory=lambda: list(COMMON_PHONETIC_TIPS))
    keyword_phonetic_tips: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in KEYWORD_PHONETIC_TIPS.items()}
    )
    video_url_template: str = os.getenv(
        "RESCUE_VIDEO_URL_TEMPLATE", "/videos/rescue/{keyword_id}_slow_motion.mp4"
    )
    video_playback_speed: float = float(os.getenv("RESCUE_VIDEO_PLAYBACK_SPEED", "0.5"))
    video_loop_count: int = int(os.getenv("RESCUE_VIDEO_LOOP_COUNT", "3"))
    max_events: int = int(os.getenv("RESCUE_MAX_EVENTS", "1000"))

    def validate(self) -> None:
        """Validate rescue mode settings and raise ValueError if invalid."""
        if self.trigger_threshold < 1:
            raise ValueError("RESCUE_TRIGGER_THRESHOLD must be positive")

        if self.rescue_pass_threshold > self.normal_pass_threshold:
            raise ValueError("RESCUE_PASS_THRESHOLD cannot be greater than RESCUE_NORMAL_PASS_THRESHOLD")

        if not self.supportive_messages:
            raise ValueError("At least one supportive message is required")

        if self.video_playback_speed <= 0 or self.video_loop_count < 1:
            raise ValueError("Rescue video playback speed and loop count must be positive")

        if self.max_events < 1:
            raise ValueError("RESCUE_MAX_EVENTS must be positive")


@dataclass
class PersistenceSettings:
    """Snapshot persistence settings."""
    autosave_interval: int = int(os.getenv("AUTOSAVE_INTERVAL", "30"))
    write_through: bool = _env_bool("PERSISTENCE_WRITE_THROUGH", "false")


@dataclass
class SchedulerSettings:
    """Background job settings."""
    session_reap_interval: int = int(os.getenv("SESSION_REAP_INTERVAL", "600"))
    retry_delay: int = int(os.getenv("RETRY_DELAY", "60"))


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    enabled: bool = _env_bool("METRICS_ENABLED", "false")
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_srs_settings() -> SRSSettings:
    """Get spaced repetition settings."""
    return SRSSettings()


def get_review_settings() -> ReviewSettings:
    """Get review session settings."""
    return ReviewSettings()


def get_rescue_settings() -> RescueSettings:
    """Get rescue mode settings."""
    return RescueSettings()


def get_persistence_settings() -> PersistenceSettings:
    """Get persistence settings."""
    return PersistenceSettings()


def get_scheduler_settings() -> SchedulerSettings:
    """Get scheduler settings."""
    return SchedulerSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    srs: SRSSettings = field(default_factory=get_srs_settings)
    review: ReviewSettings = field(default_factory=get_review_settings)
    rescue: RescueSettings = field(default_factory=get_rescue_settings)
    persistence: PersistenceSettings = field(default_factory=get_persistence_settings)
    scheduler: SchedulerSettings = field(default_factory=get_scheduler_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not self.srs.interval_hours:
            raise ValueError("SRS interval table must not be empty")

        if len(self.srs.interval_hours) != self.srs.max_level + 1:
            raise ValueError("SRS interval table must have one entry per level")

        if self.srs.promotion_streak < 1:
            raise ValueError("SRS_PROMOTION_STREAK must be positive")

        if self.srs.min_ease_factor > self.srs.initial_ease_factor:
            raise ValueError("Minimum ease factor cannot exceed the initial ease factor")

        if self.review.distractor_count < 1:
            raise ValueError("REVIEW_DISTRACTOR_COUNT must be positive")

        if self.review.seconds_per_item < 1 or self.review.max_duration < 1:
            raise ValueError("Review durations must be positive")

        self.rescue.validate()


# Create global settings instance
settings = Settings()
settings.validate()
