"""Interval scheduling strategies for spaced repetition.

Two algorithms share the same contract: record an outcome on a record and
return the timestamp at which the record is due again.

* ``LevelTableStrategy`` moves a keyword through a fixed table of levels and
  is used for ongoing keyword mastery.
* ``SM2Strategy`` adapts a per-item ease factor and is used inside review
  sessions.
"""
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, Optional

from smartalk.config import SRSSettings, settings
from smartalk.models.srs_models import (
    KeywordSRSState,
    ReviewItem,
    ReviewResult,
    SelfAssessment,
)

logger = logging.getLogger(__name__)


class SpacedRepetitionStrategy(ABC):
    """Base class for interval scheduling algorithms."""
    name: ClassVar[str]

    def __init__(self, srs_settings: Optional[SRSSettings] = None):
        self.settings = srs_settings or settings.srs

    @abstractmethod
    def record_outcome(self, record: Any, outcome: Any, now: datetime) -> datetime:
        """Apply a review outcome to ``record`` and return its next due time."""
        pass


class LevelTableStrategy(SpacedRepetitionStrategy):
    """Discrete level table: two correct answers in a row move a level up,
    every wrong answer moves a level down."""
    name = "level_table"

    def interval_for(self, level: int) -> timedelta:
        """Interval until the next review for a level."""
        table = self.settings.interval_hours
        return timedelta(hours=table[min(max(level, 0), len(table) - 1)])

    def _clamp(self, level: int) -> int:
        return min(max(level, 0), self.settings.max_level)

    def record_outcome(self, record: KeywordSRSState, outcome: ReviewResult, now: datetime) -> datetime:
        record.review_count += 1
        record.last_result = outcome
        record.level = self._clamp(record.level)

        if outcome == ReviewResult.CORRECT:
            record.consecutive_correct += 1
            if record.consecutive_correct >= self.settings.promotion_streak:
                record.level = self._clamp(record.level + 1)
                record.consecutive_correct = 0
        elif outcome == ReviewResult.INCORRECT:
            record.consecutive_correct = 0
            record.level = self._clamp(record.level - 1)
        else:
            # partial answers break the streak but keep the level
            record.consecutive_correct = 0

        record.next_review_at = now + self.interval_for(record.level)
        return record.next_review_at


class SM2Strategy(SpacedRepetitionStrategy):
    """SM-2 with a three-valued self-assessment."""
    name = "sm2"

    QUALITY: ClassVar[Dict[SelfAssessment, int]] = {
        SelfAssessment.INSTANTLY_GOT_IT: 5,  # perfect recall
        SelfAssessment.HAD_TO_THINK: 4,  # correct after hesitation
        SelfAssessment.FORGOT: 0,  # complete blackout
    }

    @classmethod
    def quality_for(cls, assessment: SelfAssessment) -> int:
        """Map a self-assessment to an SM-2 quality score (0-5)."""
        return cls.QUALITY[assessment]

    def next_ease_factor(self, ease_factor: float, quality: int) -> float:
        penalty = 5 - quality
        return max(
            self.settings.min_ease_factor,
            ease_factor + (0.1 - penalty * (0.08 + penalty * 0.02)),
        )

    def record_outcome(self, record: ReviewItem, outcome: SelfAssessment, now: datetime) -> datetime:
        quality = self.quality_for(outcome)

        if quality >= 3:
            if record.review_count == 0:
                record.current_interval = 1
            elif record.review_count == 1:
                record.current_interval = 6
            else:
                # round half up
                record.current_interval = int(math.floor(record.current_interval * record.ease_factor + 0.5))
        else:
            record.current_interval = 1

        record.ease_factor = self.next_ease_factor(record.ease_factor, quality)
        record.review_count += 1
        record.next_review_at = now + timedelta(days=record.current_interval)

        logger.debug(
            "SM-2 update for %s: quality=%d interval=%d ease=%.2f",
            record.keyword_id,
            quality,
            record.current_interval,
            record.ease_factor,
        )
        return record.next_review_at
