"""Tests for configuration settings."""
import pytest

from smartalk.config import (
    INTERVAL_HOURS,
    RescueSettings,
    ReviewSettings,
    Settings,
    SRSSettings,
    settings,
)


def test_settings_defaults():
    """Test default settings values."""
    assert settings.srs.interval_hours == [0, 4, 8, 24, 48, 168, 336, 720, 1440]
    assert settings.srs.max_level == 8
    assert settings.srs.promotion_streak == 2
    assert settings.srs.initial_ease_factor == 2.5
    assert settings.srs.min_ease_factor == 1.3
    assert settings.review.seconds_per_item == 15
    assert settings.review.max_duration == 120
    assert settings.review.distractor_count == 2
    assert settings.rescue.trigger_threshold == 3
    assert settings.rescue.normal_pass_threshold == 70
    assert settings.rescue.rescue_pass_threshold == 60
    assert settings.rescue.bonus_points == 5
    assert settings.rescue.enabled_phases == ["pronunciation_training"]
    assert settings.rescue.video_playback_speed == 0.5
    assert settings.rescue.video_loop_count == 3
    assert settings.rescue.max_events == 1000


def test_interval_table_is_copied():
    """Test that each settings object gets its own interval table."""
    srs = SRSSettings()
    srs.interval_hours.append(2880)
    assert INTERVAL_HOURS[-1] == 1440
    assert SRSSettings().interval_hours[-1] == 1440


def test_default_settings_are_valid():
    """Test that the defaults pass validation."""
    Settings().validate()


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"srs": SRSSettings(interval_hours=[0, 4])}, "one entry per level"),
        ({"srs": SRSSettings(promotion_streak=0)}, "SRS_PROMOTION_STREAK"),
        ({"srs": SRSSettings(min_ease_factor=3.0)}, "ease factor"),
        ({"review": ReviewSettings(distractor_count=0)}, "REVIEW_DISTRACTOR_COUNT"),
        ({"rescue": RescueSettings(trigger_threshold=0)}, "RESCUE_TRIGGER_THRESHOLD"),
        ({"rescue": RescueSettings(rescue_pass_threshold=80)}, "RESCUE_PASS_THRESHOLD"),
        ({"rescue": RescueSettings(supportive_messages=[])}, "supportive message"),
        ({"rescue": RescueSettings(max_events=0)}, "RESCUE_MAX_EVENTS"),
        ({"rescue": RescueSettings(video_playback_speed=0)}, "playback speed"),
    ],
)
def test_invalid_settings(overrides, message):
    """Test that inconsistent settings are rejected."""
    with pytest.raises(ValueError, match=message):
        Settings(**overrides).validate()


if __name__ == "__main__":
    pytest.main([__file__])
