"""Tests for metrics and logging setup."""
import logging
from pathlib import Path
from typing import Generator

import pytest
from prometheus_client import REGISTRY

from smartalk.config import LoggingSettings
from smartalk.logging_config import setup_logging
from smartalk.monitoring import attach_metrics
from smartalk.services.events import EventChannel


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def restore_logging() -> Generator[None, None, None]:
    """Restore the root logger after a test reconfigures it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_events_update_metrics(events: EventChannel) -> None:
    """Test that published events are turned into metrics."""
    detach = attach_metrics(events)
    published = sample("smartalk_events_total", event="keyword_attempt_recorded")
    promotions = sample("smartalk_srs_level_changes_total", direction="up")
    demotions = sample("smartalk_srs_level_changes_total", direction="down")
    active = sample("smartalk_rescue_mode_active_users")
    sessions = sample("smartalk_review_session_duration_seconds_count")

    events.publish("keyword_attempt_recorded", {"level_change": 1})
    events.publish("keyword_attempt_recorded", {"level_change": -1})
    events.publish("keyword_attempt_recorded", {"level_change": 0})
    events.publish("review_session_completed", {"duration": 40, "accuracy": 0.5})
    events.publish("triggered", {})
    events.publish("triggered", {})
    events.publish("user_improved", {})

    assert sample("smartalk_events_total", event="keyword_attempt_recorded") == published + 3
    assert sample("smartalk_srs_level_changes_total", direction="up") == promotions + 1
    assert sample("smartalk_srs_level_changes_total", direction="down") == demotions + 1
    assert sample("smartalk_rescue_mode_active_users") == active + 1
    assert sample("smartalk_review_session_duration_seconds_count") == sessions + 1

    detach()
    events.publish("triggered", {})
    assert sample("smartalk_rescue_mode_active_users") == active + 1


def test_setup_logging_with_file(tmp_path: Path, restore_logging: None) -> None:
    """Test logging to the console and a rotating log file."""
    config = LoggingSettings(level="DEBUG", dir=str(tmp_path / "logs"))

    logger = setup_logging("Starting tests ...", logging_settings=config)
    logger.debug("written to file")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    log_file = tmp_path / "logs" / "smartalk.log"
    assert "written to file" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_setup_logging_console_only(restore_logging: None) -> None:
    """Test that no file handler is installed without a log directory."""
    logger = setup_logging(level="warning", logging_settings=LoggingSettings(dir=None))

    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1


if __name__ == "__main__":
    pytest.main([__file__])
