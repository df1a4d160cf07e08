"""Monitoring configuration for the review engine."""
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from smartalk.services.events import ALL_EVENTS, Event, EventChannel

# Event metrics
events_published = Counter(
    "smartalk_events_total",
    "Total number of events published by the core",
    ["event"],
)

# SRS metrics
srs_level_changes = Counter(
    "smartalk_srs_level_changes_total",
    "Total number of keyword level promotions and demotions",
    ["direction"],
)

# Review session metrics
review_session_duration = Histogram(
    "smartalk_review_session_duration_seconds",
    "Actual duration of completed review sessions in seconds",
    buckets=[15, 30, 60, 120, 300, 600],
)

review_accuracy = Histogram(
    "smartalk_review_session_accuracy",
    "Accuracy of completed review sessions",
    buckets=[0.25, 0.5, 0.75, 0.9, 1.0],
)

# Rescue mode metrics
rescue_mode_active = Gauge(
    "smartalk_rescue_mode_active_users",
    "Number of users currently in rescue mode",
)

# Persistence metrics
snapshot_writes = Counter(
    "smartalk_snapshot_writes_total",
    "Total number of successful snapshot writes",
    ["key"],
)

persistence_errors = Counter(
    "smartalk_persistence_errors_total",
    "Total number of failed snapshot writes",
    ["key"],
)


def record_event(event: Event) -> None:
    """Update metrics from a published event."""
    events_published.labels(event=event.name).inc()

    if event.name == "keyword_attempt_recorded":
        change = event.payload.get("level_change", 0)
        if change > 0:
            srs_level_changes.labels(direction="up").inc()
        elif change < 0:
            srs_level_changes.labels(direction="down").inc()
    elif event.name == "review_session_completed":
        if event.payload.get("duration") is not None:
            review_session_duration.observe(event.payload["duration"])
        review_accuracy.observe(event.payload.get("accuracy", 0.0))
    elif event.name == "triggered":
        rescue_mode_active.inc()
    elif event.name in ("user_improved", "exited"):
        rescue_mode_active.dec()
    elif event.name == "rescue_state_reset" and event.payload.get("was_active"):
        rescue_mode_active.dec()


def attach_metrics(channel: EventChannel) -> Callable[[], None]:
    """Subscribe the metric updates to every event on the channel."""
    return channel.subscribe(ALL_EVENTS, record_event)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
