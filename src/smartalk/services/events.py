"""Event channel the core publishes to and external sinks subscribe to."""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

ALL_EVENTS = "*"


@dataclass
class Event:
    """A named event with a flat key/value payload."""
    name: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


EventHandler = Callable[[Event], None]


class EventChannel:
    """Synchronous publish/subscribe channel.

    Delivery is fire-and-forget: a failing subscriber is logged and the
    remaining subscribers still receive the event.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, name: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for an event name (or ``"*"`` for all events).

        Returns a callable that removes the subscription.
        """
        self._subscribers[name].append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__name__", handler), name)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, name: str, payload: Dict[str, Any]) -> Event:
        """Publish an event to its subscribers and the wildcard subscribers."""
        event = Event(name=name, payload=dict(payload))
        handlers = list(self._subscribers.get(name, [])) + list(self._subscribers.get(ALL_EVENTS, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error("Event handler failed for %s: %s", name, e)
        return event
