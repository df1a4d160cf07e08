"""Utility functions for the review engine."""
import threading
from datetime import datetime, UTC
from typing import Callable, Dict

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class UserLocks:
    """One re-entrant lock per user id.

    Counters such as failure streaks, accuracy and level are read-modify-write,
    so every mutation of a user's records runs under that user's lock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def __call__(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock
