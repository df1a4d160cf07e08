"""Snapshot storage for the in-memory services."""
import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smartalk.config import PersistenceSettings, settings
from smartalk.models.models import StateSnapshot
from smartalk.monitoring import persistence_errors, snapshot_writes

logger = logging.getLogger(__name__)

# Fixed snapshot keys
KEYWORD_SRS_STATES_KEY = "keyword_srs_states"
REVIEW_SESSIONS_KEY = "review_sessions"
RESCUE_MODE_STATES_KEY = "rescue_mode_states"
RESCUE_MODE_EVENTS_KEY = "rescue_mode_events"

SnapshotProducer = Callable[[], List[Dict[str, Any]]]


class StateRepository(ABC):
    """Abstract base class for full-collection snapshot storage."""

    @abstractmethod
    def load_snapshot(self, key: str) -> Optional[List[Dict[str, Any]]]:
        """Load the records stored under a key. Returns None if nothing is stored."""
        pass

    @abstractmethod
    def save_snapshot(self, key: str, records: List[Dict[str, Any]]) -> None:
        """Replace the records stored under a key."""
        pass

    @abstractmethod
    def delete_snapshot(self, key: str) -> None:
        """Remove the records stored under a key."""
        pass


class InMemoryRepository(StateRepository):
    """Repository keeping JSON-encoded snapshots in a dict."""

    def __init__(self):
        self._snapshots: Dict[str, str] = {}

    def load_snapshot(self, key: str) -> Optional[List[Dict[str, Any]]]:
        raw = self._snapshots.get(key)
        return json.loads(raw) if raw is not None else None

    def save_snapshot(self, key: str, records: List[Dict[str, Any]]) -> None:
        self._snapshots[key] = json.dumps(records)

    def delete_snapshot(self, key: str) -> None:
        self._snapshots.pop(key, None)


class SqlAlchemyRepository(StateRepository):
    """Repository storing one ``state_snapshots`` row per key."""

    def __init__(self, db: Session):
        """Initialize the repository with a database session."""
        self.db = db

    def load_snapshot(self, key: str) -> Optional[List[Dict[str, Any]]]:
        snapshot = self.db.get(StateSnapshot, key)
        return list(snapshot.payload) if snapshot else None

    def save_snapshot(self, key: str, records: List[Dict[str, Any]]) -> None:
        try:
            snapshot = self.db.get(StateSnapshot, key)
            if snapshot:
                snapshot.payload = records
            else:
                self.db.add(StateSnapshot(key=key, payload=records))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def delete_snapshot(self, key: str) -> None:
        try:
            snapshot = self.db.get(StateSnapshot, key)
            if snapshot:
                self.db.delete(snapshot)
                self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class SnapshotWriter:
    """Batches snapshot writes so callers never wait on persistence.

    Services mark their collection dirty after each mutation; the
    collection is written on ``flush()`` (shutdown), ``flush_async()``
    (autosave) or right away in write-through mode. A failed write keeps
    the key dirty, and so does a change made while its write was running.
    """

    def __init__(
        self,
        repository: StateRepository,
        persistence_settings: Optional[PersistenceSettings] = None,
    ):
        self.repository = repository
        self.settings = persistence_settings or settings.persistence
        self._producers: Dict[str, SnapshotProducer] = {}
        self._versions: Dict[str, int] = {}
        self._dirty: set[str] = set()
        self._write_lock = threading.Lock()

    @property
    def pending(self) -> FrozenSet[str]:
        """Keys with changes not yet written."""
        return frozenset(self._dirty)

    def mark_dirty(self, key: str, producer: SnapshotProducer) -> None:
        """Record that the collection under ``key`` changed."""
        self._producers[key] = producer
        self._versions[key] = self._versions.get(key, 0) + 1
        self._dirty.add(key)
        if self.settings.write_through:
            self.save(key)

    def _collect(self, key: str) -> Optional[Tuple[int, List[Dict[str, Any]]]]:
        producer = self._producers.get(key)
        if producer is None:
            logger.warning("No snapshot registered for key %s", key)
            return None

        try:
            return self._versions.get(key, 0), producer()
        except Exception as e:
            logger.error("Error collecting snapshot %s: %s", key, e)
            persistence_errors.labels(key=key).inc()
            return None

    def _write(self, key: str, version: int, records: List[Dict[str, Any]]) -> bool:
        try:
            with self._write_lock:
                self.repository.save_snapshot(key, records)
        except Exception as e:
            logger.error("Error saving snapshot %s: %s", key, e)
            persistence_errors.labels(key=key).inc()
            return False

        if self._versions.get(key, 0) == version:
            self._dirty.discard(key)
        snapshot_writes.labels(key=key).inc()
        logger.debug("Saved snapshot %s (%d records)", key, len(records))
        return True

    def save(self, key: str) -> bool:
        """Write one collection now. Returns True on success."""
        collected = self._collect(key)
        if collected is None:
            return False
        return self._write(key, *collected)

    async def save_async(self, key: str) -> bool:
        """Collect one collection here and write it from a worker thread."""
        collected = self._collect(key)
        if collected is None:
            return False
        return await asyncio.to_thread(self._write, key, *collected)

    def flush(self) -> bool:
        """Write every dirty collection. Returns True if all writes succeeded."""
        success = True
        for key in sorted(self._dirty):
            success = self.save(key) and success
        return success

    async def flush_async(self) -> bool:
        """Like ``flush()`` but without blocking the event loop on I/O."""
        success = True
        for key in sorted(self._dirty):
            success = await self.save_async(key) and success
        return success

    def __enter__(self) -> "SnapshotWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.flush()
