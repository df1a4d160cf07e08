"""Main application entry point."""
import asyncio
import logging
import random
import signal
from typing import Dict, Optional

from sqlalchemy.orm import Session

from smartalk.config import Settings, settings
from smartalk.models.base import SessionLocal, init_db
from smartalk.models.srs_models import ReviewSession
from smartalk.monitoring import attach_metrics, start_monitoring
from smartalk.services.events import EventChannel
from smartalk.services.keyword_service import KeywordService
from smartalk.services.rescue_mode_service import RescueModeController
from smartalk.services.review_session_service import ReviewSessionManager
from smartalk.services.scheduler_service import SchedulerService
from smartalk.services.srs_store import SRSRecordStore
from smartalk.services.storage import SnapshotWriter, SqlAlchemyRepository, StateRepository
from smartalk.utils import Clock, utcnow


class SmarTalkEngine:
    """Composes the SRS store, review sessions and rescue mode around one
    repository, snapshot writer and event channel."""

    def __init__(
        self,
        db: Optional[Session] = None,
        repository: Optional[StateRepository] = None,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
        app_settings: Optional[Settings] = None,
    ):
        """Initialize the engine.

        Without a database session the engine creates the tables and opens
        its own session, which it closes on ``stop()``. The default snapshot
        repository gets a separate session on the same bind, since autosave
        writes it from a worker thread.
        """
        self.settings = app_settings or settings
        self.logger = logging.getLogger(__name__)
        self.running = False

        self._owns_db = db is None
        if db is None:
            init_db()
            db = SessionLocal()
        self.db = db

        rng = rng or random.Random()
        self._repository_db: Optional[Session] = None
        if repository is None:
            self._repository_db = SessionLocal(bind=db.get_bind())
            repository = SqlAlchemyRepository(self._repository_db)
        self.repository = repository
        self.events = EventChannel()
        self.writer = SnapshotWriter(self.repository, self.settings.persistence)
        self._detach_metrics = attach_metrics(self.events)

        self.keywords = KeywordService(db)
        self.srs_store = SRSRecordStore(
            self.repository,
            self.writer,
            self.events,
            srs_settings=self.settings.srs,
            clock=clock,
        )
        self.review_sessions = ReviewSessionManager(
            self.repository,
            self.writer,
            self.events,
            self.srs_store,
            self.keywords,
            review_settings=self.settings.review,
            srs_settings=self.settings.srs,
            rng=rng,
            clock=clock,
        )
        self.rescue_mode = RescueModeController(
            self.repository,
            self.writer,
            self.events,
            rescue_settings=self.settings.rescue,
            rng=rng,
            clock=clock,
        )
        self.scheduler = SchedulerService(
            self.writer,
            self.review_sessions,
            scheduler_settings=self.settings.scheduler,
            persistence_settings=self.settings.persistence,
        )

    async def start(self) -> None:
        """Start background jobs and the metrics exporter."""
        if self.running:
            return

        await self.scheduler.start()
        self.logger.info("Scheduler service started")

        if self.settings.monitoring.enabled:
            start_monitoring(self.settings.monitoring.port)
            self.logger.info("Metrics exported on port %d", self.settings.monitoring.port)

        self.running = True

    async def stop(self) -> None:
        """Stop background jobs and write pending state."""
        await self.scheduler.stop()
        self.logger.info("Scheduler service stopped")

        if not self.flush():
            self.logger.error("Some state could not be saved on shutdown: %s", sorted(self.writer.pending))

        self._detach_metrics()
        if self._repository_db is not None:
            self._repository_db.close()
            self._repository_db = None
        if self._owns_db and self.db is not None:
            self.db.close()
            self.db = None
            self.logger.info("Database session closed")

        self.running = False

    def flush(self) -> bool:
        """Write every pending snapshot."""
        return self.writer.flush()

    def start_review(self, user_id: str) -> Optional[ReviewSession]:
        """Create a review session from the user's due keywords, if any."""
        due = self.srs_store.get_due_states(user_id)
        if not due:
            self.logger.debug("Nothing to review for user %s", user_id)
            return None
        return self.review_sessions.create(user_id, due)

    def validate_state(self) -> bool:
        """Integrity check over all in-memory state."""
        return all(
            [
                self.srs_store.validate_integrity(),
                self.review_sessions.validate_integrity(),
                self.rescue_mode.validate_integrity(),
            ]
        )

    def purge_user(self, user_id: str) -> Dict[str, int]:
        """Delete everything stored for a user (account deletion)."""
        removed = {
            "keyword_states": self.srs_store.purge_user(user_id),
            "review_sessions": self.review_sessions.purge_user(user_id),
            "rescue_states": int(self.rescue_mode.reset_user_state(user_id)),
        }
        self.logger.info("Purged user %s: %s", user_id, removed)
        return removed

    def run(self) -> None:
        """Run the engine until interrupted."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        try:
            loop.run_until_complete(self.start())
            self.logger.info("Engine started")
            loop.run_until_complete(stop_event.wait())
            self.logger.info("Received exit signal, shutting down...")
        finally:
            loop.run_until_complete(self.stop())
            loop.close()
