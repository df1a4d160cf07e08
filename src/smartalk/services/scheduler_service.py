"""Service for managing background jobs."""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from smartalk.config import PersistenceSettings, SchedulerSettings, settings
from smartalk.services.review_session_service import ReviewSessionManager
from smartalk.services.storage import SnapshotWriter

logger = logging.getLogger(__name__)


class SchedulerService:
    """Runs periodic jobs (autosave, stale session reaping) as asyncio tasks.

    Jobs never block the read/write path and are cancelled on ``stop()``.
    """

    def __init__(
        self,
        writer: SnapshotWriter,
        review_sessions: ReviewSessionManager,
        scheduler_settings: Optional[SchedulerSettings] = None,
        persistence_settings: Optional[PersistenceSettings] = None,
    ):
        self.writer = writer
        self.review_sessions = review_sessions
        self.settings = scheduler_settings or settings.scheduler
        self.persistence_settings = persistence_settings or settings.persistence
        self.tasks: Dict[str, asyncio.Task] = {}
        self.running = False

    async def start(self) -> None:
        """Start the scheduler service."""
        if self.running:
            return

        self.running = True
        logger.info("Starting scheduler service...")

        self.schedule_task("autosave", self._autosave, self.persistence_settings.autosave_interval)
        self.schedule_task("session_reaper", self._reap_sessions, self.settings.session_reap_interval)

    async def stop(self) -> None:
        """Stop the scheduler service."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping scheduler service...")

        # Cancel all tasks
        for task in self.tasks.values():
            task.cancel()

        # Wait for tasks to complete
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

    async def _autosave(self) -> None:
        """Write pending snapshots."""
        if self.writer.pending and not await self.writer.flush_async():
            logger.warning("Autosave incomplete, pending snapshots: %s", sorted(self.writer.pending))

    async def _reap_sessions(self) -> None:
        """Drop stale review sessions."""
        self.review_sessions.reap_stale_sessions()

    def schedule_task(
        self,
        name: str,
        coro: Callable,
        interval: float,
        *args: Any,
        **kwargs: Any,
    ) -> None:
        """Schedule a new periodic task."""
        if name in self.tasks:
            logger.warning("Task %s already exists", name)
            return

        async def run_task() -> None:
            while self.running:
                try:
                    await coro(*args, **kwargs)
                    await asyncio.sleep(interval)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("Error in task %s: %s", name, str(e))
                    await asyncio.sleep(self.settings.retry_delay)

        self.tasks[name] = asyncio.create_task(run_task())
        logger.info("Scheduled task: %s", name)

    def cancel_task(self, name: str) -> None:
        """Cancel a scheduled task."""
        task = self.tasks.pop(name, None)
        if task is None:
            logger.warning("Task %s does not exist", name)
            return

        task.cancel()
        logger.info("Cancelled task: %s", name)
