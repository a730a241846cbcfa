"""Periodic refresh of the queue view."""

import asyncio
import contextlib
from datetime import datetime

import structlog

from app.services.queue_service import QueueService

logger = structlog.get_logger(__name__)


class SyncLoop:
    """Polls the store on a fixed interval while the queue view is active.

    Errors inside a tick are logged and reported on the view; they never
    stop the loop or clear what is already displayed.
    """

    def __init__(self, service: QueueService, interval_seconds: float = 30.0):
        """Initialize loop for a queue service."""
        if interval_seconds <= 0:
            raise ValueError("Sync interval must be positive")
        self.service = service
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.last_synced_at: datetime | None = None
        self.last_error: str | None = None
        self.consecutive_failures = 0

    @property
    def running(self) -> bool:
        """Whether the background task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling; a no-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="queue-sync-loop")
        logger.info("sync_loop_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("sync_loop_stopped")

    async def tick(self) -> bool:
        """
        Run one refresh.

        Returns:
            True if the refresh succeeded
        """
        if self.service.closed:
            return False
        try:
            await self.service.refresh()
        except Exception as e:
            self.consecutive_failures += 1
            self.last_error = str(e)
            self.service.report_sync_failure(e)
            logger.warning(
                "sync_tick_failed",
                error=str(e),
                error_type=e.__class__.__name__,
                consecutive_failures=self.consecutive_failures,
            )
            return False

        self.consecutive_failures = 0
        self.last_error = None
        self.last_synced_at = self.service.last_synced_at
        return True

    async def _run(self) -> None:
        while not self.service.closed:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)
