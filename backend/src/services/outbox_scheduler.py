"""
Outbox delivery worker.

Drains the notification outbox on a fixed interval. Several processes may
run the worker at the same time: batch selection skips rows another worker
has locked.
"""

import asyncio
import logging
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore

from core.constants import OUTBOX_BATCH_SIZE, OUTBOX_POLL_INTERVAL_SECONDS, OUTBOX_WORKER_MAX_INSTANCES
from core.database import get_db_context
from services.email_service import get_email_sender
from services.outbox_service import OutboxService
from shared_types.reservations import OutboxRunStats

logger = logging.getLogger(__name__)


class OutboxWorker:
    """
    Scheduler for delivering outbox entries.

    Database sessions are created fresh for each run to avoid stale session
    issues; the sender is created once and reused.
    """

    def __init__(self, sender: Optional[Any] = None, interval_seconds: int = OUTBOX_POLL_INTERVAL_SECONDS):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.sender = sender or get_email_sender()
        self.interval_seconds = interval_seconds
        self._is_started = False

    async def start_scheduler(self) -> None:
        """
        Start the background delivery job.

        This should be called during application startup.
        """
        if self._is_started:
            logger.warning("Outbox worker is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._deliver_pending,
            IntervalTrigger(seconds=self.interval_seconds),
            id="deliver_outbox",
            name="Deliver outbox notifications",
            max_instances=OUTBOX_WORKER_MAX_INSTANCES,  # Prevent overlapping runs
            replace_existing=True
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(f"Outbox worker started (every {self.interval_seconds}s)")

        # Run immediately on startup to flush entries queued while we were down
        await self._deliver_pending()

    async def stop_scheduler(self) -> None:
        """
        Stop the background delivery job.

        This should be called during application shutdown.
        """
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Outbox worker stopped")

    def run_once(self) -> OutboxRunStats:
        """Drain due entries once with a fresh session."""
        with get_db_context() as db:
            return OutboxService.drain(db, self.sender, batch_size=OUTBOX_BATCH_SIZE)

    async def _deliver_pending(self) -> None:
        try:
            # Delivery blocks on the database and SMTP; keep it off the event loop
            stats = await asyncio.to_thread(self.run_once)
            if stats.selected:
                logger.info(
                    f"Outbox run: {stats.delivered} delivered, {stats.failed} failed, "
                    f"{stats.abandoned} abandoned"
                )
        except Exception as e:
            logger.exception(f"Error delivering outbox entries: {e}")


# Global worker instance
_outbox_worker: Optional[OutboxWorker] = None


def get_outbox_worker() -> OutboxWorker:
    """
    Get the global outbox worker instance.

    Returns:
        The global outbox worker instance
    """
    global _outbox_worker
    if _outbox_worker is None:
        _outbox_worker = OutboxWorker()
    return _outbox_worker


async def start_outbox_worker() -> None:
    """
    Start the global outbox worker.

    This should be called during application startup.
    """
    worker = get_outbox_worker()
    await worker.start_scheduler()


async def stop_outbox_worker() -> None:
    """
    Stop the global outbox worker.

    This should be called during application shutdown.
    """
    global _outbox_worker
    if _outbox_worker:
        await _outbox_worker.stop_scheduler()
