"""
Reservation reminder sweep.

This module queues reminder notifications for upcoming confirmed
reservations. A periodic job looks, for each configured lead time, for
reservations starting inside a tolerance window around now + lead, and
enqueues a 'reminder' outbox entry due at start - lead. A dedup row per
(reservation, lead) makes repeated and overlapping sweeps harmless.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.constants import (
    REMINDER_INTERVAL_MINUTES,
    REMINDER_LEAD_HOURS,
    REMINDER_SCHEDULER_MAX_INSTANCES,
    REMINDER_WINDOW_TOLERANCE_MINUTES,
)
from core.database import get_db_context
from models.outbox_entry import OUTBOX_TYPE_REMINDER
from models.program import Program
from models.program_session import ProgramSession
from models.reservation import (
    RESERVATION_KIND_FACILITY,
    RESERVATION_KIND_PROGRAM,
    STATUS_CONFIRMED,
    Reservation,
)
from models.reservation_reminder import ReservationReminder
from services.outbox_service import OutboxService
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class ReminderService:
    """
    Service for queuing reservation reminders.

    The sweep itself is a static method so it can run in any session; the
    instance wraps it in an APScheduler job.
    """

    def __init__(self, interval_minutes: int = REMINDER_INTERVAL_MINUTES):
        """
        Initialize the reminder service.

        Note: Database sessions are created fresh for each scheduler run
        to avoid stale session issues. Do not pass a session here.
        """
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.interval_minutes = interval_minutes
        self._is_started = False

    async def start_scheduler(self) -> None:
        """
        Start the background scheduler for queuing reminders.

        This should be called during application startup.
        """
        if self._is_started:
            logger.warning("Reminder scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._queue_pending_reminders,
            IntervalTrigger(minutes=self.interval_minutes),
            id="queue_reminders",
            name="Queue reservation reminders",
            max_instances=REMINDER_SCHEDULER_MAX_INSTANCES,  # Prevent overlapping runs
            replace_existing=True
        )

        self.scheduler.start()
        self._is_started = True
        logger.info("Reservation reminder scheduler started")

        # Run immediately on startup to catch up on reminders missed during downtime
        await self._queue_pending_reminders()

    async def stop_scheduler(self) -> None:
        """
        Stop the background scheduler.

        This should be called during application shutdown.
        """
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Reservation reminder scheduler stopped")

    async def _queue_pending_reminders(self) -> None:
        try:
            queued = await asyncio.to_thread(self._sweep_once)
            if queued:
                logger.info(f"Queued {queued} reservation reminders")
        except Exception as e:
            logger.exception(f"Error queuing reservation reminders: {e}")

    def _sweep_once(self) -> int:
        with get_db_context() as db:
            return ReminderService.run_sweep(db)

    @staticmethod
    def get_window(now: datetime, lead_hours: int, tolerance_minutes: int = REMINDER_WINDOW_TOLERANCE_MINUTES) -> Tuple[datetime, datetime]:
        """[now + lead - tolerance, now + lead + tolerance)"""
        target = now + timedelta(hours=lead_hours)
        tolerance = timedelta(minutes=tolerance_minutes)
        return target - tolerance, target + tolerance

    @staticmethod
    def find_upcoming(db: Session, window_start: datetime, window_end: datetime) -> List[Tuple[Reservation, datetime]]:
        """
        Confirmed reservations whose effective start lies in the window.

        The effective start is the booking start for facilities, the session
        start for session-scoped registrations, and the program start for
        program-wide registrations (programs without a start are skipped).

        Returns:
            (reservation, start) pairs ordered by start
        """
        results: List[Tuple[Reservation, datetime]] = []

        bookings = db.query(Reservation).filter(
            Reservation.kind == RESERVATION_KIND_FACILITY,
            Reservation.status == STATUS_CONFIRMED,
            Reservation.start_time >= window_start,
            Reservation.start_time < window_end,
        ).all()
        results.extend((booking, booking.start_time) for booking in bookings)  # type: ignore[misc]

        session_rows = db.query(Reservation, ProgramSession.starts_at).join(
            ProgramSession, Reservation.session_id == ProgramSession.id
        ).filter(
            Reservation.kind == RESERVATION_KIND_PROGRAM,
            Reservation.status == STATUS_CONFIRMED,
            ProgramSession.starts_at >= window_start,
            ProgramSession.starts_at < window_end,
        ).all()
        results.extend((reservation, starts_at) for reservation, starts_at in session_rows)

        program_rows = db.query(Reservation, Program.starts_at).join(
            Program, Reservation.program_id == Program.id
        ).filter(
            Reservation.kind == RESERVATION_KIND_PROGRAM,
            Reservation.session_id.is_(None),
            Reservation.status == STATUS_CONFIRMED,
            Program.starts_at.isnot(None),
            Program.starts_at >= window_start,
            Program.starts_at < window_end,
        ).all()
        results.extend((reservation, starts_at) for reservation, starts_at in program_rows)

        results.sort(key=lambda pair: pair[1])
        return results

    @staticmethod
    def _already_queued(db: Session, reservation_ids: Iterable[int], lead_hours: int) -> Set[int]:
        ids = list(reservation_ids)
        if not ids:
            return set()
        rows = db.query(ReservationReminder.reservation_id).filter(
            ReservationReminder.lead_hours == lead_hours,
            ReservationReminder.reservation_id.in_(ids),
        ).all()
        return {row[0] for row in rows}

    @staticmethod
    def run_sweep(
        db: Session,
        now: Optional[datetime] = None,
        lead_hours: Sequence[int] = REMINDER_LEAD_HOURS,
        tolerance_minutes: int = REMINDER_WINDOW_TOLERANCE_MINUTES
    ) -> int:
        """
        Queue reminders for every lead time and commit.

        Args:
            db: Database session
            now: Current time (defaults to utc_now())
            lead_hours: Lead times to remind at
            tolerance_minutes: Half-width of the matching window

        Returns:
            Number of reminders queued (0 if a concurrent sweep won the race)
        """
        now = now or utc_now()
        queued = 0

        for lead in lead_hours:
            window_start, window_end = ReminderService.get_window(now, lead, tolerance_minutes)
            upcoming = ReminderService.find_upcoming(db, window_start, window_end)
            if not upcoming:
                continue

            done = ReminderService._already_queued(db, (r.id for r, _ in upcoming), lead)
            for reservation, starts_at in upcoming:
                if reservation.id in done:
                    continue
                db.add(ReservationReminder(reservation_id=reservation.id, lead_hours=lead))
                OutboxService.enqueue(
                    db,
                    OUTBOX_TYPE_REMINDER,
                    {"reservation_id": reservation.id, "lead_hours": lead},
                    not_before=starts_at - timedelta(hours=lead),
                )
                done.add(reservation.id)
                queued += 1

        try:
            db.commit()
        except IntegrityError as e:
            # Another sweep queued some of these first; the next run picks up the rest
            db.rollback()
            logger.warning(f"Reminder sweep raced with a concurrent sweep, rolled back: {e.orig}")
            return 0

        return queued


# Global service instance
_reminder_service: Optional[ReminderService] = None


def get_reminder_service() -> ReminderService:
    """
    Get the global reminder service instance.

    Returns:
        The global reminder service instance
    """
    global _reminder_service
    if _reminder_service is None:
        _reminder_service = ReminderService()
    return _reminder_service


async def start_reminder_scheduler() -> None:
    """
    Start the global reminder scheduler.

    This should be called during application startup.
    """
    service = get_reminder_service()
    await service.start_scheduler()


async def stop_reminder_scheduler() -> None:
    """
    Stop the global reminder scheduler.

    This should be called during application shutdown.
    """
    global _reminder_service
    if _reminder_service:
        await _reminder_service.stop_scheduler()
