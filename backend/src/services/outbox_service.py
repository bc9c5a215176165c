"""
Notification outbox.

State changes enqueue OutboxEntry rows inside their own transaction; this
service is the consumer side. Selection uses SELECT ... FOR UPDATE SKIP
LOCKED so several workers can drain the table without sending the same
entry twice. Delivery is at-least-once: a crash after sending but before
commit resends the batch.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.constants import (
    MAX_ERROR_MESSAGE_LENGTH,
    OUTBOX_BATCH_SIZE,
    OUTBOX_MAX_ATTEMPTS,
    OUTBOX_RETRY_BASE_SECONDS,
)
from models.outbox_entry import OUTBOX_TYPES, OutboxEntry
from shared_types.reservations import OutboxRunStats
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class OutboxService:
    """Producer and consumer operations on the notification outbox."""

    @staticmethod
    def enqueue(
        db: Session,
        entry_type: str,
        payload: Dict[str, Any],
        not_before: Optional[datetime] = None,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS
    ) -> OutboxEntry:
        """
        Add an entry to the outbox without committing.

        The caller commits it together with the state change it announces.

        Raises:
            ValueError: If entry_type is unknown
        """
        if entry_type not in OUTBOX_TYPES:
            raise ValueError(f"Unknown outbox entry type: {entry_type}")

        entry = OutboxEntry(
            entry_type=entry_type,
            payload=payload,
            not_before=not_before,
            attempts=0,
            max_attempts=max_attempts,
        )
        db.add(entry)
        return entry

    @staticmethod
    def next_batch(db: Session, limit: int = OUTBOX_BATCH_SIZE, now: Optional[datetime] = None) -> List[OutboxEntry]:
        """
        Lock and return up to ``limit`` deliverable entries, oldest first.

        Deliverable means attempts < max_attempts and not_before is unset or
        due. Rows locked by another worker are skipped. The locks last until
        the caller's transaction ends.
        """
        now = now or utc_now()
        return db.query(OutboxEntry).filter(
            OutboxEntry.attempts < OutboxEntry.max_attempts,
            or_(OutboxEntry.not_before.is_(None), OutboxEntry.not_before <= now),
        ).order_by(
            OutboxEntry.created_at, OutboxEntry.id
        ).with_for_update(skip_locked=True).limit(limit).all()

    @staticmethod
    def mark_delivered(db: Session, entry_id: int) -> bool:
        """Delete a delivered entry. Returns False if it was already gone."""
        deleted = db.query(OutboxEntry).filter(OutboxEntry.id == entry_id).delete(synchronize_session="fetch")
        return deleted > 0

    @staticmethod
    def retry_delay(attempts: int) -> timedelta:
        """Exponential backoff after the given number of failed attempts."""
        return timedelta(seconds=OUTBOX_RETRY_BASE_SECONDS * (2 ** max(attempts - 1, 0)))

    @staticmethod
    def mark_failed(db: Session, entry_id: int, error: str, now: Optional[datetime] = None) -> Optional[OutboxEntry]:
        """
        Record a failed delivery attempt.

        Increments attempts, stores the (truncated) error and pushes not_before
        out by the backoff delay. Entries that reach max_attempts are kept as
        a permanent failure record and are never selected again.

        Returns:
            The updated entry, or None if it no longer exists
        """
        entry = db.query(OutboxEntry).filter(OutboxEntry.id == entry_id).first()
        if entry is None:
            return None

        now = now or utc_now()
        entry.attempts += 1
        entry.last_error = error[:MAX_ERROR_MESSAGE_LENGTH]
        if entry.attempts < entry.max_attempts:
            entry.not_before = now + OutboxService.retry_delay(entry.attempts)
            logger.info(
                f"Outbox entry {entry.id} failed attempt {entry.attempts}/{entry.max_attempts}, "
                f"retrying at {entry.not_before}"
            )
        else:
            logger.error(
                f"Outbox entry {entry.id} ({entry.entry_type}) abandoned after "
                f"{entry.attempts} attempts: {entry.last_error}"
            )
        return entry

    @staticmethod
    def process_pending(
        db: Session,
        sender: Any,
        batch_size: int = OUTBOX_BATCH_SIZE,
        now: Optional[datetime] = None
    ) -> OutboxRunStats:
        """
        Deliver one batch of due entries.

        For each entry the payload is resolved into a message and handed to
        the sender; success deletes the entry, any exception (including a
        transport timeout) counts as a failed attempt. The batch is committed
        once at the end so the row locks cover the whole batch.

        Args:
            db: Database session
            sender: Object with ``send(message)`` (see services.email_service)
            batch_size: Maximum entries to process
            now: Current time (defaults to utc_now())

        Returns:
            OutboxRunStats for the batch
        """
        # Import here to avoid circular import
        from services.notification_service import NotificationService

        now = now or utc_now()
        stats = OutboxRunStats()
        entries = OutboxService.next_batch(db, batch_size, now)
        stats.selected = len(entries)
        if not entries:
            return stats

        logger.info(f"Processing {len(entries)} outbox entries")

        for entry in entries:
            try:
                message = NotificationService.build_message(db, entry)
                if message is not None:
                    sender.send(message)
            except Exception as e:
                logger.warning(f"Failed to deliver outbox entry {entry.id} ({entry.entry_type}): {e}")
                updated = OutboxService.mark_failed(db, entry.id, f"{type(e).__name__}: {e}", now)
                stats.failed += 1
                stats.errors[entry.id] = str(e)
                if updated is not None and updated.is_abandoned:
                    stats.abandoned += 1
                continue

            OutboxService.mark_delivered(db, entry.id)
            stats.delivered += 1

        db.commit()
        logger.info(
            f"Outbox batch done: {stats.delivered} delivered, {stats.failed} failed "
            f"({stats.abandoned} abandoned)"
        )
        return stats

    @staticmethod
    def drain(
        db: Session,
        sender: Any,
        batch_size: int = OUTBOX_BATCH_SIZE,
        max_batches: int = 10,
        now: Optional[datetime] = None
    ) -> OutboxRunStats:
        """
        Process batches until nothing is due or max_batches is reached.

        Failed entries are pushed into the future by their backoff, so a
        single drain does not retry them.
        """
        total = OutboxRunStats()
        for _ in range(max_batches):
            stats = OutboxService.process_pending(db, sender, batch_size, now)
            total.selected += stats.selected
            total.delivered += stats.delivered
            total.failed += stats.failed
            total.abandoned += stats.abandoned
            total.errors.update(stats.errors)
            if stats.selected < batch_size:
                break
        return total

    @staticmethod
    def list_abandoned(db: Session, limit: int = 100) -> List[OutboxEntry]:
        """Entries that exhausted their attempts, newest first."""
        return db.query(OutboxEntry).filter(
            OutboxEntry.attempts >= OutboxEntry.max_attempts
        ).order_by(OutboxEntry.created_at.desc()).limit(limit).all()
