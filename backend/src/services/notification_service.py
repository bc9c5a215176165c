"""
Notification content resolution.

Outbox payloads only reference entities by id. At delivery time this
service loads the reservation, its requester, participant and resource, and
renders the message for the entry type.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from models.member import Member
from models.outbox_entry import OUTBOX_TYPE_PROMOTED, OUTBOX_TYPE_REMINDER, OutboxEntry
from models.participant import Participant
from models.reservation import RESERVATION_KIND_FACILITY, STATUS_CONFIRMED, Reservation
from services.email_service import EmailMessage
from services.message_template_service import MessageTemplateService

logger = logging.getLogger(__name__)


class NotificationResolutionError(ValueError):
    """Raised when an outbox payload cannot be turned into a message."""
    pass


class NotificationService:
    """Service for turning outbox entries into deliverable messages."""

    @staticmethod
    def build_context(db: Session, reservation: Reservation, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build template placeholders for a reservation.

        Raises:
            NotificationResolutionError: If the requester cannot be found
        """
        member = db.query(Member).filter(Member.id == reservation.requester_id).first()
        if member is None:
            raise NotificationResolutionError(f"Member {reservation.requester_id} not found")

        participant_name = member.full_name
        if reservation.participant_id is not None:
            participant = db.query(Participant).filter(Participant.id == reservation.participant_id).first()
            if participant is not None:
                participant_name = participant.full_name

        if reservation.kind == RESERVATION_KIND_FACILITY:
            facility = reservation.facility
            resource_name = facility.name if facility else f"Facility #{reservation.facility_id}"
            location = facility.location if facility else None
            reservation_time = MessageTemplateService.format_interval(reservation.start_time, reservation.end_time)
        else:
            program = reservation.program
            resource_name = program.title if program else f"Program #{reservation.program_id}"
            location = program.location if program else None
            session = reservation.session
            if session is not None:
                reservation_time = MessageTemplateService.format_interval(session.starts_at, session.ends_at)
            elif program is not None:
                reservation_time = MessageTemplateService.format_interval(program.starts_at, program.ends_at)
            else:
                reservation_time = ""

        return {
            "member_name": member.full_name,
            "member_email": member.email,
            "participant_name": participant_name,
            "resource_name": resource_name,
            "reservation_time": reservation_time,
            "location": location or "",
            "reservation_id": reservation.id,
            "position": payload.get("position") or "",
            "lead_hours": payload.get("lead_hours") or "",
        }

    @staticmethod
    def build_message(db: Session, entry: OutboxEntry) -> Optional[EmailMessage]:
        """
        Resolve an outbox entry into an email.

        Args:
            db: Database session
            entry: Outbox entry being delivered

        Returns:
            The message, or None when there is nothing to send (a reminder
            for a reservation that is no longer confirmed, or a promotion
            whose member opted out of notifications)

        Raises:
            NotificationResolutionError: If referenced entities are missing
        """
        reservation_id = (entry.payload or {}).get("reservation_id")
        if reservation_id is None:
            raise NotificationResolutionError(f"Outbox entry {entry.id} has no reservation_id")

        reservation = db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if reservation is None:
            raise NotificationResolutionError(f"Reservation {reservation_id} not found")

        if entry.entry_type == OUTBOX_TYPE_REMINDER and reservation.status != STATUS_CONFIRMED:
            logger.info(f"Skipping reminder for reservation {reservation.id} with status {reservation.status}")
            return None

        if entry.entry_type == OUTBOX_TYPE_PROMOTED and not entry.payload.get("notify_opt_in", True):
            logger.info(f"Skipping promotion notice for reservation {reservation.id}: member opted out")
            return None

        context = NotificationService.build_context(db, reservation, entry.payload)
        subject, body = MessageTemplateService.render(entry.entry_type, context)
        return EmailMessage(
            to=context["member_email"],
            subject=subject,
            body=body,
            outbox_entry_id=entry.id,
        )
