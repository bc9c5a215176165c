"""
Participant lookups and ownership checks.
"""

import logging

from sqlalchemy.orm import Session

from models.participant import Participant
from services.reservation_errors import InvalidParticipantError, NotOwnerError

logger = logging.getLogger(__name__)


class ParticipantService:
    """Service for participant ownership."""

    @staticmethod
    def get_active_participant(db: Session, participant_id: int) -> Participant:
        """
        Raises:
            InvalidParticipantError: If the participant is missing or inactive
        """
        participant = db.query(Participant).filter(Participant.id == participant_id).first()
        if participant is None or not participant.is_active:
            raise InvalidParticipantError(f"Participant {participant_id} does not exist or is inactive")
        return participant

    @staticmethod
    def validate_ownership(db: Session, participant_id: int, requester_id: int) -> Participant:
        """
        Check that the requester owns the participant.

        Args:
            db: Database session
            participant_id: Participant being registered
            requester_id: Authenticated member

        Returns:
            The participant

        Raises:
            InvalidParticipantError: If the participant is missing or inactive
            NotOwnerError: If another member owns the participant
        """
        participant = ParticipantService.get_active_participant(db, participant_id)
        if participant.member_id != requester_id:
            logger.warning(f"Member {requester_id} attempted to act for participant {participant_id}")
            raise NotOwnerError("Requester does not own this participant")
        return participant
