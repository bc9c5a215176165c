"""
Unit tests for the reservation arbiter: facility bookings, program
registrations, waitlisting, idempotency and cancellation with promotion.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError

from core.locks import KeyedLockRegistry
from models.outbox_entry import OutboxEntry
from models.reservation import Reservation
from models.waitlist_entry import WaitlistEntry
from services.outbox_service import OutboxService
from services.reservation_errors import (
    BusyError,
    CancellationCutoffError,
    ConflictError,
    InvalidParticipantError,
    InvalidRequestError,
    NotFoundError,
    NotOwnerError,
    ResourceInactiveError,
)
from services.reservation_service import ReservationService
from services.waitlist_service import WaitlistService
from shared_types.reservations import ReservationRequest
from tests.conftest import (
    MONDAY,
    NOW,
    at,
    create_facility,
    create_member,
    create_participant,
    create_program,
    create_session,
)


def booking_request(facility, member, start, end, **kwargs) -> ReservationRequest:
    return ReservationRequest(
        resource_type="facility",
        resource_id=facility.id,
        requester_id=member.id,
        start_time=start,
        end_time=end,
        **kwargs
    )


def registration_request(program, participant, session=None, **kwargs) -> ReservationRequest:
    return ReservationRequest(
        resource_type="program",
        resource_id=program.id,
        requester_id=participant.member_id,
        participant_id=participant.id,
        session_id=session.id if session is not None else None,
        **kwargs
    )


def outbox_types(db_session):
    db_session.expire_all()
    return [entry.entry_type for entry in db_session.query(OutboxEntry).order_by(OutboxEntry.id).all()]


@pytest.fixture
def service():
    return ReservationService(lock_registry=KeyedLockRegistry(timeout=2.0))


class TestFacilityBooking:
    """Facility bookings are confirmed or rejected."""

    def test_booking_is_confirmed_with_outbox_entry(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)

        result = service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        assert result.status == "confirmed"
        assert result.position is None
        assert result.replayed is False
        entry = db_session.query(OutboxEntry).one()
        assert entry.entry_type == "confirmation"
        assert entry.payload["reservation_id"] == result.reservation.id

    def test_overlapping_booking_is_rejected_without_side_effects(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)
        service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        with pytest.raises(ConflictError):
            service.create_reservation(
                db_session, booking_request(facility, member, at(MONDAY, 10, 30), at(MONDAY, 11, 30)), now=NOW
            )

        assert db_session.query(Reservation).count() == 1
        assert outbox_types(db_session) == ["confirmation"]

    def test_cancelled_slot_can_be_rebooked(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)
        first = service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )
        service.cancel_reservation(db_session, first.reservation.id, member.id, now=NOW)

        second = service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        assert second.status == "confirmed"
        assert second.reservation.id != first.reservation.id

    def test_idempotent_replay_returns_original(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)
        request = booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11), idempotency_key="key-1")

        first = service.create_reservation(db_session, request, now=NOW)
        # Same key with a different interval still replays the original
        second = service.create_reservation(
            db_session,
            booking_request(facility, member, at(MONDAY, 14), at(MONDAY, 15), idempotency_key="key-1"),
            now=NOW,
        )

        assert second.replayed is True
        assert second.reservation.id == first.reservation.id
        assert second.status == "confirmed"
        assert db_session.query(Reservation).count() == 1
        assert outbox_types(db_session) == ["confirmation"]

    def test_idempotency_key_of_another_member_is_rejected(self, db_session, service):
        owner = create_member(db_session, full_name="Owner")
        other = create_member(db_session, full_name="Other")
        facility = create_facility(db_session)
        service.create_reservation(
            db_session,
            booking_request(facility, owner, at(MONDAY, 10), at(MONDAY, 11), idempotency_key="shared-key"),
            now=NOW,
        )

        with pytest.raises(InvalidRequestError):
            service.create_reservation(
                db_session,
                booking_request(facility, other, at(MONDAY, 14), at(MONDAY, 15), idempotency_key="shared-key"),
                now=NOW,
            )

        db_session.expire_all()
        assert db_session.query(Reservation).count() == 1
        assert db_session.query(Reservation).one().requester_id == owner.id

    def test_facility_booking_rejects_session(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)

        with pytest.raises(InvalidRequestError):
            service.create_reservation(
                db_session,
                booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11), session_id=1),
                now=NOW,
            )

    def test_unknown_facility(self, db_session, service):
        member = create_member(db_session)

        with pytest.raises(NotFoundError):
            service.create_reservation(db_session, ReservationRequest(
                resource_type="facility", resource_id=424242, requester_id=member.id,
                start_time=at(MONDAY, 10), end_time=at(MONDAY, 11),
            ), now=NOW)


class TestProgramRegistration:
    """Registrations are confirmed up to capacity, then waitlisted."""

    def test_capacity_then_waitlist(self, db_session, service):
        program = create_program(db_session, capacity=2)
        participants = [create_participant(db_session, create_member(db_session)) for _ in range(4)]

        results = [service.create_reservation(db_session, registration_request(program, p)) for p in participants]

        assert [r.status for r in results] == ["confirmed", "confirmed", "waitlisted", "waitlisted"]
        assert [r.position for r in results] == [None, None, 1, 2]
        assert outbox_types(db_session) == ["confirmation", "confirmation", "waitlisted", "waitlisted"]
        entries = WaitlistService.list_entries(db_session, program.id)
        assert [e.reservation_id for e in entries] == [results[2].reservation.id, results[3].reservation.id]

    def test_session_capacity_override(self, db_session, service):
        program = create_program(db_session, capacity=5)
        session = create_session(db_session, program, capacity_override=1)
        first = create_participant(db_session, create_member(db_session))
        second = create_participant(db_session, create_member(db_session))

        r1 = service.create_reservation(db_session, registration_request(program, first, session))
        r2 = service.create_reservation(db_session, registration_request(program, second, session))

        assert r1.status == "confirmed"
        assert r2.status == "waitlisted"
        assert r2.position == 1

    def test_sessions_have_independent_capacity(self, db_session, service):
        program = create_program(db_session, capacity=1)
        week1 = create_session(db_session, program, at(MONDAY, 18))
        week2 = create_session(db_session, program, at(MONDAY + timedelta(days=7), 18))
        participant = create_participant(db_session, create_member(db_session))

        r1 = service.create_reservation(db_session, registration_request(program, participant, week1))
        r2 = service.create_reservation(db_session, registration_request(program, participant, week2))

        assert r1.status == "confirmed"
        assert r2.status == "confirmed"

    def test_duplicate_registration_returns_existing(self, db_session, service):
        program = create_program(db_session, capacity=1)
        holder = create_participant(db_session, create_member(db_session))
        waiting = create_participant(db_session, create_member(db_session))
        service.create_reservation(db_session, registration_request(program, holder))
        original = service.create_reservation(db_session, registration_request(program, waiting))

        duplicate = service.create_reservation(db_session, registration_request(program, waiting))

        assert duplicate.replayed is True
        assert duplicate.reservation.id == original.reservation.id
        assert duplicate.status == "waitlisted"
        assert duplicate.position == 1
        assert db_session.query(Reservation).count() == 2
        assert outbox_types(db_session) == ["confirmation", "waitlisted"]

    def test_inactive_program(self, db_session, service):
        program = create_program(db_session, is_active=False)
        participant = create_participant(db_session, create_member(db_session))

        with pytest.raises(ResourceInactiveError):
            service.create_reservation(db_session, registration_request(program, participant))

    def test_inactive_session(self, db_session, service):
        program = create_program(db_session)
        session = create_session(db_session, program, is_active=False)
        participant = create_participant(db_session, create_member(db_session))

        with pytest.raises(ResourceInactiveError):
            service.create_reservation(db_session, registration_request(program, participant, session))

    def test_session_of_another_program(self, db_session, service):
        program = create_program(db_session)
        other = create_program(db_session)
        session = create_session(db_session, other)
        participant = create_participant(db_session, create_member(db_session))

        with pytest.raises(InvalidRequestError):
            service.create_reservation(db_session, registration_request(program, participant, session))

    def test_inactive_participant(self, db_session, service):
        program = create_program(db_session)
        participant = create_participant(db_session, create_member(db_session), is_active=False)

        with pytest.raises(InvalidParticipantError):
            service.create_reservation(db_session, registration_request(program, participant))

    def test_registration_rejects_interval(self, db_session, service):
        program = create_program(db_session)
        participant = create_participant(db_session, create_member(db_session))

        with pytest.raises(InvalidRequestError):
            service.create_reservation(
                db_session, registration_request(program, participant, start_time=at(MONDAY, 10))
            )


class TestCancellation:
    """Cancellation, promotion and waitlist positions."""

    def fill(self, db_session, service, program, count, session=None):
        results = []
        for _ in range(count):
            participant = create_participant(db_session, create_member(db_session))
            results.append(service.create_reservation(db_session, registration_request(program, participant, session)))
        return results

    def test_cancel_confirmed_promotes_lowest_position(self, db_session, service):
        program = create_program(db_session, capacity=1)
        holder, first_waiting, second_waiting = self.fill(db_session, service, program, 3)

        result = service.cancel_reservation(db_session, holder.reservation.id, holder.reservation.requester_id)

        assert result.reservation.status == "cancelled"
        assert result.promoted_reservation_id == first_waiting.reservation.id
        db_session.expire_all()
        promoted = db_session.get(Reservation, first_waiting.reservation.id)
        assert promoted.status == "confirmed"
        # Remaining positions are not renumbered
        assert WaitlistService.get_position(db_session, second_waiting.reservation.id) == 2
        assert outbox_types(db_session)[-1] == "promoted"

    def test_promotion_is_recorded_even_when_member_opted_out(self, db_session, service):
        program = create_program(db_session, capacity=1)
        holder = self.fill(db_session, service, program, 1)[0]
        participant = create_participant(db_session, create_member(db_session))
        service.create_reservation(db_session, registration_request(program, participant, notify_opt_in=False))

        result = service.cancel_reservation(db_session, holder.reservation.id, holder.reservation.requester_id)

        assert result.promoted_reservation_id is not None
        db_session.expire_all()
        promoted = db_session.query(OutboxEntry).filter(OutboxEntry.entry_type == "promoted").one()
        assert promoted.payload["reservation_id"] == result.promoted_reservation_id
        assert promoted.payload["notify_opt_in"] is False

        sender = Mock()
        OutboxService.drain(db_session, sender)

        subjects = [call.args[0].subject for call in sender.send.call_args_list]
        assert not any(subject.startswith("A spot opened up") for subject in subjects)
        assert db_session.query(OutboxEntry).filter(OutboxEntry.entry_type == "promoted").count() == 0

    def test_cancel_waitlisted_removes_entry_without_promotion(self, db_session, service):
        program = create_program(db_session, capacity=1)
        holder, first_waiting, second_waiting = self.fill(db_session, service, program, 3)

        result = service.cancel_reservation(
            db_session, first_waiting.reservation.id, first_waiting.reservation.requester_id
        )

        assert result.promoted_reservation_id is None
        assert WaitlistService.get_position(db_session, first_waiting.reservation.id) is None
        assert WaitlistService.get_position(db_session, second_waiting.reservation.id) == 2
        db_session.expire_all()
        assert db_session.get(Reservation, holder.reservation.id).status == "confirmed"

    def test_positions_are_never_reused(self, db_session, service):
        program = create_program(db_session, capacity=1)
        holder, first_waiting, second_waiting = self.fill(db_session, service, program, 3)
        service.cancel_reservation(db_session, holder.reservation.id, holder.reservation.requester_id)
        service.cancel_reservation(db_session, second_waiting.reservation.id, second_waiting.reservation.requester_id)

        # The waitlist is now empty, but positions 1 and 2 were already handed out
        newcomer = self.fill(db_session, service, program, 1)[0]

        assert db_session.query(WaitlistEntry).count() == 1
        assert newcomer.status == "waitlisted"
        assert newcomer.position == 3

    def test_confirmed_count_stays_at_capacity(self, db_session, service):
        program = create_program(db_session, capacity=2)
        session = create_session(db_session, program)
        results = self.fill(db_session, service, program, 5, session)

        service.cancel_reservation(db_session, results[0].reservation.id, results[0].reservation.requester_id)
        service.cancel_reservation(db_session, results[1].reservation.id, results[1].reservation.requester_id)

        db_session.expire_all()
        confirmed = db_session.query(Reservation).filter(
            Reservation.session_id == session.id, Reservation.status == "confirmed"
        ).all()
        assert sorted(r.id for r in confirmed) == sorted([results[2].reservation.id, results[3].reservation.id])
        assert WaitlistService.get_position(db_session, results[4].reservation.id) == 3

    def test_cancel_twice_is_a_no_op(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)
        booking = service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        first = service.cancel_reservation(db_session, booking.reservation.id, member.id, now=NOW)
        second = service.cancel_reservation(db_session, booking.reservation.id, member.id, now=NOW)

        assert first.already_cancelled is False
        assert second.already_cancelled is True
        assert second.reservation.status == "cancelled"

    def test_only_the_requester_can_cancel(self, db_session, service):
        owner = create_member(db_session)
        stranger = create_member(db_session)
        facility = create_facility(db_session)
        booking = service.create_reservation(
            db_session, booking_request(facility, owner, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        with pytest.raises(NotOwnerError):
            service.cancel_reservation(db_session, booking.reservation.id, stranger.id, now=NOW)

    def test_unknown_reservation(self, db_session, service):
        with pytest.raises(NotFoundError):
            service.cancel_reservation(db_session, 987654, 1, now=NOW)

    def test_facility_cancellation_cutoff(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session, cancellation_cutoff_hours=24)
        booking = service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        with pytest.raises(CancellationCutoffError):
            service.cancel_reservation(
                db_session, booking.reservation.id, member.id, now=at(MONDAY, 10) - timedelta(hours=23)
            )

        result = service.cancel_reservation(
            db_session, booking.reservation.id, member.id, now=at(MONDAY, 10) - timedelta(hours=25)
        )
        assert result.reservation.status == "cancelled"


class TestArbitrationRetries:
    """Lock timeouts and database races."""

    def test_lock_timeout_surfaces_as_busy(self, db_session):
        registry = KeyedLockRegistry(timeout=0.05)
        service = ReservationService(lock_registry=registry)
        member = create_member(db_session)
        facility = create_facility(db_session)

        with registry.hold(f"facility:{facility.id}"):
            with pytest.raises(BusyError):
                service.create_reservation(
                    db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
                )

        assert db_session.query(Reservation).count() == 0

    def test_integrity_error_is_retried_as_fresh_decision(self, db_session, service):
        member = create_member(db_session)
        facility = create_facility(db_session)
        original_decide = service._decide
        calls = []

        def flaky_decide(db, request, now):
            calls.append(1)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO reservations", {}, Exception("duplicate key"))
            return original_decide(db, request, now)

        service._decide = flaky_decide

        result = service.create_reservation(
            db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
        )

        assert len(calls) == 2
        assert result.status == "confirmed"

    def test_retries_are_bounded(self, db_session):
        service = ReservationService(max_attempts=3)
        member = create_member(db_session)
        facility = create_facility(db_session)
        calls = []

        def always_racing(db, request, now):
            calls.append(1)
            raise IntegrityError("INSERT INTO reservations", {}, Exception("duplicate key"))

        service._decide = always_racing

        with pytest.raises(BusyError):
            service.create_reservation(
                db_session, booking_request(facility, member, at(MONDAY, 10), at(MONDAY, 11)), now=NOW
            )

        assert len(calls) == 3
