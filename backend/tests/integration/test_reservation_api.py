"""
Integration tests for the reservation HTTP API.

Requests go through the FastAPI app with real authentication, the real
database and the process-wide arbiter. Endpoints use the real clock, so
facilities are created with a booking horizon wide enough for 2030 dates.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from main import app
from models.outbox_entry import OutboxEntry
from models.reservation import Reservation
from services.outbox_scheduler import OutboxWorker
from services.rate_limiter import RateLimiter
from tests.conftest import (
    MONDAY,
    at,
    create_booking,
    create_facility,
    create_member,
    create_participant,
    create_program,
)
from tests.utils import auth_headers

WIDE_HORIZON_DAYS = 3650 * 3


@pytest.fixture
def client():
    app.state.rate_limiter = RateLimiter()
    return TestClient(app)


def booking_body(facility, start, end, **extra):
    body = {
        "resource_type": "facility",
        "resource_id": facility.id,
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
    }
    body.update(extra)
    return body


class TestFacilityBookingApi:
    def test_booking_is_created(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        response = client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 10), at(MONDAY, 11)),
            headers=auth_headers(member),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["position"] is None
        assert data["replayed"] is False

        booking = db_session.query(Reservation).filter(Reservation.id == data["reservation_id"]).one()
        assert booking.requester_id == member.id
        assert booking.start_time == at(MONDAY, 10)

    def test_idempotency_key_header_replays(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        headers = auth_headers(member, **{"Idempotency-Key": "booking-abc"})
        body = booking_body(facility, at(MONDAY, 10), at(MONDAY, 11))

        first = client.post("/reservations", json=body, headers=headers)
        second = client.post("/reservations", json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.json()["reservation_id"] == first.json()["reservation_id"]
        assert second.json()["replayed"] is True
        assert db_session.query(Reservation).count() == 1
        assert db_session.query(OutboxEntry).count() == 1

    def test_idempotency_key_of_another_member_returns_400(self, client, db_session):
        owner = create_member(db_session)
        other = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        first = client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 10), at(MONDAY, 11)),
            headers=auth_headers(owner, **{"Idempotency-Key": "booking-shared"}),
        )
        second = client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 14), at(MONDAY, 15)),
            headers=auth_headers(other, **{"Idempotency-Key": "booking-shared"}),
        )

        assert first.status_code == 201
        assert second.status_code == 400
        assert second.json()["type"] == "invalid_request"
        assert db_session.query(Reservation).count() == 1

    def test_conflict_returns_409(self, client, db_session):
        member = create_member(db_session)
        other = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        create_booking(db_session, facility, other, at(MONDAY, 10), at(MONDAY, 11))

        response = client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 10, 30), at(MONDAY, 11, 30)),
            headers=auth_headers(member),
        )

        assert response.status_code == 409
        assert response.json()["type"] == "conflict"

    def test_out_of_window_is_rejected(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        response = client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 18), at(MONDAY, 19)),
            headers=auth_headers(member),
        )

        assert response.status_code == 409
        assert response.json()["type"] == "out_of_window"

    def test_missing_interval_fails_validation(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        response = client.post(
            "/reservations",
            json={"resource_type": "facility", "resource_id": facility.id},
            headers=auth_headers(member),
        )

        assert response.status_code == 422

    def test_missing_token_returns_401(self, client, db_session):
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        response = client.post("/reservations", json=booking_body(facility, at(MONDAY, 10), at(MONDAY, 11)))

        assert response.status_code == 401

    def test_inactive_member_returns_401(self, client, db_session):
        member = create_member(db_session, is_active=False)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        response = client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 10), at(MONDAY, 11)),
            headers=auth_headers(member),
        )

        assert response.status_code == 401


class TestProgramRegistrationApi:
    def test_registration_then_waitlist(self, client, db_session):
        program = create_program(db_session, capacity=1)
        first = create_participant(db_session, create_member(db_session))
        second = create_participant(db_session, create_member(db_session))

        confirmed = client.post(
            "/reservations",
            json={"resource_type": "program", "resource_id": program.id, "participant_id": first.id},
            headers=auth_headers(first.member),
        )
        waitlisted = client.post(
            "/reservations",
            json={"resource_type": "program", "resource_id": program.id, "participant_id": second.id},
            headers=auth_headers(second.member),
        )

        assert confirmed.status_code == 201
        assert confirmed.json()["status"] == "confirmed"
        assert waitlisted.status_code == 201
        assert waitlisted.json()["status"] == "waitlisted"
        assert waitlisted.json()["position"] == 1

    def test_registering_someone_elses_participant_returns_403(self, client, db_session):
        program = create_program(db_session)
        member = create_member(db_session)
        stranger = create_participant(db_session, create_member(db_session))

        response = client.post(
            "/reservations",
            json={"resource_type": "program", "resource_id": program.id, "participant_id": stranger.id},
            headers=auth_headers(member),
        )

        assert response.status_code == 403
        assert response.json()["type"] == "not_owner"
        assert db_session.query(Reservation).count() == 0

    def test_unknown_program_returns_404(self, client, db_session):
        participant = create_participant(db_session, create_member(db_session))

        response = client.post(
            "/reservations",
            json={"resource_type": "program", "resource_id": 999999, "participant_id": participant.id},
            headers=auth_headers(participant.member),
        )

        assert response.status_code == 404
        assert response.json()["type"] == "not_found"


class TestCancellationApi:
    def test_cancel_promotes_waitlist(self, client, db_session):
        program = create_program(db_session, capacity=1)
        first = create_participant(db_session, create_member(db_session))
        second = create_participant(db_session, create_member(db_session))
        confirmed = client.post(
            "/reservations",
            json={"resource_type": "program", "resource_id": program.id, "participant_id": first.id},
            headers=auth_headers(first.member),
        ).json()
        waitlisted = client.post(
            "/reservations",
            json={"resource_type": "program", "resource_id": program.id, "participant_id": second.id},
            headers=auth_headers(second.member),
        ).json()

        response = client.post(
            f"/reservations/{confirmed['reservation_id']}/cancel",
            json={"reason": "Schedule change"},
            headers=auth_headers(first.member),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "cancelled"
        assert data["promoted_reservation_id"] == waitlisted["reservation_id"]

        db_session.expire_all()
        promoted = db_session.query(Reservation).filter(Reservation.id == waitlisted["reservation_id"]).one()
        assert promoted.status == "confirmed"

    def test_cancel_twice_is_idempotent(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        booking = create_booking(db_session, facility, member, at(MONDAY, 10), at(MONDAY, 11))

        first = client.post(f"/reservations/{booking.id}/cancel", headers=auth_headers(member))
        second = client.post(f"/reservations/{booking.id}/cancel", headers=auth_headers(member))

        assert first.status_code == 200
        assert first.json()["already_cancelled"] is False
        assert second.status_code == 200
        assert second.json()["already_cancelled"] is True

    def test_cancel_by_other_member_returns_403(self, client, db_session):
        owner = create_member(db_session)
        other = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        booking = create_booking(db_session, facility, owner, at(MONDAY, 10), at(MONDAY, 11))

        response = client.post(f"/reservations/{booking.id}/cancel", headers=auth_headers(other))

        assert response.status_code == 403
        assert response.json()["type"] == "not_owner"

    def test_cancel_unknown_returns_404(self, client, db_session):
        member = create_member(db_session)

        response = client.post("/reservations/999999/cancel", headers=auth_headers(member))

        assert response.status_code == 404


class TestAvailabilityApi:
    def test_check_availability(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        create_booking(db_session, facility, member, at(MONDAY, 10), at(MONDAY, 11))

        free = client.get(
            f"/facilities/{facility.id}/availability",
            params={"start_time": "2030-01-07T12:00:00Z", "end_time": "2030-01-07T13:00:00Z"},
        )
        taken = client.get(
            f"/facilities/{facility.id}/availability",
            params={"start_time": "2030-01-07T10:30:00Z", "end_time": "2030-01-07T11:30:00Z"},
        )

        assert free.status_code == 200
        assert free.json()["available"] is True
        assert taken.json()["available"] is False
        assert taken.json()["reason"] == "conflict"

    def test_check_availability_rejects_bad_datetime(self, client, db_session):
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        response = client.get(
            f"/facilities/{facility.id}/availability",
            params={"start_time": "tomorrow", "end_time": "2030-01-07T13:00:00Z"},
        )

        assert response.status_code == 400

    def test_list_slots_skips_booked_time(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        create_booking(db_session, facility, member, at(MONDAY, 10), at(MONDAY, 11))

        response = client.get(
            f"/facilities/{facility.id}/slots",
            params={"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat()},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["duration_minutes"] == 30
        # 09:00-17:00 in 30 minute steps, minus 10:00 and 10:30
        assert len(data["slots"]) == 14
        starts = [slot["start_time"][:16] for slot in data["slots"]]
        assert "2030-01-07T09:30" in starts
        assert "2030-01-07T10:00" not in starts
        assert "2030-01-07T10:30" not in starts
        assert "2030-01-07T11:00" in starts

    def test_unknown_facility_returns_404(self, client):
        response = client.get(
            "/facilities/999999/slots",
            params={"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat()},
        )

        assert response.status_code == 404


class TestApplicationApi:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_rate_limit_returns_429(self, client, db_session):
        app.state.rate_limiter = RateLimiter(max_requests=2, window_seconds=60)
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)

        statuses = [
            client.post(
                "/reservations",
                json=booking_body(facility, at(MONDAY, 9 + i), at(MONDAY, 10 + i)),
                headers=auth_headers(member),
            ).status_code
            for i in range(3)
        ]

        assert statuses == [201, 201, 429]

    def test_outbox_worker_delivers_queued_notifications(self, client, db_session):
        member = create_member(db_session)
        facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
        client.post(
            "/reservations",
            json=booking_body(facility, at(MONDAY, 10), at(MONDAY, 11)),
            headers=auth_headers(member),
        )

        class Collector:
            def __init__(self):
                self.sent = []

            def send(self, message):
                self.sent.append(message)

        collector = Collector()
        stats = OutboxWorker(sender=collector).run_once()

        assert stats.delivered == 1
        assert collector.sent[0].to == member.email
        assert collector.sent[0].subject == f"Reservation confirmed: {facility.name}"
        db_session.expire_all()
        assert db_session.query(OutboxEntry).count() == 0


def test_bookings_in_the_past_are_rejected(client, db_session):
    member = create_member(db_session)
    facility = create_facility(db_session, advance_booking_days=WIDE_HORIZON_DAYS)
    # Ten years before the reference Monday, and also before the real clock
    start = at(MONDAY, 9) - timedelta(weeks=520)

    response = client.post(
        "/reservations",
        json=booking_body(facility, start, start + timedelta(hours=1)),
        headers=auth_headers(member),
    )

    assert response.status_code == 400
    assert response.json()["type"] == "in_the_past"
