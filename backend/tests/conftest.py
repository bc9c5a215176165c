"""
Test configuration and shared fixtures for the reservation test suite.

Runs against a temporary SQLite file by default; set TEST_DATABASE_URL to a
PostgreSQL URL to exercise real row locks. The schema is built once per
session through the Alembic migrations, and every table is emptied after
each test. Tests commit for real because the arbiter owns its transactions
and the concurrency tests need several connections.
"""

import itertools
import os
import tempfile
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Generator, Iterable, Optional, Tuple

import pytest

_TEST_DB_FILE = os.path.join(tempfile.gettempdir(), f"reservations_test_{os.getpid()}.db")

# Test database URL (must be set before core.config is imported)
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", f"sqlite:///{_TEST_DB_FILE}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["ENABLE_BACKGROUND_JOBS"] = "false"
os.environ["APP_TIMEZONE"] = "UTC"

from sqlalchemy import text  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402

from core.database import Base, SessionLocal, engine  # noqa: E402
from models import (  # noqa: E402
    AvailabilityWindow,
    Facility,
    FacilityClosure,
    Member,
    Participant,
    Program,
    ProgramSession,
    Reservation,
)

BACKEND_DIR = Path(__file__).resolve().parent.parent

# Monday 2030-01-07 is the reference booking day; "now" is the Tuesday before
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)

_counter = itertools.count(1)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC datetime on ``day`` (the test suite runs with APP_TIMEZONE=UTC)."""
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """
    Build the test database schema using Alembic migrations.

    Strategy: drop everything, then run all migrations from scratch
    (base → head), which also checks the baseline migration itself.
    """
    alembic_cfg = Config(str(BACKEND_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(BACKEND_DIR / "alembic"))

    with engine.begin() as connection:
        connection.execute(text("DROP TABLE IF EXISTS alembic_version"))
        Base.metadata.drop_all(bind=connection)

    with engine.begin() as connection:
        alembic_cfg.attributes["connection"] = connection
        command.upgrade(alembic_cfg, "head")

    yield

    # Cleanup: drop all tables after test session
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if TEST_DATABASE_URL.startswith("sqlite") and os.path.exists(_TEST_DB_FILE):
        os.remove(_TEST_DB_FILE)


@pytest.fixture(autouse=True)
def clean_tables():
    """Empty every table after each test."""
    yield
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Provide a database session for a test."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def session_factory():
    """
    Factory for extra sessions (one per simulated client thread).

    Every session handed out is closed at teardown.
    """
    sessions = []

    def make() -> Session:
        session = SessionLocal()
        sessions.append(session)
        return session

    yield make

    for session in sessions:
        session.close()


# Helper functions for creating test data

def create_member(db_session: Session, full_name: str = "Test Member", email: Optional[str] = None,
                  is_active: bool = True) -> Member:
    """Create and commit a member with a unique email."""
    member = Member(
        email=email or f"member{next(_counter)}@example.com",
        full_name=full_name,
        is_active=is_active,
    )
    db_session.add(member)
    db_session.commit()
    return member


def create_participant(db_session: Session, member: Member, full_name: Optional[str] = None,
                       is_active: bool = True) -> Participant:
    """Create and commit a participant owned by ``member``."""
    participant = Participant(
        member_id=member.id,
        full_name=full_name or member.full_name,
        is_active=is_active,
    )
    db_session.add(participant)
    db_session.commit()
    return participant


def create_facility(
    db_session: Session,
    windows: Iterable[Tuple[int, time, time]] = ((0, time(9, 0), time(17, 0)),),
    **rules
) -> Facility:
    """
    Create and commit a facility with weekly windows.

    Args:
        db_session: Database session
        windows: (day_of_week, start, end) tuples; defaults to Monday 09:00-17:00
        **rules: Facility column overrides (buffer_minutes, is_active, ...)
    """
    n = next(_counter)
    values = {
        "slug": f"facility-{n}",
        "name": f"Court {n}",
        "location": "Main Hall",
        "min_booking_minutes": 30,
        "max_booking_minutes": 180,
        "buffer_minutes": 0,
        "advance_booking_days": 30,
        "cancellation_cutoff_hours": 24,
    }
    values.update(rules)
    facility = Facility(**values)
    db_session.add(facility)
    db_session.flush()

    for day_of_week, start, end in windows:
        db_session.add(AvailabilityWindow(
            facility_id=facility.id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
        ))
    db_session.commit()
    return facility


def create_closure(db_session: Session, facility: Facility, starts_at: datetime, ends_at: datetime,
                   reason: str = "Maintenance") -> FacilityClosure:
    closure = FacilityClosure(facility_id=facility.id, starts_at=starts_at, ends_at=ends_at, reason=reason)
    db_session.add(closure)
    db_session.commit()
    return closure


def create_program(db_session: Session, capacity: int = 2, **fields) -> Program:
    """Create and commit an active program."""
    n = next(_counter)
    values = {
        "slug": f"program-{n}",
        "title": f"Yoga Basics {n}",
        "program_type": "program",
        "location": "Studio B",
        "capacity": capacity,
        "starts_at": at(MONDAY, 18),
        "ends_at": at(MONDAY, 19),
    }
    values.update(fields)
    program = Program(**values)
    db_session.add(program)
    db_session.commit()
    return program


def create_session(db_session: Session, program: Program, starts_at: Optional[datetime] = None,
                   capacity_override: Optional[int] = None, is_active: bool = True) -> ProgramSession:
    """Create and commit a program session (one hour long)."""
    starts_at = starts_at or at(MONDAY, 18)
    session = ProgramSession(
        program_id=program.id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(hours=1),
        capacity_override=capacity_override,
        is_active=is_active,
    )
    db_session.add(session)
    db_session.commit()
    return session


def create_booking(db_session: Session, facility: Facility, member: Member, start: datetime, end: datetime,
                   status: str = "confirmed") -> Reservation:
    """Insert a facility booking directly, bypassing the arbiter."""
    booking = Reservation(
        kind="facility",
        facility_id=facility.id,
        requester_id=member.id,
        start_time=start,
        end_time=end,
        status=status,
    )
    db_session.add(booking)
    db_session.commit()
    return booking
