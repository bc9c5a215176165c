"""initial_reservation_schema

Revision ID: 202610010000
Revises:
Create Date: 2026-10-01 00:00:00.000000

Baseline migration for the reservation backend. Creates every table from the
current model definitions, including the partial unique indexes that back
the reservation invariants (one confirmed booking per facility slot, one
active registration per participant and scope, unique waitlist positions).
"""
from typing import Sequence, Union
import sys
import os

# Add src directory to path to import models
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from alembic import op

# Import all models to ensure they're registered with Base.metadata
from core.database import Base
import models  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '202610010000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create all reservation tables and the foreign key indexes the models
    do not declare themselves.
    """
    # Step 1: Create all tables from models
    # Partial unique indexes are declared on the models for both PostgreSQL and SQLite
    Base.metadata.create_all(bind=op.get_bind())

    # Step 2: Foreign key indexes used by ownership and cleanup queries
    op.create_index(
        'idx_reservations_participant',
        'reservations',
        ['participant_id']
    )

    op.create_index(
        'idx_waitlist_entries_participant',
        'waitlist_entries',
        ['participant_id']
    )


def downgrade() -> None:
    """
    Drop all reservation tables.
    """
    # Drop indexes first (before dropping tables)
    op.drop_index('idx_waitlist_entries_participant', table_name='waitlist_entries')
    op.drop_index('idx_reservations_participant', table_name='reservations')

    # Drop all tables from models
    Base.metadata.drop_all(bind=op.get_bind())
