"""
Column types shared by the models.

UTCDateTime stores timezone-aware UTC values on every backend. PostgreSQL
keeps the offset itself; SQLite drops tzinfo on round-trip, so values are
normalized to UTC on the way in and re-tagged as UTC on the way out.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp, always UTC in Python."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            # Naive values are taken as UTC (the storage convention)
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")
