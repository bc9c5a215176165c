"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_ERROR_MESSAGE_LENGTH = 1000  # Truncation limit for outbox last_error

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes
DB_LOCK_TIMEOUT_MS = 5000  # PostgreSQL lock_timeout for arbitration row locks
SQLITE_BUSY_TIMEOUT_SECONDS = 30

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Facility booking defaults (used when a facility row leaves them unset)
DEFAULT_MIN_BOOKING_MINUTES = 30
DEFAULT_MAX_BOOKING_MINUTES = 180
DEFAULT_BUFFER_MINUTES = 0
DEFAULT_ADVANCE_BOOKING_DAYS = 30
DEFAULT_CANCELLATION_CUTOFF_HOURS = 24

# Slot listing
MAX_SLOT_QUERY_DAYS = 31  # Upper bound on the date range of a slot query

# Arbitration
ARBITRATION_MAX_ATTEMPTS = 3  # Fresh decisions attempted before surfacing Busy
KEYED_LOCK_TIMEOUT_SECONDS = 10.0  # In-process wait before a request is reported Busy

# Notification outbox
OUTBOX_MAX_ATTEMPTS = 5
OUTBOX_BATCH_SIZE = 100
OUTBOX_POLL_INTERVAL_SECONDS = 30
OUTBOX_RETRY_BASE_SECONDS = 60  # Backoff: base * 2^(attempts - 1)
OUTBOX_WORKER_MAX_INSTANCES = 1

# Reminder sweep
REMINDER_LEAD_HOURS = (72, 24)
REMINDER_INTERVAL_MINUTES = 60
REMINDER_WINDOW_TOLERANCE_MINUTES = 60  # ±60 minutes around now + lead
# Window width (120 min) exceeds the interval between runs (60 min), so a
# reservation is always inside at least one sweep window per lead time.
# The ReservationReminder dedup row keeps the overlap from double-queuing.
REMINDER_SCHEDULER_MAX_INSTANCES = 1  # Prevent overlapping scheduler runs

# SMTP
SMTP_TIMEOUT_SECONDS = 10
