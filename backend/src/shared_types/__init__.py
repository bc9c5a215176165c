"""
Shared type definitions for the reservation backend.

This module contains dataclasses and types that are used across multiple services.
"""

from shared_types.reservations import (
    AvailabilityResult,
    CancellationResult,
    OutboxRunStats,
    ReservationRequest,
    ReservationResult,
)

__all__ = [
    "AvailabilityResult",
    "CancellationResult",
    "OutboxRunStats",
    "ReservationRequest",
    "ReservationResult",
]
