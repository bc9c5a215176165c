"""
Services package for shared business logic.

This package contains service classes that encapsulate the reservation
rules shared across API endpoints and background jobs. Import services from
their modules directly (e.g. ``from services.reservation_service import
ReservationService``).
"""
