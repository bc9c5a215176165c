"""
Utility modules for the reservation backend.

This package contains shared helpers used across the application, such as
timezone-aware datetime handling.
"""
