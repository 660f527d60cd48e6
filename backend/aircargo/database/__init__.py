"""
Database package for the air-cargo booking service.

This package provides SQLAlchemy models and database configuration.
"""

from .models import (
    Base,
    Flight,
    Booking,
    BookingFlight,
    TimelineEvent,
    create_all_tables,
    drop_all_tables
)

from .config import DatabaseConfig

__all__ = [
    # Models
    'Base',
    'Flight',
    'Booking',
    'BookingFlight',
    'TimelineEvent',
    'create_all_tables',
    'drop_all_tables',

    # Configuration
    'DatabaseConfig',
]
