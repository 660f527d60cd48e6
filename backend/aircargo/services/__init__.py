"""
Services for the air-cargo booking core.

This module contains the booking lifecycle manager, the distributed lock
manager that serializes booking updates, the route finder, the flight
catalog and the business event logger.
"""

from .lock_manager import DistributedLockManager, LockInfo
from .event_logger import BusinessEventLogger
from .booking_manager import BookingLifecycleManager, generate_reference_code
from .route_finder import RouteFinder
from .flight_catalog import FlightCatalog

__all__ = [
    "DistributedLockManager",
    "LockInfo",
    "BusinessEventLogger",
    "BookingLifecycleManager",
    "generate_reference_code",
    "RouteFinder",
    "FlightCatalog",
]
