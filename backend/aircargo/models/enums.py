"""
Enums for the air-cargo booking service.
"""

from enum import Enum


class BookingStatus(str, Enum):
    """Booking lifecycle status. BOOKED is only ever the initial state."""
    BOOKED = "BOOKED"
    DEPARTED = "DEPARTED"
    ARRIVED = "ARRIVED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @classmethod
    def transition_targets(cls):
        """Statuses a booking may be moved to after creation."""
        return [cls.DEPARTED, cls.ARRIVED, cls.DELIVERED, cls.CANCELLED]


class RouteType(str, Enum):
    """Kind of itinerary returned by the route finder."""
    DIRECT = "direct"
    TRANSIT = "transit"


class BusinessEvent(str, Enum):
    """Business event names written to the event log."""
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_STATUS_UPDATED = "BOOKING_STATUS_UPDATED"
    FLIGHT_ADDED = "FLIGHT_ADDED"
