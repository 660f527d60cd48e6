"""
Pydantic models for the air-cargo booking service.
"""

from .enums import BookingStatus, RouteType, BusinessEvent
from .booking import (
    BookingFlightModel,
    TimelineEventModel,
    BookingSummaryModel,
    BookingModel,
    BulkUpdateOutcomeModel,
    StatusBreakdownModel,
    BookingStatsModel,
    PaginationModel,
    BookingPageModel,
)
from .flight import (
    FlightModel,
    AirlineCountModel,
    RouteFrequencyModel,
    HubActivityModel,
    FlightStatisticsModel,
    FlightPageModel,
    FlightAddOutcomeModel,
)
from .route import (
    RouteSegmentModel,
    DirectRouteModel,
    TransitRouteModel,
    RouteSearchResultModel,
)

__all__ = [
    # Enums
    "BookingStatus",
    "RouteType",
    "BusinessEvent",

    # Booking models
    "BookingFlightModel",
    "TimelineEventModel",
    "BookingSummaryModel",
    "BookingModel",
    "BulkUpdateOutcomeModel",
    "StatusBreakdownModel",
    "BookingStatsModel",
    "PaginationModel",
    "BookingPageModel",

    # Flight models
    "FlightModel",
    "AirlineCountModel",
    "RouteFrequencyModel",
    "HubActivityModel",
    "FlightStatisticsModel",
    "FlightPageModel",
    "FlightAddOutcomeModel",

    # Route models
    "RouteSegmentModel",
    "DirectRouteModel",
    "TransitRouteModel",
    "RouteSearchResultModel",
]
