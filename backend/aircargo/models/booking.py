"""
Booking-related Pydantic models.

BookingModel is the hydrated aggregate (booking + ordered legs + ordered
timeline) that is returned to callers and stored in the cache.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from .enums import BookingStatus


class BookingFlightModel(BaseModel):
    """Itinerary leg with the flight schedule flattened in."""
    model_config = ConfigDict(from_attributes=True)

    flight_id: str
    sequence_order: int = Field(..., ge=1)
    flight_number: Optional[str] = None
    airline_name: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_datetime: Optional[datetime] = None
    arrival_datetime: Optional[datetime] = None


class TimelineEventModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: BookingStatus
    location: Optional[str] = None
    flight_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class BookingSummaryModel(BaseModel):
    """Booking row without legs or timeline, used in listings."""
    model_config = ConfigDict(from_attributes=True)

    ref_id: str
    origin: str
    destination: str
    pieces: int = Field(..., ge=1)
    weight_kg: float = Field(..., gt=0)
    status: BookingStatus
    version: int = Field(..., ge=1)
    user_id: int
    created_at: datetime
    updated_at: datetime


class BookingModel(BookingSummaryModel):
    """Fully hydrated booking aggregate."""

    flights: List[BookingFlightModel] = Field(default_factory=list)
    timeline: List[TimelineEventModel] = Field(default_factory=list)


class BulkUpdateOutcomeModel(BaseModel):
    """Per-reference result of a bulk status update."""
    ref_id: str
    success: bool
    status: Optional[BookingStatus] = None
    version: Optional[int] = None
    error_category: Optional[str] = None
    error: Optional[str] = None


class StatusBreakdownModel(BaseModel):
    count: int
    avg_weight_kg: float


class BookingStatsModel(BaseModel):
    """Booking figures over a trailing window of days."""
    period_days: int
    total_bookings: int = 0
    total_pieces: int = 0
    avg_weight_kg: float = 0.0
    by_status: Dict[str, StatusBreakdownModel] = Field(default_factory=dict)


class PaginationModel(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class BookingPageModel(BaseModel):
    bookings: List[BookingSummaryModel]
    pagination: PaginationModel
