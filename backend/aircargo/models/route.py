"""
Route search result models.

A direct route is a single flight; a transit route is exactly two legs
joined at a hub, each leg tagged with its position in the itinerary.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from .enums import RouteType


class RouteSegmentModel(BaseModel):
    """One flight within a route, with its 1-based position."""
    model_config = ConfigDict(from_attributes=True)

    segment_order: int = Field(..., ge=1)
    flight_id: str
    flight_number: str
    airline_name: str
    origin: str
    destination: str
    departure_datetime: datetime
    arrival_datetime: datetime


class DirectRouteModel(BaseModel):
    route_type: RouteType = RouteType.DIRECT
    stops: int = 0
    total_duration_minutes: int
    segments: List[RouteSegmentModel]


class TransitRouteModel(BaseModel):
    route_type: RouteType = RouteType.TRANSIT
    stops: int = 1
    transit_hub: str
    layover_minutes: int
    total_duration_minutes: int
    segments: List[RouteSegmentModel]


class RouteSearchResultModel(BaseModel):
    """Combined direct and transit result, cached as one unit."""
    origin: str
    destination: str
    departure_date: str = Field(..., description="Queried day, YYYY-MM-DD")
    direct: List[DirectRouteModel] = Field(default_factory=list)
    transit: List[TransitRouteModel] = Field(default_factory=list)
    cached: Optional[bool] = Field(default=None, description="Served from cache")
