"""
Flight-related Pydantic models for the air-cargo booking service.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, computed_field

from .booking import PaginationModel


class FlightModel(BaseModel):
    """Scheduled flight leg. Timestamps are naive UTC."""
    model_config = ConfigDict(from_attributes=True)

    flight_id: str = Field(..., max_length=32, description="Flight number + departure date")
    flight_number: str = Field(..., max_length=10, description="Flight number")
    airline_name: str = Field(..., max_length=100, description="Operating airline")
    departure_datetime: datetime = Field(..., description="Scheduled departure (UTC)")
    arrival_datetime: datetime = Field(..., description="Scheduled arrival (UTC)")
    origin: str = Field(..., min_length=3, max_length=3, description="Origin airport code")
    destination: str = Field(..., min_length=3, max_length=3, description="Destination airport code")

    @computed_field
    @property
    def duration_minutes(self) -> int:
        return int((self.arrival_datetime - self.departure_datetime).total_seconds() // 60)


class AirlineCountModel(BaseModel):
    airline_name: str
    flight_count: int
    origins_served: int = 0
    destinations_served: int = 0


class RouteFrequencyModel(BaseModel):
    origin: str
    destination: str
    flight_count: int
    airlines_count: int = 0
    avg_duration_minutes: float


class HubActivityModel(BaseModel):
    airport: str
    departures: int
    arrivals: int
    total_flights: int


class FlightStatisticsModel(BaseModel):
    """Aggregate figures over upcoming flights."""
    total_upcoming_flights: int = 0
    top_airlines: List[AirlineCountModel] = Field(default_factory=list)
    popular_routes: List[RouteFrequencyModel] = Field(default_factory=list)
    major_hubs: List[HubActivityModel] = Field(default_factory=list)


class FlightPageModel(BaseModel):
    flights: List[FlightModel]
    pagination: PaginationModel


class FlightAddOutcomeModel(BaseModel):
    """Per-flight result of a bulk insert."""
    flight_id: Optional[str] = None
    flight_number: str
    success: bool
    error: Optional[str] = None
