"""
Request bodies for the HTTP API.

Airport codes are upper-cased and must be exactly three letters.
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.enums import BookingStatus
from ..utils.clock import to_naive_utc

AIRPORT_CODE = re.compile(r"^[A-Z]{3}$")


def _airport_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip().upper()
    if not AIRPORT_CODE.match(value):
        raise ValueError("Airport code must be exactly 3 letters")
    return value


def _transition_status(value: Any) -> BookingStatus:
    try:
        status = BookingStatus(str(value).upper())
    except ValueError as e:
        raise ValueError(f"Unknown status: {value}") from e
    if status not in BookingStatus.transition_targets():
        raise ValueError("Status must be one of DEPARTED, ARRIVED, DELIVERED, CANCELLED")
    return status


class BookingCreateRequest(BaseModel):
    origin: str
    destination: str
    pieces: int = Field(..., ge=1)
    weight_kg: float = Field(..., gt=0)
    flight_ids: List[str] = Field(default_factory=list)

    @field_validator("origin", "destination")
    @classmethod
    def normalize_codes(cls, v: str) -> str:
        return _airport_code(v)

    @model_validator(mode="after")
    def check_route(self) -> "BookingCreateRequest":
        if self.origin == self.destination:
            raise ValueError("Origin and destination cannot be the same")
        return self


class StatusUpdateRequest(BaseModel):
    status: BookingStatus
    location: Optional[str] = None
    flight_id: Optional[str] = Field(default=None, max_length=32)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status", mode="before")
    @classmethod
    def check_status(cls, v: Any) -> BookingStatus:
        return _transition_status(v)

    @field_validator("location")
    @classmethod
    def normalize_location(cls, v: Optional[str]) -> Optional[str]:
        return _airport_code(v)


class BulkStatusRequest(BaseModel):
    ref_ids: List[str] = Field(..., min_length=1, max_length=100)
    status: BookingStatus
    location: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def check_status(cls, v: Any) -> BookingStatus:
        return _transition_status(v)

    @field_validator("location")
    @classmethod
    def normalize_location(cls, v: Optional[str]) -> Optional[str]:
        return _airport_code(v)


class FlightCreateRequest(BaseModel):
    flight_id: Optional[str] = Field(default=None, max_length=32)
    flight_number: str = Field(..., min_length=2, max_length=10)
    airline_name: str = Field(..., min_length=1, max_length=100)
    departure_datetime: datetime
    arrival_datetime: datetime
    origin: str
    destination: str

    @field_validator("origin", "destination")
    @classmethod
    def normalize_codes(cls, v: str) -> str:
        return _airport_code(v)

    @field_validator("departure_datetime", "arrival_datetime")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_schedule(self) -> "FlightCreateRequest":
        if self.origin == self.destination:
            raise ValueError("Origin and destination cannot be the same")
        if self.arrival_datetime <= self.departure_datetime:
            raise ValueError("Arrival must be after departure")
        return self
