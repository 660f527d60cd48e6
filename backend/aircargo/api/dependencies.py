"""
FastAPI dependencies resolving services from ``app.state`` and the caller identity.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ..services.booking_manager import BookingLifecycleManager
from ..services.flight_catalog import FlightCatalog
from ..services.route_finder import RouteFinder


def get_booking_manager(request: Request) -> BookingLifecycleManager:
    return request.app.state.booking_manager


def get_route_finder(request: Request) -> RouteFinder:
    return request.app.state.route_finder


def get_flight_catalog(request: Request) -> FlightCatalog:
    return request.app.state.flight_catalog


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """Caller identity as forwarded by the authentication gateway."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header")
    if user_id < 1:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header")
    return user_id
