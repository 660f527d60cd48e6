"""
Flight and route search endpoints.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..exceptions import NotFoundError
from ..services.flight_catalog import FlightCatalog
from ..services.route_finder import RouteFinder
from .dependencies import get_flight_catalog, get_route_finder, get_user_id
from .schemas import FlightCreateRequest

router = APIRouter(prefix="/flights", tags=["flights"])


@router.get("/routes")
async def find_routes(
    origin: str = Query(..., min_length=3, max_length=3),
    destination: str = Query(..., min_length=3, max_length=3),
    departure_date: date = Query(...),
    finder: RouteFinder = Depends(get_route_finder),
):
    result = await finder.find_routes(origin, destination, departure_date)
    return {"success": True, "data": result.model_dump(mode="json")}


@router.get("/admin/stats")
async def flight_statistics(
    user_id: int = Depends(get_user_id),
    catalog: FlightCatalog = Depends(get_flight_catalog),
):
    stats = await catalog.get_flight_statistics()
    return {"success": True, "data": stats.model_dump(mode="json")}


@router.get("")
async def search_flights(
    origin: Optional[str] = Query(default=None, min_length=3, max_length=3),
    destination: Optional[str] = Query(default=None, min_length=3, max_length=3),
    airline_name: Optional[str] = Query(default=None, max_length=100),
    flight_number: Optional[str] = Query(default=None, max_length=10),
    departure_date_from: Optional[date] = Query(default=None),
    departure_date_to: Optional[date] = Query(default=None),
    include_past: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    catalog: FlightCatalog = Depends(get_flight_catalog),
):
    result = await catalog.search_flights(
        origin=origin,
        destination=destination,
        airline_name=airline_name,
        flight_number=flight_number,
        departure_date_from=departure_date_from,
        departure_date_to=departure_date_to,
        include_past=include_past,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": result.model_dump(mode="json")}


@router.get("/{flight_id}")
async def get_flight(
    flight_id: str,
    catalog: FlightCatalog = Depends(get_flight_catalog),
):
    flight = await catalog.get_flight(flight_id)
    if flight is None:
        raise NotFoundError(f"Flight {flight_id} not found")
    return {"success": True, "data": flight.model_dump(mode="json")}


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_flight(
    body: FlightCreateRequest,
    user_id: int = Depends(get_user_id),
    catalog: FlightCatalog = Depends(get_flight_catalog),
):
    flight = await catalog.add_flight(**body.model_dump())
    return {"success": True, "data": flight.model_dump(mode="json")}
