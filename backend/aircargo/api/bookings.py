"""
Booking endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..exceptions import DuplicateReferenceError, NotFoundError
from ..models.enums import BookingStatus
from ..services.booking_manager import BookingLifecycleManager
from .dependencies import get_booking_manager, get_user_id
from .schemas import BookingCreateRequest, BulkStatusRequest, StatusUpdateRequest

logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 3

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreateRequest,
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    for attempt in range(1, CREATE_ATTEMPTS + 1):
        try:
            booking = await manager.create_booking(
                origin=body.origin,
                destination=body.destination,
                pieces=body.pieces,
                weight_kg=body.weight_kg,
                user_id=user_id,
                flight_ids=body.flight_ids,
            )
            return {"success": True, "data": booking.model_dump(mode="json")}
        except DuplicateReferenceError:
            if attempt == CREATE_ATTEMPTS:
                raise
            logger.warning(f"Reference collision on attempt {attempt}, retrying")


@router.get("")
async def list_my_bookings(
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    bookings = await manager.list_bookings_for_user(user_id)
    return {"success": True, "data": [b.model_dump(mode="json") for b in bookings]}


@router.get("/admin/stats")
async def booking_stats(
    days: int = Query(default=30, ge=1, le=365),
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    stats = await manager.get_booking_stats(days)
    return {"success": True, "data": stats.model_dump(mode="json")}


@router.get("/admin/search")
async def search_bookings(
    origin: Optional[str] = Query(default=None, min_length=3, max_length=3),
    destination: Optional[str] = Query(default=None, min_length=3, max_length=3),
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    result = await manager.search_bookings(
        origin=origin.upper() if origin else None,
        destination=destination.upper() if destination else None,
        status=booking_status,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": result.model_dump(mode="json")}


@router.post("/bulk-status")
async def bulk_update_status(
    body: BulkStatusRequest,
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    outcomes = await manager.bulk_update_status(body.ref_ids, body.status, body.location)
    return {
        "success": True,
        "data": {
            "results": [o.model_dump(mode="json") for o in outcomes],
            "succeeded": sum(1 for o in outcomes if o.success),
            "failed": sum(1 for o in outcomes if not o.success),
        },
    }


@router.get("/{ref_id}")
async def get_booking(
    ref_id: str,
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    booking = await manager.get_booking_history(ref_id)
    if booking is None:
        raise NotFoundError(f"Booking {ref_id} not found")
    if booking.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return {"success": True, "data": booking.model_dump(mode="json")}


@router.patch("/{ref_id}/status")
async def update_booking_status(
    ref_id: str,
    body: StatusUpdateRequest,
    user_id: int = Depends(get_user_id),
    manager: BookingLifecycleManager = Depends(get_booking_manager),
):
    booking = await manager.update_status(
        ref_id,
        body.status,
        location=body.location,
        flight_id=body.flight_id,
        description=body.description,
    )
    if booking is None:
        raise NotFoundError(f"Booking {ref_id} not found")
    return {"success": True, "data": booking.model_dump(mode="json")}
