"""
Route finder for direct and one-stop transit itineraries.

Results for an (origin, destination, day) triple are computed together and
cached as a single entry under ``routes:{origin}:{destination}:{YYYY-MM-DD}``.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Union

from pydantic import ValidationError as ModelValidationError
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import aliased

from ..cache.manager import CacheManager
from ..cache.utils import TTLPreset, key_manager
from ..database.config import DatabaseConfig
from ..database.models import Flight
from ..exceptions import ValidationError, StoreUnavailableError
from ..models.route import (
    DirectRouteModel,
    RouteSearchResultModel,
    RouteSegmentModel,
    TransitRouteModel,
)
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def _segment(flight: Flight, order: int) -> RouteSegmentModel:
    return RouteSegmentModel(
        segment_order=order,
        flight_id=flight.flight_id,
        flight_number=flight.flight_number,
        airline_name=flight.airline_name,
        origin=flight.origin,
        destination=flight.destination,
        departure_datetime=flight.departure_datetime,
        arrival_datetime=flight.arrival_datetime,
    )


def parse_departure_date(value: Union[date, str]) -> date:
    """Accept a date or an ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid departure date: {value!r}, expected YYYY-MM-DD") from e


class RouteFinder:
    """
    Direct and one-stop route search with feasibility constraints.

    A transit pair (leg1, leg2) qualifies when leg1 departs on the queried
    day (and not in the past), leg2 departs strictly after leg1 arrives, the
    layover is within [min_layover_minutes, max_layover_minutes] and leg2
    departs within ``max_connection_hours`` of leg1's departure.
    """

    def __init__(
        self,
        database: DatabaseConfig,
        cache_manager: CacheManager,
        route_cache_ttl: int = int(TTLPreset.ROUTE_SEARCH),
        min_layover_minutes: int = 60,
        max_layover_minutes: int = 1440,
        max_connection_hours: int = 24,
        result_limit: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.cache = cache_manager
        self.route_cache_ttl = route_cache_ttl
        self.min_layover_minutes = min_layover_minutes
        self.max_layover_minutes = max_layover_minutes
        self.max_connection_hours = max_connection_hours
        self.result_limit = result_limit
        self.clock = clock

    async def find_routes(
        self,
        origin: str,
        destination: str,
        departure_date: Union[date, str],
    ) -> RouteSearchResultModel:
        """
        Cache-first search for direct and one-stop routes on a day.

        Raises:
            ValidationError: Same origin and destination, or malformed date
        """
        origin = origin.upper()
        destination = destination.upper()
        if origin == destination:
            raise ValidationError("Origin and destination must be different")

        day = parse_departure_date(departure_date)
        cache_key = key_manager.routes_key(origin, destination, day)

        cached = await self.cache.get(cache_key)
        if isinstance(cached, dict):
            try:
                result = RouteSearchResultModel.model_validate(cached)
                result.cached = True
                return result
            except ModelValidationError as e:
                logger.warning(f"Discarding unreadable cache entry {cache_key}: {e}")
                await self.cache.delete(cache_key)

        day_start = datetime.combine(day, datetime.min.time())
        day_end = day_start + timedelta(days=1)
        earliest = max(day_start, self.clock())

        try:
            with self.database.get_session_context() as session:
                direct = self._find_direct(session, origin, destination, earliest, day_end)
                transit = self._find_transit(session, origin, destination, earliest, day_end)
        except DBAPIError as e:
            logger.error(f"Route search failed for {cache_key}: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e.orig or e}") from e

        result = RouteSearchResultModel(
            origin=origin,
            destination=destination,
            departure_date=day.isoformat(),
            direct=direct,
            transit=transit,
        )
        await self.cache.set(
            cache_key, result.model_dump(mode="json", exclude={"cached"}), ttl=self.route_cache_ttl
        )

        logger.debug(
            f"Routes {origin}->{destination} on {day}: {len(direct)} direct, {len(transit)} transit"
        )
        result.cached = False
        return result

    def _find_direct(self, session, origin: str, destination: str,
                     earliest: datetime, day_end: datetime) -> List[DirectRouteModel]:
        flights = session.scalars(
            select(Flight)
            .where(
                Flight.origin == origin,
                Flight.destination == destination,
                Flight.departure_datetime >= earliest,
                Flight.departure_datetime < day_end,
            )
            .order_by(Flight.departure_datetime)
        ).all()

        return [
            DirectRouteModel(
                total_duration_minutes=_minutes(f.arrival_datetime - f.departure_datetime),
                segments=[_segment(f, 1)],
            )
            for f in flights
        ]

    def _find_transit(self, session, origin: str, destination: str,
                      earliest: datetime, day_end: datetime) -> List[TransitRouteModel]:
        first = aliased(Flight)
        second = aliased(Flight)
        connection_window = timedelta(hours=self.max_connection_hours)

        # Coarse filter in SQL; exact per-pair windows are checked below
        pairs = session.execute(
            select(first, second)
            .join(second, first.destination == second.origin)
            .where(
                first.origin == origin,
                second.destination == destination,
                first.destination != origin,
                first.destination != destination,
                first.departure_datetime >= earliest,
                first.departure_datetime < day_end,
                second.departure_datetime > first.arrival_datetime,
                second.departure_datetime <= day_end + connection_window,
            )
        ).all()

        candidates = []
        for leg1, leg2 in pairs:
            if leg2.departure_datetime > leg1.departure_datetime + connection_window:
                continue
            layover = _minutes(leg2.departure_datetime - leg1.arrival_datetime)
            if not self.min_layover_minutes <= layover <= self.max_layover_minutes:
                continue
            total = _minutes(leg2.arrival_datetime - leg1.departure_datetime)
            candidates.append((total, leg1.departure_datetime, layover, leg1, leg2))

        candidates.sort(key=lambda c: (c[0], c[1]))

        return [
            TransitRouteModel(
                transit_hub=leg1.destination,
                layover_minutes=layover,
                total_duration_minutes=total,
                segments=[_segment(leg1, 1), _segment(leg2, 2)],
            )
            for total, _, layover, leg1, leg2 in candidates[:self.result_limit]
        ]
