"""
Flight catalog: lookups, paginated search, admin inserts and schedule statistics.

Adding flights changes what the route finder would return, so inserts
invalidate the cached route searches for the affected airport pairs.
"""

import logging
import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select, func, distinct
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..cache.manager import CacheManager
from ..cache.utils import key_manager
from ..database.config import DatabaseConfig
from ..database.models import Flight
from ..exceptions import ValidationError, StoreUnavailableError
from ..models.booking import PaginationModel
from ..models.enums import BusinessEvent
from ..models.flight import (
    AirlineCountModel,
    FlightAddOutcomeModel,
    FlightModel,
    FlightPageModel,
    FlightStatisticsModel,
    HubActivityModel,
    RouteFrequencyModel,
)
from ..utils.clock import utcnow, to_naive_utc
from .event_logger import BusinessEventLogger
from .route_finder import parse_departure_date

logger = logging.getLogger(__name__)

ROUTE_CACHE_INVALIDATION_DAYS = 7


class FlightCatalog:
    """Read and admin operations over the flight schedule."""

    def __init__(
        self,
        database: DatabaseConfig,
        cache_manager: CacheManager,
        event_logger: Optional[BusinessEventLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.cache = cache_manager
        self.event_logger = event_logger or BusinessEventLogger()
        self.clock = clock

    def _session(self):
        return self.database.get_session_context()

    async def get_flight(self, flight_id: str) -> Optional[FlightModel]:
        """Flight by id, or None."""
        try:
            with self._session() as session:
                flight = session.get(Flight, flight_id)
                return FlightModel.model_validate(flight) if flight else None
        except DBAPIError as e:
            raise StoreUnavailableError(f"Database unavailable: {e.orig or e}") from e

    async def search_flights(
        self,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        airline_name: Optional[str] = None,
        flight_number: Optional[str] = None,
        departure_date_from: Optional[Any] = None,
        departure_date_to: Optional[Any] = None,
        include_past: bool = False,
        page: int = 1,
        limit: int = 50,
    ) -> FlightPageModel:
        """
        Paginated flight search ordered by departure.

        Date bounds are whole days: ``departure_date_from`` from its start,
        ``departure_date_to`` through its end. Past flights are hidden unless
        ``include_past`` is set.
        """
        if page < 1 or limit < 1 or limit > 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")

        filters = []
        if origin:
            filters.append(Flight.origin == origin.upper())
        if destination:
            filters.append(Flight.destination == destination.upper())
        if airline_name:
            filters.append(Flight.airline_name == airline_name)
        if flight_number:
            filters.append(Flight.flight_number == flight_number)

        date_from = parse_departure_date(departure_date_from) if departure_date_from else None
        date_to = parse_departure_date(departure_date_to) if departure_date_to else None
        if date_from and date_to and date_from > date_to:
            raise ValidationError("departure_date_from must not be after departure_date_to")
        if date_from:
            filters.append(Flight.departure_datetime >= datetime.combine(date_from, datetime.min.time()))
        if date_to:
            end = datetime.combine(date_to, datetime.min.time()) + timedelta(days=1)
            filters.append(Flight.departure_datetime < end)
        if not include_past:
            filters.append(Flight.departure_datetime >= self.clock())

        try:
            with self._session() as session:
                total = session.scalar(select(func.count()).select_from(Flight).where(*filters)) or 0
                flights = session.scalars(
                    select(Flight)
                    .where(*filters)
                    .order_by(Flight.departure_datetime, Flight.flight_id)
                    .offset((page - 1) * limit)
                    .limit(limit)
                ).all()
                models = [FlightModel.model_validate(f) for f in flights]
        except DBAPIError as e:
            raise StoreUnavailableError(f"Database unavailable: {e.orig or e}") from e

        return FlightPageModel(
            flights=models,
            pagination=PaginationModel(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
        )

    @staticmethod
    def _prepare(data: Mapping[str, Any]) -> Dict[str, Any]:
        """Normalize and validate one flight definition."""
        try:
            flight_number = str(data["flight_number"]).strip().upper()
            airline_name = str(data["airline_name"]).strip()
            departure = data["departure_datetime"]
            arrival = data["arrival_datetime"]
            origin = str(data["origin"]).strip().upper()
            destination = str(data["destination"]).strip().upper()
        except KeyError as e:
            raise ValidationError(f"Missing flight field: {e.args[0]}") from e

        try:
            if isinstance(departure, str):
                departure = datetime.fromisoformat(departure)
            if isinstance(arrival, str):
                arrival = datetime.fromisoformat(arrival)
        except ValueError as e:
            raise ValidationError(f"Invalid flight timestamp: {e}") from e
        if not isinstance(departure, datetime) or not isinstance(arrival, datetime):
            raise ValidationError("Departure and arrival must be datetimes")
        departure = to_naive_utc(departure)
        arrival = to_naive_utc(arrival)

        if not flight_number or not airline_name:
            raise ValidationError("Flight number and airline name are required")
        if len(origin) != 3 or len(destination) != 3:
            raise ValidationError("Airport codes must be 3 letters")
        if origin == destination:
            raise ValidationError("Origin and destination must be different")
        if arrival <= departure:
            raise ValidationError("Arrival must be after departure")

        return {
            "flight_id": data.get("flight_id") or Flight.build_flight_id(flight_number, departure),
            "flight_number": flight_number,
            "airline_name": airline_name,
            "departure_datetime": departure,
            "arrival_datetime": arrival,
            "origin": origin,
            "destination": destination,
        }

    async def invalidate_route_cache(self, origin: str, destination: str) -> None:
        """Drop cached route searches for the pair, both directions, for the coming week."""
        today = self.clock().date()
        keys = []
        for offset in range(ROUTE_CACHE_INVALIDATION_DAYS):
            day = today + timedelta(days=offset)
            keys.append(key_manager.routes_key(origin, destination, day))
            keys.append(key_manager.routes_key(destination, origin, day))
        await self.cache.invalidate(*keys)

    async def add_flight(self, **flight_data: Any) -> FlightModel:
        """
        Insert one flight.

        Raises:
            ValidationError: Invalid schedule or a flight with this id already exists
        """
        values = self._prepare(flight_data)

        try:
            with self._session() as session:
                if session.get(Flight, values["flight_id"]) is not None:
                    raise ValidationError(f"Flight {values['flight_id']} already exists")
                flight = Flight(**values)
                session.add(flight)
                session.flush()
                model = FlightModel.model_validate(flight)
        except IntegrityError as e:
            raise ValidationError(f"Flight {values['flight_id']} already exists") from e
        except DBAPIError as e:
            raise StoreUnavailableError(f"Database unavailable: {e.orig or e}") from e

        await self.invalidate_route_cache(model.origin, model.destination)
        self.event_logger.emit(BusinessEvent.FLIGHT_ADDED, **model.model_dump(mode="json"))
        logger.info(f"Flight added: {model.flight_id}")
        return model

    async def bulk_add_flights(
        self,
        flights: Iterable[Mapping[str, Any]],
        batch_size: int = 100,
    ) -> List[FlightAddOutcomeModel]:
        """
        Insert flights in batches, one transaction per batch. A failing batch
        marks all of its flights as failed; invalid definitions fail on their own.
        """
        outcomes: List[FlightAddOutcomeModel] = []
        prepared: List[Dict[str, Any]] = []

        for data in flights:
            try:
                prepared.append(self._prepare(data))
            except (ValidationError, ValueError, TypeError) as e:
                outcomes.append(FlightAddOutcomeModel(
                    flight_id=data.get("flight_id"),
                    flight_number=str(data.get("flight_number", "")),
                    success=False,
                    error=str(e),
                ))

        pairs = set()
        for start in range(0, len(prepared), batch_size):
            batch = prepared[start:start + batch_size]
            try:
                with self._session() as session:
                    session.add_all([Flight(**values) for values in batch])
            except DBAPIError as e:
                logger.error(f"Batch flight insert failed: {e}")
                outcomes.extend(
                    FlightAddOutcomeModel(
                        flight_id=values["flight_id"], flight_number=values["flight_number"],
                        success=False, error=str(e.orig or e),
                    )
                    for values in batch
                )
                continue

            for values in batch:
                pairs.add((values["origin"], values["destination"]))
                outcomes.append(FlightAddOutcomeModel(
                    flight_id=values["flight_id"], flight_number=values["flight_number"], success=True
                ))

        for origin, destination in pairs:
            await self.invalidate_route_cache(origin, destination)

        logger.info(f"Bulk flight insert: {sum(o.success for o in outcomes)}/{len(outcomes)} added")
        return outcomes

    async def get_flight_statistics(self, top: int = 10) -> FlightStatisticsModel:
        """Upcoming flight count, busiest airlines, routes and hubs."""
        now = self.clock()
        upcoming = Flight.departure_datetime >= now

        try:
            with self._session() as session:
                total = session.scalar(select(func.count()).select_from(Flight).where(upcoming)) or 0
                airline_rows = session.execute(
                    select(
                        Flight.airline_name,
                        func.count().label("flight_count"),
                        func.count(distinct(Flight.origin)),
                        func.count(distinct(Flight.destination)),
                    )
                    .where(upcoming)
                    .group_by(Flight.airline_name)
                    .order_by(func.count().desc(), Flight.airline_name)
                    .limit(top)
                ).all()
                schedule = session.execute(
                    select(
                        Flight.origin, Flight.destination, Flight.airline_name,
                        Flight.departure_datetime, Flight.arrival_datetime,
                    ).where(upcoming)
                ).all()
        except DBAPIError as e:
            raise StoreUnavailableError(f"Database unavailable: {e.orig or e}") from e

        # Durations need timestamp arithmetic, which differs per backend
        route_counts: Counter = Counter()
        route_minutes: Dict[Tuple[str, str], int] = defaultdict(int)
        route_airlines: Dict[Tuple[str, str], set] = defaultdict(set)
        departures: Counter = Counter()
        arrivals: Counter = Counter()
        for origin, destination, airline, departure, arrival in schedule:
            pair = (origin, destination)
            route_counts[pair] += 1
            route_minutes[pair] += int((arrival - departure).total_seconds() // 60)
            route_airlines[pair].add(airline)
            departures[origin] += 1
            arrivals[destination] += 1

        popular = sorted(route_counts.items(), key=lambda item: (-item[1], item[0]))[:top * 2]
        hubs = sorted(
            set(departures) | set(arrivals),
            key=lambda code: (-(departures[code] + arrivals[code]), code),
        )[:top]

        return FlightStatisticsModel(
            total_upcoming_flights=total,
            top_airlines=[
                AirlineCountModel(
                    airline_name=name, flight_count=count,
                    origins_served=origins, destinations_served=destinations,
                )
                for name, count, origins, destinations in airline_rows
            ],
            popular_routes=[
                RouteFrequencyModel(
                    origin=origin, destination=destination, flight_count=count,
                    airlines_count=len(route_airlines[(origin, destination)]),
                    avg_duration_minutes=round(route_minutes[(origin, destination)] / count, 1),
                )
                for (origin, destination), count in popular
            ],
            major_hubs=[
                HubActivityModel(
                    airport=code, departures=departures[code], arrivals=arrivals[code],
                    total_flights=departures[code] + arrivals[code],
                )
                for code in hubs
            ],
        )
