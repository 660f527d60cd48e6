"""
Booking lifecycle manager.

Owns booking creation, guarded status transitions and the cache coherence
protocol around them:

- every status update runs under a per-booking lease from the
  DistributedLockManager (coordination) AND a version-gated conditional
  UPDATE (correctness, even if the lease expired mid-operation)
- the version bump and the timeline insert share one transaction
- cached aggregates are invalidated after commit, never updated in place;
  the next read repopulates them from the database
"""

import asyncio
import logging
import math
import secrets
import string
import time
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as ModelValidationError
from sqlalchemy import select, update, func
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from ..cache.manager import CacheManager
from ..cache.utils import TTLPreset, key_manager
from ..database.config import DatabaseConfig
from ..database.models import Booking, BookingFlight, Flight, TimelineEvent
from ..exceptions import (
    CargoError,
    ValidationError,
    NotFoundError,
    BusinessRuleViolation,
    ConcurrentModificationError,
    ResourceLockedError,
    DuplicateReferenceError,
    StoreUnavailableError,
)
from ..models.booking import (
    BookingFlightModel,
    BookingModel,
    BookingPageModel,
    BookingStatsModel,
    BookingSummaryModel,
    BulkUpdateOutcomeModel,
    PaginationModel,
    StatusBreakdownModel,
    TimelineEventModel,
)
from ..models.enums import BookingStatus, BusinessEvent
from ..utils.clock import utcnow
from .event_logger import BusinessEventLogger
from .lock_manager import DistributedLockManager

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "AC"
_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_reference_code(now_ms: Optional[int] = None) -> str:
    """
    Human-readable booking reference: ``AC`` + base-36 epoch millis + 5 random
    base-36 characters. Uniqueness is probabilistic; the unique index on
    ``bookings.ref_id`` is the actual guarantee.
    """
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"{REFERENCE_PREFIX}{_to_base36(timestamp)}{suffix}"


class BookingLifecycleManager:
    """
    Booking creation, status transitions, history reads and booking analytics.
    """

    def __init__(
        self,
        database: DatabaseConfig,
        cache_manager: CacheManager,
        lock_manager: Optional[DistributedLockManager] = None,
        event_logger: Optional[BusinessEventLogger] = None,
        booking_cache_ttl: int = int(TTLPreset.BOOKING),
        lock_ttl: int = int(TTLPreset.LOCK_LEASE),
        bulk_batch_size: int = 10,
        reference_generator: Callable[[], str] = generate_reference_code,
    ):
        self.database = database
        self.cache = cache_manager
        self.lock_manager = lock_manager or DistributedLockManager(cache_manager, default_ttl=lock_ttl)
        self.event_logger = event_logger or BusinessEventLogger()
        self.booking_cache_ttl = booking_cache_ttl
        self.lock_ttl = lock_ttl
        self.bulk_batch_size = bulk_batch_size
        self.reference_generator = reference_generator

        logger.info("BookingLifecycleManager initialized")

    @contextmanager
    def _transaction(self):
        """Session scope that surfaces driver/transport failures as StoreUnavailableError."""
        try:
            with self.database.get_session_context() as session:
                yield session
        except IntegrityError:
            raise
        except DBAPIError as e:
            logger.error(f"Database error: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e.orig or e}") from e

    async def create_booking(
        self,
        origin: str,
        destination: str,
        pieces: int,
        weight_kg: float,
        user_id: int,
        flight_ids: Optional[Sequence[str]] = None,
    ) -> BookingModel:
        """
        Create a booking with its itinerary and initial BOOKED timeline event
        in one transaction, then cache the hydrated aggregate.

        Raises:
            ValidationError: If a flight id repeats
            NotFoundError: If a flight id does not exist
            DuplicateReferenceError: If the generated reference already exists
        """
        flight_ids = list(flight_ids or [])
        if len(set(flight_ids)) != len(flight_ids):
            raise ValidationError("Flight ids must not repeat within a booking")

        ref_id = self.reference_generator()

        with self._transaction() as session:
            if flight_ids:
                found = set(session.scalars(
                    select(Flight.flight_id).where(Flight.flight_id.in_(flight_ids))
                ))
                missing = [fid for fid in flight_ids if fid not in found]
                if missing:
                    raise NotFoundError(f"Flight(s) not found: {', '.join(missing)}")

            now = utcnow()
            booking = Booking(
                ref_id=ref_id,
                origin=origin,
                destination=destination,
                pieces=pieces,
                weight_kg=weight_kg,
                status=BookingStatus.BOOKED.value,
                version=1,
                user_id=user_id,
                created_at=now,
                updated_at=now,
            )
            session.add(booking)
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateReferenceError(
                    f"Reference code {ref_id} already exists", {"ref_id": ref_id}
                ) from e

            for position, flight_id in enumerate(flight_ids, start=1):
                session.add(BookingFlight(
                    booking_id=booking.id, flight_id=flight_id, sequence_order=position
                ))

            session.add(TimelineEvent(
                booking_id=booking.id,
                event_type=BookingStatus.BOOKED.value,
                location=origin,
                flight_id=flight_ids[0] if flight_ids else None,
                description="Booking created",
                created_at=now,
            ))
            session.flush()

            aggregate = self._load_aggregate(session, booking)

        await self.cache.set(
            key_manager.booking_key(ref_id), aggregate.model_dump(mode="json"),
            ttl=self.booking_cache_ttl
        )

        self.event_logger.emit(
            BusinessEvent.BOOKING_CREATED,
            ref_id=ref_id, user_id=user_id, origin=origin, destination=destination,
            pieces=pieces, weight_kg=float(weight_kg), flights=flight_ids,
        )
        logger.info(f"Booking created: {ref_id}")
        return aggregate

    async def get_booking_history(self, ref_id: str) -> Optional[BookingModel]:
        """
        Cache-first read of the booking aggregate.

        Returns:
            BookingModel, or None if the booking does not exist
        """
        cache_key = key_manager.booking_key(ref_id)
        cached = await self.cache.get(cache_key)
        if isinstance(cached, dict):
            try:
                return BookingModel.model_validate(cached)
            except ModelValidationError as e:
                logger.warning(f"Discarding unreadable cache entry {cache_key}: {e}")
                await self.cache.delete(cache_key)

        with self._transaction() as session:
            booking = session.scalar(select(Booking).where(Booking.ref_id == ref_id))
            if booking is None:
                return None
            aggregate = self._load_aggregate(session, booking)

        await self.cache.set(cache_key, aggregate.model_dump(mode="json"), ttl=self.booking_cache_ttl)
        return aggregate

    def _load_aggregate(self, session: Session, booking: Booking) -> BookingModel:
        """Compose booking row, ordered legs and ordered timeline into one model."""
        legs = session.execute(
            select(BookingFlight, Flight)
            .outerjoin(Flight, Flight.flight_id == BookingFlight.flight_id)
            .where(BookingFlight.booking_id == booking.id)
            .order_by(BookingFlight.sequence_order)
        ).all()

        events = session.scalars(
            select(TimelineEvent)
            .where(TimelineEvent.booking_id == booking.id)
            .order_by(TimelineEvent.created_at, TimelineEvent.id)
        ).all()

        flights = []
        for leg, flight in legs:
            entry = {"flight_id": leg.flight_id, "sequence_order": leg.sequence_order}
            if flight is not None:
                entry.update(
                    flight_number=flight.flight_number,
                    airline_name=flight.airline_name,
                    origin=flight.origin,
                    destination=flight.destination,
                    departure_datetime=flight.departure_datetime,
                    arrival_datetime=flight.arrival_datetime,
                )
            flights.append(BookingFlightModel(**entry))

        summary = BookingSummaryModel.model_validate(booking)
        return BookingModel(
            **summary.model_dump(),
            flights=flights,
            timeline=[TimelineEventModel.model_validate(event) for event in events],
        )

    async def list_bookings_for_user(self, user_id: int) -> List[BookingSummaryModel]:
        """A user's bookings, newest first."""
        with self._transaction() as session:
            rows = session.scalars(
                select(Booking)
                .where(Booking.user_id == user_id)
                .order_by(Booking.created_at.desc(), Booking.id.desc())
            ).all()
            return [BookingSummaryModel.model_validate(row) for row in rows]

    async def search_bookings(
        self,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        status: Optional[Union[BookingStatus, str]] = None,
        page: int = 1,
        limit: int = 20,
    ) -> BookingPageModel:
        """Paginated booking summaries filtered by route and status."""
        if page < 1 or limit < 1 or limit > 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")

        filters = []
        if origin:
            filters.append(Booking.origin == origin)
        if destination:
            filters.append(Booking.destination == destination)
        if status:
            filters.append(Booking.status == self._coerce_status(status).value)

        with self._transaction() as session:
            total = session.scalar(select(func.count(Booking.id)).where(*filters)) or 0
            rows = session.scalars(
                select(Booking)
                .where(*filters)
                .order_by(Booking.created_at.desc(), Booking.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            bookings = [BookingSummaryModel.model_validate(row) for row in rows]

        return BookingPageModel(
            bookings=bookings,
            pagination=PaginationModel(
                page=page, limit=limit, total=total, pages=math.ceil(total / limit)
            ),
        )

    async def get_booking_stats(self, days: int = 30) -> BookingStatsModel:
        """Counts, pieces and average weights for bookings created in the last ``days``."""
        if days < 1:
            raise ValidationError("days must be >= 1")

        since = utcnow() - timedelta(days=days)
        with self._transaction() as session:
            rows = session.execute(
                select(
                    Booking.status,
                    func.count(Booking.id),
                    func.avg(Booking.weight_kg),
                    func.sum(Booking.pieces),
                )
                .where(Booking.created_at >= since)
                .group_by(Booking.status)
            ).all()
            overall_avg = session.scalar(
                select(func.avg(Booking.weight_kg)).where(Booking.created_at >= since)
            )

        stats = BookingStatsModel(period_days=days)
        for status, count, avg_weight, pieces in rows:
            stats.by_status[status] = StatusBreakdownModel(
                count=count, avg_weight_kg=round(float(avg_weight or 0), 2)
            )
            stats.total_bookings += count
            stats.total_pieces += int(pieces or 0)
        stats.avg_weight_kg = round(float(overall_avg or 0), 2)
        return stats

    @staticmethod
    def _coerce_status(status: Union[BookingStatus, str]) -> BookingStatus:
        try:
            return BookingStatus(status.upper() if isinstance(status, str) else status)
        except ValueError as e:
            raise ValidationError(f"Unknown booking status: {status}") from e

    @staticmethod
    def _check_transition(current: BookingStatus, target: BookingStatus) -> None:
        """Cancellation is refused once delivered; everything else is permitted."""
        if target == BookingStatus.CANCELLED and current == BookingStatus.DELIVERED:
            raise BusinessRuleViolation("Cannot cancel a delivered booking")

    def _read_current_state(self, session: Session, ref_id: str) -> Optional[Tuple[int, str, int]]:
        row = session.execute(
            select(Booking.id, Booking.status, Booking.version).where(Booking.ref_id == ref_id)
        ).first()
        return tuple(row) if row is not None else None

    def _apply_status_update(
        self,
        ref_id: str,
        new_status: BookingStatus,
        location: Optional[str],
        flight_id: Optional[str],
        description: Optional[str],
    ) -> Tuple[BookingStatus, int]:
        """
        Version-gated update plus timeline insert in one transaction.

        Returns:
            (previous status, new version)
        """
        with self._transaction() as session:
            state = self._read_current_state(session, ref_id)
            if state is None:
                raise NotFoundError(f"Booking {ref_id} not found")

            booking_id, current_status, current_version = state
            previous = BookingStatus(current_status)
            self._check_transition(previous, new_status)

            now = utcnow()
            result = session.execute(
                update(Booking)
                .where(Booking.ref_id == ref_id, Booking.version == current_version)
                .values(status=new_status.value, version=Booking.version + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConcurrentModificationError(
                    f"Booking {ref_id} was modified concurrently (expected version {current_version})",
                    {"ref_id": ref_id, "expected_version": current_version},
                )

            session.add(TimelineEvent(
                booking_id=booking_id,
                event_type=new_status.value,
                location=location,
                flight_id=flight_id,
                description=description or f"Status updated to {new_status.value}",
                created_at=now,
            ))

        return previous, current_version + 1

    async def update_status(
        self,
        ref_id: str,
        new_status: Union[BookingStatus, str],
        location: Optional[str] = None,
        flight_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[BookingModel]:
        """
        Move a booking to ``new_status``.

        Raises:
            ValidationError: Unknown status, or BOOKED as a target
            ResourceLockedError: Another caller holds the booking lease
            NotFoundError: No booking with this reference
            BusinessRuleViolation: Cancelling a delivered booking
            ConcurrentModificationError: Version changed between read and write
        """
        target = self._coerce_status(new_status)
        if target == BookingStatus.BOOKED:
            raise ValidationError("BOOKED is only valid as the initial status")

        async with self.lock_manager.lock_context(ref_id, self.lock_ttl) as lock:
            if lock is None:
                raise ResourceLockedError(
                    f"Booking {ref_id} is being updated by another request", {"ref_id": ref_id}
                )

            previous, version = self._apply_status_update(
                ref_id, target, location, flight_id, description
            )

            self.event_logger.emit(
                BusinessEvent.BOOKING_STATUS_UPDATED,
                ref_id=ref_id, old_status=previous.value, new_status=target.value,
                version=version, location=location, flight_id=flight_id,
            )

            await self.cache.invalidate(key_manager.booking_key(ref_id))

        logger.info(f"Booking {ref_id} status {previous.value} -> {target.value} (version {version})")
        return await self.get_booking_history(ref_id)

    async def bulk_update_status(
        self,
        ref_ids: Iterable[str],
        new_status: Union[BookingStatus, str],
        location: Optional[str] = None,
    ) -> List[BulkUpdateOutcomeModel]:
        """
        Apply update_status to each reference independently, in fixed-size
        concurrent batches. One failure never aborts the rest.
        """
        unique_ids = list(dict.fromkeys(ref_ids))
        if not unique_ids:
            raise ValidationError("At least one booking reference is required")

        target = self._coerce_status(new_status)
        if target == BookingStatus.BOOKED:
            raise ValidationError("BOOKED is only valid as the initial status")

        outcomes: List[BulkUpdateOutcomeModel] = []
        for start in range(0, len(unique_ids), self.bulk_batch_size):
            batch = unique_ids[start:start + self.bulk_batch_size]
            results = await asyncio.gather(
                *(self.update_status(ref_id, target, location) for ref_id in batch),
                return_exceptions=True,
            )

            for ref_id, result in zip(batch, results):
                if isinstance(result, CargoError):
                    outcomes.append(BulkUpdateOutcomeModel(
                        ref_id=ref_id, success=False,
                        error_category=result.category, error=result.message,
                    ))
                elif isinstance(result, Exception):
                    logger.error(f"Unexpected error updating {ref_id}: {result}")
                    outcomes.append(BulkUpdateOutcomeModel(
                        ref_id=ref_id, success=False,
                        error_category=CargoError.category, error=str(result),
                    ))
                elif isinstance(result, BaseException):
                    raise result
                else:
                    outcomes.append(BulkUpdateOutcomeModel(
                        ref_id=ref_id, success=True,
                        status=result.status if result else target,
                        version=result.version if result else None,
                    ))

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info(f"Bulk status update to {target.value}: {succeeded}/{len(outcomes)} succeeded")
        return outcomes
