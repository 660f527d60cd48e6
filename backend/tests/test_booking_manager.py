"""
Booking lifecycle tests: creation, guarded status updates, cache coherence,
bulk updates and booking analytics.
"""

import asyncio
import json
import re
from datetime import datetime, timedelta

import pytest

from aircargo.cache.manager import CacheManager
from aircargo.exceptions import (
    BusinessRuleViolation,
    ConcurrentModificationError,
    DuplicateReferenceError,
    NotFoundError,
    ResourceLockedError,
    StoreUnavailableError,
    ValidationError,
)
from aircargo.models.enums import BookingStatus
from aircargo.services.booking_manager import BookingLifecycleManager, generate_reference_code
from aircargo.services.lock_manager import DistributedLockManager


DAY = datetime(2024, 1, 15)


async def create(manager, origin="DEL", destination="BLR", pieces=2, weight_kg=150.0,
                 user_id=1, flight_ids=None):
    return await manager.create_booking(
        origin=origin, destination=destination, pieces=pieces, weight_kg=weight_kg,
        user_id=user_id, flight_ids=flight_ids,
    )


class TestReferenceCodes:

    def test_format(self):
        code = generate_reference_code()
        assert re.fullmatch(r"AC[0-9A-Z]{13,}", code)

    def test_timestamp_prefix(self):
        assert generate_reference_code(now_ms=0).startswith("AC0")
        assert generate_reference_code(now_ms=36)[:4] == "AC10"
        assert len(generate_reference_code(now_ms=36)) == 9

    def test_codes_differ(self):
        assert len({generate_reference_code(now_ms=1) for _ in range(20)}) > 1


class TestCreateBooking:
    """Booking creation and the hydrated aggregate."""

    @pytest.mark.asyncio
    async def test_create_without_flights(self, booking_manager):
        booking = await create(booking_manager)

        assert booking.ref_id.startswith("AC")
        assert booking.status == BookingStatus.BOOKED
        assert booking.version == 1
        assert booking.flights == []
        assert len(booking.timeline) == 1
        event = booking.timeline[0]
        assert event.event_type == BookingStatus.BOOKED
        assert event.location == "DEL"
        assert event.flight_id is None
        assert event.description == "Booking created"

    @pytest.mark.asyncio
    async def test_create_with_itinerary(self, booking_manager, make_flight):
        first = make_flight("AI101", "DEL", "HYD", DAY.replace(hour=6))
        second = make_flight("6E202", "HYD", "BLR", DAY.replace(hour=10), airline_name="IndiGo")

        booking = await create(booking_manager, flight_ids=[first, second])

        assert [leg.flight_id for leg in booking.flights] == [first, second]
        assert [leg.sequence_order for leg in booking.flights] == [1, 2]
        assert booking.flights[1].airline_name == "IndiGo"
        assert booking.flights[0].origin == "DEL"
        assert booking.timeline[0].flight_id == first

    @pytest.mark.asyncio
    async def test_create_populates_cache(self, booking_manager, valkey):
        booking = await create(booking_manager)
        cached = json.loads(valkey.data[f"booking:{booking.ref_id}"])
        assert cached["ref_id"] == booking.ref_id
        assert cached["status"] == "BOOKED"
        assert cached["version"] == 1

    @pytest.mark.asyncio
    async def test_unknown_flight(self, booking_manager, make_flight):
        known = make_flight("AI101", "DEL", "BLR", DAY.replace(hour=6))
        with pytest.raises(NotFoundError) as exc_info:
            await create(booking_manager, flight_ids=[known, "XX999-20240115"])
        assert "XX999-20240115" in exc_info.value.message

        assert (await booking_manager.search_bookings()).pagination.total == 0

    @pytest.mark.asyncio
    async def test_repeated_flight_id(self, booking_manager, make_flight):
        known = make_flight("AI101", "DEL", "BLR", DAY.replace(hour=6))
        with pytest.raises(ValidationError):
            await create(booking_manager, flight_ids=[known, known])

    @pytest.mark.asyncio
    async def test_duplicate_reference(self, database, cache_manager, lock_manager):
        manager = BookingLifecycleManager(
            database, cache_manager, lock_manager=lock_manager,
            reference_generator=lambda: "ACFIXED00001",
        )
        await create(manager)
        with pytest.raises(DuplicateReferenceError):
            await create(manager)

    @pytest.mark.asyncio
    async def test_created_event_emitted(self, booking_manager, event_logger):
        await create(booking_manager)
        await event_logger.drain()
        assert event_logger.emitted_count == 1
        assert event_logger.failed_count == 0


class TestBookingHistory:

    @pytest.mark.asyncio
    async def test_missing_booking(self, booking_manager):
        assert await booking_manager.get_booking_history("ACNOPE") is None

    @pytest.mark.asyncio
    async def test_read_from_database_repopulates_cache(self, booking_manager, valkey):
        booking = await create(booking_manager)
        valkey.expire_now(f"booking:{booking.ref_id}")

        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.ref_id == booking.ref_id
        assert history.weight_kg == 150.0
        assert f"booking:{booking.ref_id}" in valkey.data

    @pytest.mark.asyncio
    async def test_served_from_cache(self, booking_manager, cache_manager):
        booking = await create(booking_manager)
        hits_before = cache_manager.stats.hit_count
        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history == booking
        assert cache_manager.stats.hit_count == hits_before + 1

    @pytest.mark.asyncio
    async def test_unreadable_cache_entry_is_replaced(self, booking_manager, valkey):
        booking = await create(booking_manager)
        key = f"booking:{booking.ref_id}"
        valkey.data[key] = json.dumps({"unexpected": True})

        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.ref_id == booking.ref_id
        assert json.loads(valkey.data[key])["ref_id"] == booking.ref_id


class TestUpdateStatus:
    """Leased, version-gated status updates."""

    @pytest.mark.asyncio
    async def test_update_bumps_version_and_timeline(self, booking_manager, make_flight):
        flight_id = make_flight("AI101", "DEL", "BLR", DAY.replace(hour=6))
        booking = await create(booking_manager, flight_ids=[flight_id])

        updated = await booking_manager.update_status(
            booking.ref_id, BookingStatus.DEPARTED, location="DEL", flight_id=flight_id
        )

        assert updated.status == BookingStatus.DEPARTED
        assert updated.version == 2
        assert len(updated.timeline) == 2
        event = updated.timeline[-1]
        assert event.event_type == BookingStatus.DEPARTED
        assert event.location == "DEL"
        assert event.flight_id == flight_id
        assert event.description == "Status updated to DEPARTED"

    @pytest.mark.asyncio
    async def test_custom_description_and_lowercase_status(self, booking_manager):
        booking = await create(booking_manager)
        updated = await booking_manager.update_status(
            booking.ref_id, "arrived", location="BLR", description="Unloaded at gate 4"
        )
        assert updated.status == BookingStatus.ARRIVED
        assert updated.timeline[-1].description == "Unloaded at gate 4"

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, booking_manager):
        booking = await create(booking_manager)
        for status in ("DEPARTED", "ARRIVED", "DELIVERED"):
            booking = await booking_manager.update_status(booking.ref_id, status)
        assert booking.version == 4
        assert [event.event_type.value for event in booking.timeline] == [
            "BOOKED", "DEPARTED", "ARRIVED", "DELIVERED"
        ]

    @pytest.mark.asyncio
    async def test_cache_reflects_new_status(self, booking_manager, valkey):
        booking = await create(booking_manager)
        await booking_manager.update_status(booking.ref_id, BookingStatus.DEPARTED)

        cached = json.loads(valkey.data[f"booking:{booking.ref_id}"])
        assert cached["status"] == "DEPARTED"
        assert cached["version"] == 2

    @pytest.mark.asyncio
    async def test_cannot_cancel_delivered(self, booking_manager):
        booking = await create(booking_manager)
        await booking_manager.update_status(booking.ref_id, BookingStatus.DELIVERED)

        with pytest.raises(BusinessRuleViolation):
            await booking_manager.update_status(booking.ref_id, BookingStatus.CANCELLED)

        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.status == BookingStatus.DELIVERED
        assert history.version == 2

    @pytest.mark.asyncio
    async def test_can_cancel_arrived(self, booking_manager):
        booking = await create(booking_manager)
        await booking_manager.update_status(booking.ref_id, BookingStatus.ARRIVED)
        cancelled = await booking_manager.update_status(booking.ref_id, BookingStatus.CANCELLED)
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.version == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["BOOKED", "LOST", ""])
    async def test_invalid_targets(self, booking_manager, status):
        booking = await create(booking_manager)
        with pytest.raises(ValidationError):
            await booking_manager.update_status(booking.ref_id, status)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, booking_manager, valkey):
        with pytest.raises(NotFoundError):
            await booking_manager.update_status("ACNOPE", BookingStatus.DEPARTED)
        assert "lock:ACNOPE" not in valkey.data

    @pytest.mark.asyncio
    async def test_locked_booking(self, booking_manager, valkey):
        booking = await create(booking_manager)
        valkey.set(f"lock:{booking.ref_id}", "other-holder", nx=True, ex=30)

        with pytest.raises(ResourceLockedError):
            await booking_manager.update_status(booking.ref_id, BookingStatus.DEPARTED)

        valkey.expire_now(f"booking:{booking.ref_id}")
        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.version == 1
        assert history.status == BookingStatus.BOOKED
        assert valkey.data[f"lock:{booking.ref_id}"] == "other-holder"

    @pytest.mark.asyncio
    async def test_lock_released_after_success_and_failure(self, booking_manager, valkey):
        booking = await create(booking_manager)
        await booking_manager.update_status(booking.ref_id, BookingStatus.DELIVERED)
        assert f"lock:{booking.ref_id}" not in valkey.data

        with pytest.raises(BusinessRuleViolation):
            await booking_manager.update_status(booking.ref_id, BookingStatus.CANCELLED)
        assert f"lock:{booking.ref_id}" not in valkey.data

    @pytest.mark.asyncio
    async def test_version_conflict(self, booking_manager, valkey, monkeypatch):
        booking = await create(booking_manager)
        original = booking_manager._read_current_state

        def stale_read(session, ref_id):
            booking_id, status, version = original(session, ref_id)
            return booking_id, status, version - 1

        monkeypatch.setattr(booking_manager, "_read_current_state", stale_read)

        with pytest.raises(ConcurrentModificationError):
            await booking_manager.update_status(booking.ref_id, BookingStatus.DEPARTED)

        monkeypatch.undo()
        valkey.expire_now(f"booking:{booking.ref_id}")
        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.version == 1
        assert len(history.timeline) == 1
        assert f"lock:{booking.ref_id}" not in valkey.data

    @pytest.mark.asyncio
    async def test_concurrent_updates_keep_version_consistent(self, booking_manager):
        booking = await create(booking_manager)

        results = await asyncio.gather(
            *(booking_manager.update_status(booking.ref_id, BookingStatus.DEPARTED)
              for _ in range(5)),
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert successes
        assert all(isinstance(f, (ResourceLockedError, ConcurrentModificationError)) for f in failures)

        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.version == 1 + len(successes)
        assert len(history.timeline) == 1 + len(successes)

    @pytest.mark.asyncio
    async def test_lock_store_down(self, database, cache_manager, failing_valkey):
        manager = BookingLifecycleManager(
            database, cache_manager,
            lock_manager=DistributedLockManager(CacheManager(client=failing_valkey)),
        )
        booking = await create(manager)
        with pytest.raises(StoreUnavailableError):
            await manager.update_status(booking.ref_id, BookingStatus.DEPARTED)

    @pytest.mark.asyncio
    async def test_cache_down_still_serves(self, database, lock_manager, failing_valkey):
        manager = BookingLifecycleManager(
            database, CacheManager(client=failing_valkey), lock_manager=lock_manager
        )
        booking = await create(manager)
        updated = await manager.update_status(booking.ref_id, BookingStatus.DEPARTED)
        assert updated.version == 2
        assert (await manager.get_booking_history(booking.ref_id)).status == BookingStatus.DEPARTED

    @pytest.mark.asyncio
    async def test_open_circuit_does_not_skip_invalidation(self, booking_manager, cache_manager, valkey):
        booking = await create(booking_manager)
        cache_key = f"booking:{booking.ref_id}"
        assert json.loads(valkey.data[cache_key])["status"] == "BOOKED"

        cache_manager.is_circuit_open = True
        cache_manager.circuit_open_time = datetime.now()
        updated = await booking_manager.update_status(booking.ref_id, BookingStatus.DEPARTED)
        assert updated.status == BookingStatus.DEPARTED
        assert cache_key not in valkey.data or json.loads(valkey.data[cache_key])["status"] == "DEPARTED"

        cache_manager.circuit_open_time = datetime.now() - timedelta(seconds=120)
        history = await booking_manager.get_booking_history(booking.ref_id)
        assert history.status == BookingStatus.DEPARTED
        assert history.version == 2

    @pytest.mark.asyncio
    async def test_status_event_emitted(self, booking_manager, event_logger):
        booking = await create(booking_manager)
        await booking_manager.update_status(booking.ref_id, BookingStatus.DEPARTED)
        await event_logger.drain()
        assert event_logger.emitted_count == 2


class TestBulkUpdate:

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, booking_manager):
        first = await create(booking_manager)
        second = await create(booking_manager)
        delivered = await create(booking_manager)
        await booking_manager.update_status(delivered.ref_id, BookingStatus.DELIVERED)

        outcomes = await booking_manager.bulk_update_status(
            [first.ref_id, "ACNOPE", delivered.ref_id, second.ref_id, first.ref_id],
            BookingStatus.CANCELLED,
        )

        assert [o.ref_id for o in outcomes] == [first.ref_id, "ACNOPE", delivered.ref_id, second.ref_id]
        by_ref = {o.ref_id: o for o in outcomes}
        assert by_ref[first.ref_id].success is True
        assert by_ref[first.ref_id].status == BookingStatus.CANCELLED
        assert by_ref[first.ref_id].version == 2
        assert by_ref["ACNOPE"].error_category == "NOT_FOUND"
        assert by_ref[delivered.ref_id].error_category == "BUSINESS_RULE_VIOLATION"
        assert by_ref[second.ref_id].success is True

    @pytest.mark.asyncio
    async def test_empty_list(self, booking_manager):
        with pytest.raises(ValidationError):
            await booking_manager.bulk_update_status([], BookingStatus.DEPARTED)

    @pytest.mark.asyncio
    async def test_booked_target_rejected(self, booking_manager):
        booking = await create(booking_manager)
        with pytest.raises(ValidationError):
            await booking_manager.bulk_update_status([booking.ref_id], "BOOKED")

    @pytest.mark.asyncio
    async def test_runs_in_batches(self, database, cache_manager, lock_manager):
        manager = BookingLifecycleManager(
            database, cache_manager, lock_manager=lock_manager, bulk_batch_size=2
        )
        refs = [(await create(manager)).ref_id for _ in range(5)]

        outcomes = await manager.bulk_update_status(refs, "departed", location="DEL")
        assert len(outcomes) == 5
        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, booking_manager, monkeypatch):
        good = await create(booking_manager)
        bad = await create(booking_manager)
        original = booking_manager._apply_status_update

        def flaky(ref_id, *args):
            if ref_id == bad.ref_id:
                raise RuntimeError("disk on fire")
            return original(ref_id, *args)

        monkeypatch.setattr(booking_manager, "_apply_status_update", flaky)

        outcomes = await booking_manager.bulk_update_status(
            [good.ref_id, bad.ref_id], BookingStatus.DEPARTED
        )
        assert outcomes[0].success is True
        assert outcomes[1].success is False
        assert outcomes[1].error_category == "INTERNAL_ERROR"
        assert "disk on fire" in outcomes[1].error


class TestBookingQueries:

    @pytest.mark.asyncio
    async def test_list_for_user_newest_first(self, booking_manager):
        first = await create(booking_manager, user_id=5)
        second = await create(booking_manager, user_id=5)
        await create(booking_manager, user_id=6)

        bookings = await booking_manager.list_bookings_for_user(5)
        assert [b.ref_id for b in bookings] == [second.ref_id, first.ref_id]
        assert await booking_manager.list_bookings_for_user(99) == []

    @pytest.mark.asyncio
    async def test_search_filters_and_pagination(self, booking_manager):
        for _ in range(3):
            await create(booking_manager, origin="DEL", destination="BLR")
        other = await create(booking_manager, origin="BOM", destination="BLR")
        await booking_manager.update_status(other.ref_id, BookingStatus.DEPARTED)

        page = await booking_manager.search_bookings(origin="DEL", limit=2)
        assert page.pagination.total == 3
        assert page.pagination.pages == 2
        assert len(page.bookings) == 2

        second_page = await booking_manager.search_bookings(origin="DEL", page=2, limit=2)
        assert len(second_page.bookings) == 1

        departed = await booking_manager.search_bookings(status="departed")
        assert [b.ref_id for b in departed.bookings] == [other.ref_id]

        assert (await booking_manager.search_bookings(destination="BLR")).pagination.total == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [{"page": 0}, {"limit": 0}, {"limit": 101}, {"status": "LOST"}])
    async def test_search_validation(self, booking_manager, kwargs):
        with pytest.raises(ValidationError):
            await booking_manager.search_bookings(**kwargs)

    @pytest.mark.asyncio
    async def test_stats(self, booking_manager):
        await create(booking_manager, pieces=1, weight_kg=100.0)
        moved = await create(booking_manager, pieces=2, weight_kg=200.0)
        await create(booking_manager, pieces=3, weight_kg=300.0)
        await booking_manager.update_status(moved.ref_id, BookingStatus.DEPARTED)

        stats = await booking_manager.get_booking_stats(days=7)
        assert stats.period_days == 7
        assert stats.total_bookings == 3
        assert stats.total_pieces == 6
        assert stats.avg_weight_kg == 200.0
        assert stats.by_status["BOOKED"].count == 2
        assert stats.by_status["BOOKED"].avg_weight_kg == 200.0
        assert stats.by_status["DEPARTED"].count == 1

    @pytest.mark.asyncio
    async def test_stats_validation(self, booking_manager):
        with pytest.raises(ValidationError):
            await booking_manager.get_booking_stats(days=0)
