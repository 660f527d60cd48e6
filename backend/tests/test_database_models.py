"""
Test suite for SQLAlchemy database models.

Tests model creation, relationships and constraints against an in-memory
SQLite database with foreign keys enforced.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from aircargo.database.models import Flight, Booking, BookingFlight, TimelineEvent


DEPARTURE = datetime(2024, 1, 15, 8, 0)


@pytest.fixture
def session(database):
    """Create a database session for testing."""
    session = database.get_session()
    yield session
    session.close()


@pytest.fixture
def flight(session):
    flight = Flight(
        flight_id=Flight.build_flight_id("AI101", DEPARTURE),
        flight_number="AI101",
        airline_name="Air India",
        departure_datetime=DEPARTURE,
        arrival_datetime=DEPARTURE + timedelta(minutes=165),
        origin="DEL",
        destination="BLR",
    )
    session.add(flight)
    session.commit()
    return flight


def make_booking(ref_id="ACTEST00001", **overrides):
    values = dict(
        ref_id=ref_id,
        origin="DEL",
        destination="BLR",
        pieces=3,
        weight_kg=Decimal("125.50"),
        user_id=7,
    )
    values.update(overrides)
    return Booking(**values)


class TestFlightModel:
    """Test cases for the Flight model."""

    def test_flight_id_format(self):
        assert Flight.build_flight_id("AI101", DEPARTURE) == "AI101-20240115"

    def test_duration_minutes(self, flight):
        assert flight.duration_minutes == 165


class TestBookingModel:
    """Test cases for the Booking model."""

    def test_defaults(self, session):
        booking = make_booking()
        session.add(booking)
        session.commit()

        assert booking.id is not None
        assert booking.status == "BOOKED"
        assert booking.version == 1
        assert booking.created_at is not None
        assert booking.weight_kg == Decimal("125.50")

    def test_ref_id_is_unique(self, session):
        session.add(make_booking())
        session.commit()

        session.add(make_booking())
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_legs_ordered_by_sequence(self, session, flight):
        second = Flight(
            flight_id="6E202-20240115",
            flight_number="6E202",
            airline_name="IndiGo",
            departure_datetime=DEPARTURE + timedelta(hours=5),
            arrival_datetime=DEPARTURE + timedelta(hours=7),
            origin="BLR",
            destination="MAA",
        )
        session.add(second)
        booking = make_booking(destination="MAA")
        booking.flights.append(BookingFlight(flight_id=second.flight_id, sequence_order=2))
        booking.flights.append(BookingFlight(flight_id=flight.flight_id, sequence_order=1))
        session.add(booking)
        session.commit()

        session.expire_all()
        reloaded = session.scalars(select(Booking).where(Booking.ref_id == "ACTEST00001")).one()
        assert [leg.flight_id for leg in reloaded.flights] == ["AI101-20240115", "6E202-20240115"]
        assert reloaded.flights[0].flight.origin == "DEL"


class TestConstraints:

    def test_booking_flight_pair_is_unique(self, session, flight):
        booking = make_booking()
        session.add(booking)
        session.flush()

        session.add(BookingFlight(booking_id=booking.id, flight_id=flight.flight_id, sequence_order=1))
        session.add(BookingFlight(booking_id=booking.id, flight_id=flight.flight_id, sequence_order=2))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_leg_requires_existing_flight(self, session):
        booking = make_booking()
        session.add(booking)
        session.flush()

        session.add(BookingFlight(booking_id=booking.id, flight_id="XX999-20240115", sequence_order=1))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_delete_cascades_to_legs_and_timeline(self, session, flight):
        booking = make_booking()
        booking.flights.append(BookingFlight(flight_id=flight.flight_id, sequence_order=1))
        booking.timeline.append(TimelineEvent(event_type="BOOKED", location="DEL"))
        session.add(booking)
        session.commit()

        session.delete(booking)
        session.commit()

        assert session.scalar(select(func.count()).select_from(BookingFlight)) == 0
        assert session.scalar(select(func.count()).select_from(TimelineEvent)) == 0
        # Flights are referenced, not owned
        assert session.get(Flight, flight.flight_id) is not None

    def test_database_level_cascade(self, session, flight):
        booking = make_booking()
        booking.flights.append(BookingFlight(flight_id=flight.flight_id, sequence_order=1))
        booking.timeline.append(TimelineEvent(event_type="BOOKED", location="DEL"))
        session.add(booking)
        session.commit()

        session.execute(delete(Booking).where(Booking.ref_id == "ACTEST00001"))
        session.commit()

        assert session.scalar(select(func.count()).select_from(BookingFlight)) == 0
        assert session.scalar(select(func.count()).select_from(TimelineEvent)) == 0
