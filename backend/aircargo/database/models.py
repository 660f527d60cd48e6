"""
SQLAlchemy database models for the air-cargo booking service.

This module defines the relational layout used by the booking core:
- Flight: Scheduled flight legs keyed by flight number + departure date
- Booking: Cargo shipments with a versioned lifecycle status
- BookingFlight: Ordered itinerary legs attached to a booking
- TimelineEvent: Append-only audit trail of booking status changes
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Index, Numeric, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow

# Create the declarative base for all models
Base = declarative_base()


class Flight(Base):
    """
    Flight model representing a scheduled flight leg.

    Timestamps are stored as naive UTC. Flights are referenced by booking
    itineraries but never owned by them.
    """
    __tablename__ = 'flights'

    # Composite human-readable key, e.g. 'AI101-20240115'
    flight_id = Column(String(32), primary_key=True)

    flight_number = Column(String(10), nullable=False, index=True)
    airline_name = Column(String(100), nullable=False)
    departure_datetime = Column(DateTime, nullable=False, index=True)
    arrival_datetime = Column(DateTime, nullable=False)
    origin = Column(String(3), nullable=False, index=True)
    destination = Column(String(3), nullable=False, index=True)

    booking_legs = relationship("BookingFlight", back_populates="flight", lazy="select")

    @staticmethod
    def build_flight_id(flight_number: str, departure: datetime) -> str:
        """Default flight id: flight number plus departure date (YYYYMMDD)."""
        return f"{flight_number}-{departure.strftime('%Y%m%d')}"

    @property
    def duration_minutes(self) -> int:
        return int((self.arrival_datetime - self.departure_datetime).total_seconds() // 60)

    def __repr__(self):
        return (f"<Flight(id='{self.flight_id}', {self.origin}->{self.destination}, "
                f"departure={self.departure_datetime})>")


class Booking(Base):
    """
    Booking model representing a cargo shipment.

    ``version`` is the optimistic-concurrency token; it increments exactly
    once per successful status update. Legs and timeline events are owned by
    the booking and cascade-deleted with it.
    """
    __tablename__ = 'bookings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    ref_id = Column(String(32), unique=True, nullable=False, index=True)

    origin = Column(String(3), nullable=False)
    destination = Column(String(3), nullable=False)
    pieces = Column(Integer, nullable=False)
    weight_kg = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default='BOOKED', index=True)
    version = Column(Integer, nullable=False, default=1)
    user_id = Column(Integer, nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    flights = relationship(
        "BookingFlight",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingFlight.sequence_order",
        lazy="select"
    )
    timeline = relationship(
        "TimelineEvent",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="[TimelineEvent.created_at, TimelineEvent.id]",
        lazy="select"
    )

    def __repr__(self):
        return (f"<Booking(ref_id='{self.ref_id}', status='{self.status}', "
                f"version={self.version})>")


class BookingFlight(Base):
    """Ordered leg of a booking itinerary (1-based ``sequence_order``)."""
    __tablename__ = 'booking_flights'
    __table_args__ = (
        UniqueConstraint('booking_id', 'flight_id', name='uq_booking_flight'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False, index=True)
    flight_id = Column(String(32), ForeignKey('flights.flight_id'), nullable=False, index=True)
    sequence_order = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="flights")
    flight = relationship("Flight", back_populates="booking_legs", lazy="joined")

    def __repr__(self):
        return f"<BookingFlight(booking_id={self.booking_id}, flight_id='{self.flight_id}', seq={self.sequence_order})>"


class TimelineEvent(Base):
    """
    Append-only audit record. Rows are inserted, never updated or deleted
    by the core.
    """
    __tablename__ = 'timeline_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    event_type = Column(String(20), nullable=False)
    location = Column(String(3), nullable=True)
    flight_id = Column(String(32), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    booking = relationship("Booking", back_populates="timeline")

    def __repr__(self):
        return f"<TimelineEvent(booking_id={self.booking_id}, type='{self.event_type}')>"


# Composite indexes for the route search and timeline reads
Index('idx_flight_route_date', Flight.origin, Flight.destination, Flight.departure_datetime)
Index('idx_timeline_booking_created', TimelineEvent.booking_id, TimelineEvent.created_at)
Index('idx_booking_user_created', Booking.user_id, Booking.created_at)


def create_all_tables(engine):
    """Create all tables using the provided SQLAlchemy engine."""
    Base.metadata.create_all(bind=engine)


def drop_all_tables(engine):
    """Drop all tables using the provided SQLAlchemy engine."""
    Base.metadata.drop_all(bind=engine)


__all__ = [
    'Base',
    'Flight',
    'Booking',
    'BookingFlight',
    'TimelineEvent',
    'create_all_tables',
    'drop_all_tables',
]
