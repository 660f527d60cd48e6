"""
Shared fixtures: in-memory SQLite database, mock Valkey client and services.
"""

import fnmatch
import time
from datetime import datetime, timedelta

import pytest
from valkey.exceptions import ConnectionError as ValkeyTransportError

from aircargo.cache.manager import CacheManager
from aircargo.database.config import DatabaseConfig
from aircargo.database.models import Flight
from aircargo.services.booking_manager import BookingLifecycleManager
from aircargo.services.event_logger import BusinessEventLogger
from aircargo.services.flight_catalog import FlightCatalog
from aircargo.services.lock_manager import DistributedLockManager
from aircargo.services.route_finder import RouteFinder


class MockValkeyClient:
    """Mock Valkey client for testing, with key expiry."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.is_connected = True
        self.unavailable_reports = 0

    # ValkeyClient surface
    async def connect(self):
        self.is_connected = True

    async def connection(self):
        return self

    def mark_unavailable(self):
        self.unavailable_reports += 1

    async def ping(self):
        return True

    async def disconnect(self):
        self.is_connected = False

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def expire_now(self, key):
        """Force a key to expire, as if its TTL elapsed."""
        self.data.pop(key, None)
        self.expiry.pop(key, None)

    def get(self, key):
        """Mock GET operation."""
        self._purge(key)
        return self.data.get(key)

    def set(self, key, value, nx=False, ex=None):
        """Mock SET operation."""
        self._purge(key)
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = time.time() + ex
        else:
            self.expiry.pop(key, None)
        return True

    def setex(self, key, ttl, value):
        """Mock SETEX operation."""
        return self.set(key, value, ex=ttl)

    def delete(self, *keys):
        """Mock DEL operation."""
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    def exists(self, key):
        self._purge(key)
        return 1 if key in self.data else 0

    def ttl(self, key):
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - time.time())

    def scan_iter(self, match="*"):
        return [key for key in list(self.data) if fnmatch.fnmatch(key, match)]

    def eval(self, script, num_keys, *args):
        """Mock EVAL operation for the compare-and-delete release script."""
        if "get" in script and "del" in script:
            key, expected_value = args[0], args[1]
            if self.get(key) == expected_value:
                self.delete(key)
                return 1
            return 0
        return 0


class FailingValkeyClient(MockValkeyClient):
    """Every data command fails with a transport error."""

    def _fail(self, *args, **kwargs):
        raise ValkeyTransportError("Connection refused")

    get = set = setex = delete = exists = ttl = eval = _fail

    async def ping(self):
        return False


@pytest.fixture
def database():
    """In-memory SQLite database with all tables."""
    db = DatabaseConfig("sqlite://")
    db.initialize()
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def valkey():
    return MockValkeyClient()


@pytest.fixture
def failing_valkey():
    return FailingValkeyClient()


@pytest.fixture
def cache_manager(valkey):
    return CacheManager(client=valkey)


@pytest.fixture
def event_logger():
    return BusinessEventLogger()


@pytest.fixture
def lock_manager(cache_manager):
    return DistributedLockManager(cache_manager)


@pytest.fixture
def booking_manager(database, cache_manager, lock_manager, event_logger):
    return BookingLifecycleManager(
        database, cache_manager, lock_manager=lock_manager, event_logger=event_logger
    )


# Fixed "now" for route and catalog tests
NOW = datetime(2024, 1, 14, 12, 0)
SEARCH_DAY = datetime(2024, 1, 15)


@pytest.fixture
def route_finder(database, cache_manager):
    return RouteFinder(database, cache_manager, clock=lambda: NOW)


@pytest.fixture
def flight_catalog(database, cache_manager, event_logger):
    return FlightCatalog(database, cache_manager, event_logger=event_logger, clock=lambda: NOW)


def add_flight(database, flight_number, origin, destination, departure, duration_minutes=120,
               airline_name="Air India"):
    """Insert a flight row directly and return its id."""
    flight_id = Flight.build_flight_id(flight_number, departure)
    with database.get_session_context() as session:
        session.add(Flight(
            flight_id=flight_id,
            flight_number=flight_number,
            airline_name=airline_name,
            departure_datetime=departure,
            arrival_datetime=departure + timedelta(minutes=duration_minutes),
            origin=origin,
            destination=destination,
        ))
    return flight_id


@pytest.fixture
def make_flight(database):
    """Factory inserting flights into the test database."""
    def _make(flight_number, origin, destination, departure, duration_minutes=120,
              airline_name="Air India"):
        return add_flight(database, flight_number, origin, destination, departure,
                          duration_minutes=duration_minutes, airline_name=airline_name)
    return _make
