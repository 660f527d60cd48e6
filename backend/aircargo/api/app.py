"""
FastAPI application factory.

The lifespan connects the database and the cache, builds the services into
``app.state`` and tears them down again on shutdown. Stores passed in by the
caller are used as-is and left open.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from ..cache.manager import CacheManager
from ..database.config import DatabaseConfig
from ..services.booking_manager import BookingLifecycleManager
from ..services.event_logger import BusinessEventLogger
from ..services.flight_catalog import FlightCatalog
from ..services.lock_manager import DistributedLockManager
from ..services.route_finder import RouteFinder
from ..utils.config import CargoConfig, get_config
from .bookings import router as bookings_router
from .errors import register_exception_handlers
from .flights import router as flights_router

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, config: CargoConfig, database: DatabaseConfig,
                   cache_manager: CacheManager) -> None:
    """Wire the service graph onto ``app.state``."""
    event_logger = BusinessEventLogger()
    lock_manager = DistributedLockManager(cache_manager, default_ttl=config.lock_ttl)

    app.state.config = config
    app.state.database = database
    app.state.cache_manager = cache_manager
    app.state.event_logger = event_logger
    app.state.lock_manager = lock_manager
    app.state.booking_manager = BookingLifecycleManager(
        database,
        cache_manager,
        lock_manager=lock_manager,
        event_logger=event_logger,
        booking_cache_ttl=config.booking_cache_ttl,
        lock_ttl=config.lock_ttl,
        bulk_batch_size=config.bulk_batch_size,
    )
    app.state.route_finder = RouteFinder(
        database, cache_manager, route_cache_ttl=config.route_cache_ttl
    )
    app.state.flight_catalog = FlightCatalog(database, cache_manager, event_logger=event_logger)


def create_app(
    config: Optional[CargoConfig] = None,
    database: Optional[DatabaseConfig] = None,
    cache_manager: Optional[CacheManager] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Service configuration, loaded from the environment if omitted
        database: Initialized DatabaseConfig to use instead of one built from config
        cache_manager: CacheManager to use instead of one built from config
    """
    config = config or get_config()
    owns_database = database is None
    owns_cache = cache_manager is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = database or DatabaseConfig(config.database_url)
        if owns_database:
            db.initialize()
            db.create_tables()

        cache = cache_manager or CacheManager(config=config.to_valkey_config())
        if owns_cache:
            await cache.initialize()

        build_services(app, config, db, cache)
        logger.info("Air cargo API started")

        try:
            yield
        finally:
            await app.state.event_logger.drain()
            if owns_cache:
                await cache.close()
            if owns_database:
                db.close()
            logger.info("Air cargo API stopped")

    app = FastAPI(title="Air Cargo Booking API", lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(bookings_router)
    app.include_router(flights_router)

    @app.get("/health")
    async def health(request: Request):
        db_ok = request.app.state.database.test_connection()
        cache_health = await request.app.state.cache_manager.health_check()
        return {
            "success": True,
            "data": {
                "status": "healthy" if db_ok else "unhealthy",
                "database": {"connected": db_ok, **request.app.state.database.get_connection_info()},
                "cache": cache_health,
            },
        }

    return app
