"""
Shared Valkey connection for the caches and the booking leases.

``connection()`` never degrades: it returns the live connection or raises
ValkeyConnectionError. Each caller decides what a failure means. The cache
turns it into a miss, while leases and post-write invalidation treat it as
an error. After a transport failure a caller reports it with
``mark_unavailable()`` and the next ``connection()`` reopens the pool.
"""

import asyncio
import logging
from typing import Optional

import valkey
from valkey.connection import ConnectionPool
from valkey.exceptions import ConnectionError, TimeoutError

from .config import ValkeyConfig, ValkeyConnectionError

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (ConnectionError, TimeoutError, OSError, ValkeyConnectionError)


class ValkeyClient:
    """Pooled Valkey connection with startup retry and on-demand reconnect."""

    def __init__(
        self,
        config: Optional[ValkeyConfig] = None,
        connect_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
    ):
        """
        Args:
            config: Server settings, read from the environment if omitted
            connect_attempts: Attempts made by ``connect()`` before giving up
            backoff_base: Delay after the first failed attempt, doubled each time
            backoff_cap: Upper bound on the delay between attempts
        """
        self.config = config or ValkeyConfig.from_env()
        self.connect_attempts = connect_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._pool: Optional[ConnectionPool] = None
        self._valkey: Optional[valkey.Valkey] = None

        logger.info(f"Valkey client configured: {self.config}")

    @property
    def is_connected(self) -> bool:
        return self._valkey is not None

    def _open(self) -> valkey.Valkey:
        pool = ConnectionPool(**self.config.pool_kwargs())
        conn = valkey.Valkey(connection_pool=pool)
        try:
            conn.ping()
        except (ConnectionError, TimeoutError, OSError) as e:
            pool.disconnect()
            raise ValkeyConnectionError(f"Cannot reach Valkey at {self.config.address}: {e}") from e

        self._pool = pool
        self._valkey = conn
        return conn

    async def connect(self) -> None:
        """
        Open the pool at startup, retrying with exponential backoff.

        Raises:
            ValkeyConnectionError: If every attempt failed
        """
        if self._valkey is not None:
            return

        for attempt in range(1, self.connect_attempts + 1):
            try:
                self._open()
                logger.info(f"Connected to Valkey at {self.config.address}")
                return
            except ValkeyConnectionError as e:
                if attempt == self.connect_attempts:
                    logger.error(f"Giving up on Valkey after {attempt} attempts: {e}")
                    raise
                delay = min(self.backoff_base * 2 ** (attempt - 1), self.backoff_cap)
                logger.warning(f"Valkey attempt {attempt} failed, retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)

    async def connection(self) -> valkey.Valkey:
        """
        The live connection, reopened with a single attempt when needed.

        Raises:
            ValkeyConnectionError: If the server cannot be reached
        """
        if self._valkey is None:
            self._open()
            logger.info(f"Reconnected to Valkey at {self.config.address}")
        return self._valkey

    def mark_unavailable(self) -> None:
        """Drop the pool after a transport failure."""
        pool, self._pool, self._valkey = self._pool, None, None
        if pool is not None:
            try:
                pool.disconnect()
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Ignoring error while dropping Valkey pool: {e}")

    async def ping(self) -> bool:
        """Round-trip check used by the health endpoint."""
        try:
            conn = await self.connection()
            return bool(conn.ping())
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Valkey ping failed: {e}")
            self.mark_unavailable()
            return False

    async def disconnect(self) -> None:
        if self._pool is not None:
            self.mark_unavailable()
            logger.info("Disconnected from Valkey")
