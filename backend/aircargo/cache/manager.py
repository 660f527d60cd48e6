"""
Cache manager with error handling and graceful degradation.

This module provides a high-level cache abstraction layer that wraps
Valkey operations with error handling, graceful degradation and
performance monitoring. The cache is an optimization, never the source of
truth: a failure degrades to a miss (reads) or a no-op (writes) so callers
fall through to the database. Invalidation after a database write is the
one path the circuit breaker never skips.
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Union, Callable, Awaitable
from datetime import datetime
from dataclasses import dataclass, field

from valkey.exceptions import ConnectionError, TimeoutError, ResponseError

from .client import ValkeyClient, TRANSPORT_ERRORS
from .config import ValkeyConfig, ValkeyConnectionError
from .utils import TTLCalculator, TTLPreset, key_manager

logger = logging.getLogger(__name__)

CACHE_ERRORS = TRANSPORT_ERRORS + (ResponseError,)


@dataclass
class CacheStats:
    """Cache operation statistics."""

    hit_count: int = 0
    miss_count: int = 0
    error_count: int = 0
    set_count: int = 0
    delete_count: int = 0
    total_operations: int = 0

    total_response_time_ms: float = 0.0
    max_response_time_ms: float = 0.0

    connection_errors: int = 0
    timeout_errors: int = 0
    other_errors: int = 0

    degraded_operations: int = 0

    start_time: datetime = field(default_factory=datetime.now)

    @property
    def hit_ratio(self) -> float:
        """Calculate cache hit ratio."""
        total_reads = self.hit_count + self.miss_count
        return self.hit_count / total_reads if total_reads > 0 else 0.0

    @property
    def avg_response_time_ms(self) -> float:
        """Calculate average response time."""
        return (self.total_response_time_ms / self.total_operations
                if self.total_operations > 0 else 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "error_count": self.error_count,
            "set_count": self.set_count,
            "delete_count": self.delete_count,
            "total_operations": self.total_operations,
            "hit_ratio": self.hit_ratio,
            "avg_response_time_ms": self.avg_response_time_ms,
            "max_response_time_ms": self.max_response_time_ms,
            "connection_errors": self.connection_errors,
            "timeout_errors": self.timeout_errors,
            "other_errors": self.other_errors,
            "degraded_operations": self.degraded_operations,
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
        }


class CacheManager:
    """
    High-level cache manager with error handling and graceful degradation.

    Features:
    - JSON serialization of cached aggregates
    - TTL with jitter to avoid synchronized expirations
    - Statistics collection
    - Circuit breaker that skips the cache after repeated failures
    """

    def __init__(
        self,
        client: Optional[ValkeyClient] = None,
        config: Optional[ValkeyConfig] = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60
    ):
        """
        Initialize cache manager.

        Args:
            client: ValkeyClient instance; created from config on initialize() if omitted
            config: ValkeyConfig for creating new client
            circuit_breaker_threshold: Consecutive failures before circuit opens
            circuit_breaker_timeout: Seconds to wait before retrying after circuit opens
        """
        self.client = client
        self.config = config or ValkeyConfig.from_env()
        self.key_manager = key_manager
        self.ttl_calculator = TTLCalculator()

        self.stats = CacheStats()

        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_timeout = circuit_breaker_timeout
        self.consecutive_failures = 0
        self.circuit_open_time: Optional[datetime] = None
        self.is_circuit_open = False

        logger.info("CacheManager initialized")

    async def initialize(self) -> None:
        """Create the client if needed and connect. Connection failure is not fatal."""
        if not self.client:
            self.client = ValkeyClient(self.config)

        try:
            await self.client.connect()
            logger.info("CacheManager successfully connected to Valkey")
        except ValkeyConnectionError as e:
            logger.warning(f"Failed to connect to Valkey, running without cache: {e}")

    def _record_operation(self, operation_type: str, response_time_ms: float) -> None:
        self.stats.total_operations += 1
        self.stats.total_response_time_ms += response_time_ms
        self.stats.max_response_time_ms = max(self.stats.max_response_time_ms, response_time_ms)

        if operation_type == "hit":
            self.stats.hit_count += 1
        elif operation_type == "miss":
            self.stats.miss_count += 1
        elif operation_type == "set":
            self.stats.set_count += 1
        elif operation_type == "delete":
            self.stats.delete_count += 1

    def _record_error(self, error: Exception) -> None:
        """Record and categorize errors."""
        self.stats.error_count += 1
        self.consecutive_failures += 1

        if isinstance(error, (ConnectionError, ValkeyConnectionError)):
            self.stats.connection_errors += 1
        elif isinstance(error, TimeoutError):
            self.stats.timeout_errors += 1
        else:
            self.stats.other_errors += 1

        if isinstance(error, TRANSPORT_ERRORS) and self.client:
            self.client.mark_unavailable()

        if self.consecutive_failures >= self.circuit_breaker_threshold and not self.is_circuit_open:
            self.is_circuit_open = True
            self.circuit_open_time = datetime.now()
            logger.warning(
                f"Circuit breaker opened after {self.consecutive_failures} consecutive failures"
            )

    def _record_success(self) -> None:
        self.consecutive_failures = 0

        if self.is_circuit_open:
            self.is_circuit_open = False
            self.circuit_open_time = None
            logger.info("Circuit breaker closed after successful operation")

    def _is_circuit_breaker_open(self) -> bool:
        """Check if circuit breaker should remain open."""
        if not self.is_circuit_open or self.circuit_open_time is None:
            return False

        elapsed = (datetime.now() - self.circuit_open_time).total_seconds()
        if elapsed >= self.circuit_breaker_timeout:
            logger.info("Circuit breaker timeout expired, allowing retry")
            return False

        return True

    async def _execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        default: Any = None
    ) -> Any:
        """
        Run a cache operation, degrading to ``default`` on any transport failure.
        """
        if not self.client or self._is_circuit_breaker_open():
            self.stats.degraded_operations += 1
            return default

        try:
            result = await operation()
            self._record_success()
            return result
        except CACHE_ERRORS as e:
            logger.warning(f"Cache operation failed, degrading: {e}")
            self._record_error(e)
            self.stats.degraded_operations += 1
            return default

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get a JSON value from cache.

        Returns:
            Cached value, or ``default`` on miss or failure
        """
        async def cache_operation():
            start_time = time.time()
            conn = await self.client.connection()
            result = conn.get(key)
            response_time_ms = (time.time() - start_time) * 1000

            if result is None:
                self._record_operation("miss", response_time_ms)
                logger.debug(f"Cache miss: {key}")
                return None

            self._record_operation("hit", response_time_ms)
            logger.debug(f"Cache hit: {key}")
            try:
                return json.loads(result)
            except (json.JSONDecodeError, TypeError):
                return result

        result = await self._execute(cache_operation)
        return result if result is not None else default

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[Union[int, TTLPreset]] = None,
        jitter: bool = True
    ) -> bool:
        """
        Set value in cache with TTL and jitter support.

        Returns:
            True if successful, False otherwise
        """
        final_ttl = None
        if ttl is not None:
            base_ttl = int(ttl)
            final_ttl = (self.ttl_calculator.calculate_ttl_with_jitter(base_ttl)
                         if jitter else base_ttl)

        if isinstance(value, (dict, list, tuple)):
            serialized_value = json.dumps(value)
        else:
            serialized_value = str(value)

        async def cache_operation():
            start_time = time.time()
            conn = await self.client.connection()

            if final_ttl:
                result = conn.setex(key, final_ttl, serialized_value)
            else:
                result = conn.set(key, serialized_value)

            self._record_operation("set", (time.time() - start_time) * 1000)
            return bool(result)

        return bool(await self._execute(cache_operation, default=False))

    async def delete(self, *keys: str) -> bool:
        """
        Delete keys from cache.

        Returns:
            True if at least one key was deleted, False otherwise
        """
        if not keys:
            return False

        async def cache_operation():
            start_time = time.time()
            conn = await self.client.connection()
            result = conn.delete(*keys)
            self._record_operation("delete", (time.time() - start_time) * 1000)
            return bool(result)

        return bool(await self._execute(cache_operation, default=False))

    async def invalidate(self, *keys: str) -> bool:
        """
        Delete keys after a write to the database.

        Unlike ``delete`` this ignores the circuit breaker and always reaches
        for Valkey, so a committed write never leaves its cached copy behind
        while the server is reachable. A success closes the circuit.

        Returns:
            True if at least one key was deleted, False if none existed or
            Valkey could not be reached
        """
        if not keys or not self.client:
            return False

        start_time = time.time()
        try:
            conn = await self.client.connection()
            result = conn.delete(*keys)
        except CACHE_ERRORS as e:
            logger.error(f"Invalidation failed for {len(keys)} key(s) starting {keys[0]}: {e}")
            self._record_error(e)
            return False

        self._record_operation("delete", (time.time() - start_time) * 1000)
        self._record_success()
        return bool(result)

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        async def cache_operation():
            conn = await self.client.connection()
            return bool(conn.exists(key))

        return bool(await self._execute(cache_operation, default=False))

    async def get_ttl(self, key: str) -> Optional[int]:
        """Remaining TTL for key, None if missing or without expiry."""
        async def cache_operation():
            conn = await self.client.connection()
            result = conn.ttl(key)
            return result if result > 0 else None

        return await self._execute(cache_operation)

    async def get_stats(self) -> Dict[str, Any]:
        """Statistics plus circuit breaker state."""
        stats = self.stats.to_dict()
        stats.update({
            "circuit_breaker_open": self.is_circuit_open,
            "consecutive_failures": self.consecutive_failures,
        })
        return stats

    async def health_check(self) -> Dict[str, Any]:
        """Report whether the cache is reachable."""
        health: Dict[str, Any] = {
            "status": "unavailable",
            "cache_available": False,
            "circuit_breaker_open": self.is_circuit_open,
        }

        if not self.client:
            return health

        if await self.client.ping():
            health.update({"status": "healthy", "cache_available": True})
        else:
            health["status"] = "degraded"
        return health

    async def close(self) -> None:
        """Close cache manager and cleanup resources."""
        if self.client:
            await self.client.disconnect()

        logger.info("CacheManager closed")
