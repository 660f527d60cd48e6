"""
Cache utilities for key naming conventions and TTL management.

Key layout:
    booking:{ref_id}                          hydrated booking aggregate
    routes:{origin}:{destination}:{date}      combined direct + transit result
    lock:{ref_id}                             booking lease holder token
"""

import random
from datetime import date, datetime, timedelta
from typing import Any, Union
from enum import Enum


class CacheKeyPrefix(str, Enum):
    """Standard cache key prefixes for different data types."""

    BOOKING = "booking"
    ROUTES = "routes"
    LOCK = "lock"


class TTLPreset(int, Enum):
    """Standard TTL presets in seconds for different data types."""

    LOCK_LEASE = 30         # 30 seconds
    BOOKING = 600           # 10 minutes
    ROUTE_SEARCH = 1800     # 30 minutes


class CacheKeyBuilder:
    """Builds colon-separated cache keys with consistent namespacing."""

    @staticmethod
    def build_key(prefix: Union[CacheKeyPrefix, str], *parts: Any, **params: Any) -> str:
        """
        Build a cache key with prefix, parts, and parameters.

        Args:
            prefix: Key prefix (CacheKeyPrefix enum or string)
            *parts: Key parts to join with colons
            **params: Additional parameters to include in key

        Returns:
            str: Generated cache key

        Example:
            build_key(CacheKeyPrefix.ROUTES, "DEL", "BLR", "2024-01-15")
            # Returns: "routes:DEL:BLR:2024-01-15"
        """
        prefix_str = prefix.value if isinstance(prefix, CacheKeyPrefix) else str(prefix)
        key_parts = [prefix_str]

        for part in parts:
            if part is not None:
                key_parts.append(str(part))

        # Sorted for consistency
        for key, value in sorted(params.items()):
            if value is not None:
                key_parts.append(f"{key}={value}")

        return ":".join(key_parts)

    @staticmethod
    def build_pattern(prefix: Union[CacheKeyPrefix, str], *parts: str) -> str:
        """
        Build a key pattern for SCAN operations.

        Example:
            build_pattern(CacheKeyPrefix.ROUTES, "DEL", "*")
            # Returns: "routes:DEL:*"
        """
        prefix_str = prefix.value if isinstance(prefix, CacheKeyPrefix) else str(prefix)
        return ":".join([prefix_str, *parts])


class TTLCalculator:
    """TTL calculation with jitter to avoid expiration clustering."""

    @staticmethod
    def calculate_ttl_with_jitter(
        base_ttl: Union[int, TTLPreset],
        jitter_percent: float = 0.1,
        min_ttl: int = 30
    ) -> int:
        """
        Calculate TTL with random jitter to prevent expiration clustering.

        Example:
            calculate_ttl_with_jitter(3600, 0.1)  # 3600 +/- 10% (3240-3960 seconds)
        """
        base_seconds = int(base_ttl)
        jitter_range = int(base_seconds * jitter_percent)
        jitter = random.randint(-jitter_range, jitter_range)
        return max(base_seconds + jitter, min_ttl)

    @staticmethod
    def calculate_expiration_time(ttl_seconds: int) -> datetime:
        """Expiration timestamp for a TTL starting now."""
        return datetime.now() + timedelta(seconds=ttl_seconds)


class CacheKeyManager:
    """High-level key generation for the booking service."""

    def __init__(self):
        self.key_builder = CacheKeyBuilder()
        self.ttl_calculator = TTLCalculator()

    def booking_key(self, ref_id: str) -> str:
        """Generate cache key for a booking aggregate."""
        return self.key_builder.build_key(CacheKeyPrefix.BOOKING, ref_id)

    def routes_key(self, origin: str, destination: str, departure_date: Union[date, str]) -> str:
        """Generate cache key for a route search result."""
        if isinstance(departure_date, date):
            departure_date = departure_date.isoformat()
        return self.key_builder.build_key(
            CacheKeyPrefix.ROUTES,
            origin,
            destination,
            departure_date
        )

    def lock_key(self, resource_key: str) -> str:
        """Generate cache key for a resource lease."""
        return self.key_builder.build_key(CacheKeyPrefix.LOCK, resource_key)

    def validate_key(self, key: str) -> bool:
        """Reject empty keys, overly long keys and keys with whitespace."""
        if not key or not isinstance(key, str):
            return False

        if len(key) > 250:
            return False

        invalid_chars = ['\n', '\r', '\t', ' ']
        return not any(char in key for char in invalid_chars)


# Global key manager instance
key_manager = CacheKeyManager()
