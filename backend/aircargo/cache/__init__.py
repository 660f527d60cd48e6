"""
Caching layer for the air-cargo booking service.

This module contains Valkey client configuration, the cache manager,
and key/TTL conventions shared by bookings, routes and locks.
"""

from .config import ValkeyConfig, ValkeyConnectionError
from .client import ValkeyClient
from .utils import (
    CacheKeyPrefix,
    TTLPreset,
    CacheKeyBuilder,
    TTLCalculator,
    CacheKeyManager,
    key_manager
)
from .manager import CacheManager, CacheStats

__all__ = [
    # Configuration
    "ValkeyConfig",
    "ValkeyConnectionError",

    # Client
    "ValkeyClient",

    # Manager
    "CacheManager",
    "CacheStats",

    # Utilities
    "CacheKeyPrefix",
    "TTLPreset",
    "CacheKeyBuilder",
    "TTLCalculator",
    "CacheKeyManager",
    "key_manager",
]
