"""
Distributed lock manager for serializing booking updates.

Leases are taken with Valkey SET NX EX and released with a Lua
compare-and-delete so a holder can never remove a lease that expired and was
re-acquired by someone else. Acquisition is a single attempt; retry policy
belongs to the caller.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from contextlib import asynccontextmanager

from valkey.exceptions import ResponseError

from ..cache.client import TRANSPORT_ERRORS
from ..cache.manager import CacheManager
from ..cache.utils import TTLPreset, key_manager
from ..exceptions import StoreUnavailableError
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)

LOCK_STORE_ERRORS = TRANSPORT_ERRORS + (ResponseError,)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


@dataclass
class LockInfo:
    """A granted lease. ``lock_value`` is the holder token."""
    lock_key: str
    lock_value: str
    acquired_at: datetime
    expires_at: datetime
    ttl_seconds: int
    owner_id: str

    @property
    def is_expired(self) -> bool:
        return utcnow() > self.expires_at

    @property
    def remaining_ttl_seconds(self) -> float:
        remaining = (self.expires_at - utcnow()).total_seconds()
        return max(0.0, remaining)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lock_key": self.lock_key,
            "lock_value": self.lock_value,
            "acquired_at": self.acquired_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "ttl_seconds": self.ttl_seconds,
            "owner_id": self.owner_id,
            "is_expired": self.is_expired,
            "remaining_ttl_seconds": self.remaining_ttl_seconds
        }


class DistributedLockManager:
    """
    Distributed lock manager using Valkey SET with NX and EX options.

    Features:
    - Atomic single-attempt acquisition with TTL
    - Owner-checked atomic release
    - Automatic expiry bounds how long a crashed holder blocks others

    Unlike the cache, the lock store does not degrade: transport failures
    during acquisition raise StoreUnavailableError.
    """

    def __init__(self, cache_manager: CacheManager, default_ttl: int = int(TTLPreset.LOCK_LEASE),
                 max_ttl: int = 300):
        """
        Args:
            cache_manager: CacheManager whose client backs the locks
            default_ttl: Lease TTL used when none is given
            max_ttl: Upper bound on any requested TTL
        """
        self.cache = cache_manager
        self.instance_id = str(uuid.uuid4())[:8]
        self.active_locks: Dict[str, LockInfo] = {}

        self.default_lock_ttl = default_ttl
        self.max_lock_ttl = max_ttl

        logger.info(f"DistributedLockManager initialized with instance ID: {self.instance_id}")

    def _new_token(self) -> str:
        return f"{self.instance_id}:{uuid.uuid4().hex}:{int(time.time() * 1000)}"

    async def _store(self):
        """The raw connection. Leases bypass the cache circuit breaker."""
        if not self.cache.client:
            raise StoreUnavailableError("Lock store is not configured")
        return await self.cache.client.connection()

    def _store_failed(self, error: Exception) -> None:
        if isinstance(error, TRANSPORT_ERRORS) and self.cache.client:
            self.cache.client.mark_unavailable()

    async def acquire(self, resource_key: str, ttl_seconds: Optional[int] = None) -> Optional[LockInfo]:
        """
        Try once to take the lease on ``resource_key``.

        Returns:
            LockInfo if granted, None if someone else holds it

        Raises:
            StoreUnavailableError: If the lock store cannot be reached
        """
        ttl = min(ttl_seconds or self.default_lock_ttl, self.max_lock_ttl)
        lock_key = key_manager.lock_key(resource_key)
        lock_value = self._new_token()

        try:
            store = await self._store()
            result = store.set(lock_key, lock_value, nx=True, ex=ttl)
        except LOCK_STORE_ERRORS as e:
            self._store_failed(e)
            logger.error(f"Lock store unavailable while acquiring {lock_key}: {e}")
            raise StoreUnavailableError(f"Lock store unavailable: {e}") from e

        if not result:
            logger.debug(f"Lock busy: {lock_key}")
            return None

        acquired_at = utcnow()
        lock_info = LockInfo(
            lock_key=lock_key,
            lock_value=lock_value,
            acquired_at=acquired_at,
            expires_at=acquired_at + timedelta(seconds=ttl),
            ttl_seconds=ttl,
            owner_id=self.instance_id
        )
        self.active_locks[lock_key] = lock_info
        logger.debug(f"Lock acquired: {lock_key} (ttl: {ttl}s)")
        return lock_info

    async def release(self, lock_info: LockInfo) -> bool:
        """
        Release a lease only if its stored value still matches our token.

        Returns:
            True if the lease was removed, False if it was no longer ours or
            the store could not be reached (the TTL then reclaims it)
        """
        self.active_locks.pop(lock_info.lock_key, None)

        try:
            store = await self._store()
            result = store.eval(RELEASE_SCRIPT, 1, lock_info.lock_key, lock_info.lock_value)
        except (StoreUnavailableError, *LOCK_STORE_ERRORS) as e:
            self._store_failed(e)
            logger.error(f"Error releasing lock {lock_info.lock_key}: {e}")
            return False

        success = bool(result)
        if success:
            logger.debug(f"Lock released: {lock_info.lock_key}")
        else:
            logger.warning(f"Lock release failed (not owner): {lock_info.lock_key}")
        return success

    @asynccontextmanager
    async def lock_context(self, resource_key: str, ttl_seconds: Optional[int] = None):
        """
        Acquire on entry, always release on exit.

        Usage:
            async with lock_manager.lock_context(ref_id) as lock:
                if lock is None:
                    # held by someone else
                    ...
        """
        lock_info = await self.acquire(resource_key, ttl_seconds)

        try:
            yield lock_info
        finally:
            if lock_info:
                await self.release(lock_info)

    async def get_lock_status(self, resource_key: str) -> Optional[Dict[str, Any]]:
        """Current holder and TTL for a resource, None if unlocked or unreachable."""
        lock_key = key_manager.lock_key(resource_key)

        try:
            store = await self._store()
            lock_value = store.get(lock_key)
            ttl = store.ttl(lock_key)
        except (StoreUnavailableError, *LOCK_STORE_ERRORS) as e:
            self._store_failed(e)
            logger.error(f"Error getting lock status for {resource_key}: {e}")
            return None

        if lock_value is None:
            return None

        lock_value_str = lock_value.decode('utf-8') if isinstance(lock_value, bytes) else str(lock_value)
        owner_id = lock_value_str.split(':')[0]

        return {
            "lock_key": lock_key,
            "lock_value": lock_value_str,
            "owner_id": owner_id,
            "is_owned_by_us": owner_id == self.instance_id,
            "ttl_seconds": ttl if ttl and ttl > 0 else 0,
        }

    def get_active_locks(self) -> List[Dict[str, Any]]:
        """Leases currently held by this instance."""
        return [lock.to_dict() for lock in self.active_locks.values()]
