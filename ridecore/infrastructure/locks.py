"""
Redis-based distributed lock.

Guards the offer sweeper so that only one process expires offers and
re-dispatches rides per cycle.  Ride assignment itself never relies on this
lock: exclusivity there comes from the conditional updates in
``RideRepository``.

Acquire is ``SET NX EX``; release is a registered Lua script that deletes
the key only while it still holds our token, so a lock that expired and was
taken over by another worker is never released by mistake.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    """Another worker holds the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"ridecore:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self._release = client.register_script(_RELEASE_SCRIPT)
        self.held = False

    async def acquire(self) -> bool:
        """Try once, without blocking.  Returns True on success."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def release(self) -> bool:
        """Release only if we still own the lock.  Returns True if deleted."""
        if not self.held:
            return False
        self.held = False
        deleted = await self._release(keys=[self.key], args=[self.token])
        if not deleted:
            logger.warning("Lock %s expired before release", self.key)
        return bool(deleted)

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *exc_info):
        await self.release()
