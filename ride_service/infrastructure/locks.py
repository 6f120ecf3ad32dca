"""
Per-ride exclusive locks.

Transitions on a ride must never interleave, so every mutating lifecycle
operation runs inside ``locks.hold(ride_id)``.  Acquisition is
non-blocking: a second caller gets ``LockUnavailable`` immediately instead
of queueing behind an in-flight transition.

* ``KeyedLock``       -- in-process ``asyncio.Lock`` per key.  Enough for a
  single API process.
* ``RedisRideLocks``  -- ``DistributedLock`` per key for deployments with
  several processes.  SET NX EX for acquire and a Lua script for atomic
  check-and-delete on release.

Neither provider shares state between keys, so rides never contend with
each other.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Protocol

import redis.asyncio as aioredis


class LockUnavailable(RuntimeError):
    """Raised when a lock is already held by someone else."""


class RideLocks(Protocol):
    def hold(self, key: Hashable) -> "AsyncIterator[None]": ...


class KeyedLock:
    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        # No await between the check and the acquire: atomic on one loop.
        if lock.locked():
            raise LockUnavailable(f"Lock busy: {key}")
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if not lock.locked() and self._locks.get(key) is lock:
                del self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class DistributedLock:
    _RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(self._RELEASE_SCRIPT, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        if not await self.acquire():
            raise LockUnavailable(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class RedisRideLocks:
    """Hands out one ``DistributedLock`` per ride id."""

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 30):
        self.redis = client
        self.ttl = ttl_seconds

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        async with DistributedLock(self.redis, f"ride:{key}", self.ttl):
            yield
