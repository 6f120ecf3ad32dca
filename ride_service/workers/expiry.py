"""
Background Expiry Worker
========================

Runs every ``EXPIRY_INTERVAL_SECONDS`` (default 60 s).

Cancels REQUESTED rides that no driver accepted within
``RIDE_EXPIRY_MINUTES`` of their scheduled time.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Each cancellation goes through ``RideLifecycleManager.cancel`` and so
  takes the ride's own lock; a ride with a transition in flight (e.g. a
  driver accepting it right now) is skipped and reconsidered next cycle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_service.config import settings
from ride_service.domain.enums import RideStatus
from ride_service.domain.errors import InvalidTransitionError
from ride_service.infrastructure.locks import DistributedLock
from ride_service.infrastructure.repositories import RideRepository
from ride_service.services.lifecycle import RideLifecycleManager

logger = logging.getLogger(__name__)

EXPIRY_REASON = "expired: no driver accepted"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop(
    manager: RideLifecycleManager,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis] = None,
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(manager, session_factory, redis))
    logger.info(
        "Expiry worker started (interval=%ds)", settings.expiry_interval_seconds
    )


async def stop_expiry_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Expiry worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(
    manager: RideLifecycleManager,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis],
) -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_cycle(manager, session_factory, redis)
        except Exception:
            logger.exception("Unhandled error in expiry cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.expiry_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_expiry_cycle(
    manager: RideLifecycleManager,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis] = None,
    expiry_minutes: Optional[int] = None,
) -> int:
    """Execute one sweep.  Returns the number of rides cancelled.

    Without a Redis client the sweep runs unguarded (single-process mode).
    """
    lock = None
    if redis is not None:
        lock = DistributedLock(redis, "ride_expiry_sweeper", ttl_seconds=60)
        if not await lock.acquire():
            logger.debug("Lock held by another worker – skipping cycle")
            return 0

    minutes = settings.ride_expiry_minutes if expiry_minutes is None else expiry_minutes
    cutoff = manager.clock() - timedelta(minutes=minutes)
    cancelled = 0
    try:
        async with session_factory() as session:
            stale = await RideRepository(session).find_expired(cutoff)

        for ride in stale:
            try:
                await manager.cancel(
                    ride.id, EXPIRY_REASON, expected=RideStatus.REQUESTED
                )
            except InvalidTransitionError:
                # Accepted, cancelled, or busy since the query ran.
                logger.debug("Ride %s changed before expiry; skipped", ride.id)
                continue
            cancelled += 1

        if cancelled:
            logger.info("Expiry cycle: %d rides cancelled", cancelled)
    finally:
        if lock is not None:
            await lock.release()

    return cancelled
