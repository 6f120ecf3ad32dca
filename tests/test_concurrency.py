"""
Concurrency safety tests.

Demonstrates:
1. Concurrent duplicate transitions on one ride: exactly one wins.
2. Transitions on different rides do not block each other.
3. The in-process keyed lock and the Redis distributed lock refuse a
   second holder and always release.
4. A Redis lock that lapses mid-charge still leaves one STARTED write.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from ride_service.domain.enums import PaymentOutcome, RideStatus
from ride_service.domain.errors import InvalidTransitionError, PaymentFailedError
from ride_service.infrastructure.locks import (
    DistributedLock,
    KeyedLock,
    LockUnavailable,
    RedisRideLocks,
)
from ride_service.services.retry import RetryPolicy
from tests.conftest import make_ride


class TestConcurrentTransitions:
    @pytest.mark.asyncio
    async def test_duplicate_start_only_one_succeeds(self, manager, gateway):
        ride = await make_ride(manager, RideStatus.DRIVER_EN_ROUTE)
        gateway.delay = 0.05

        results = await asyncio.gather(
            manager.advance(ride.id, RideStatus.STARTED),
            manager.advance(ride.id, RideStatus.STARTED),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidTransitionError)
        assert len(gateway.calls) == 1
        attempts = await manager.list_payment_attempts(ride.id)
        assert [a.outcome for a in attempts] == [PaymentOutcome.SUCCESS]

    @pytest.mark.asyncio
    async def test_cancel_during_payment_is_rejected(self, manager, gateway):
        ride = await make_ride(manager, RideStatus.DRIVER_EN_ROUTE)
        gateway.delay = 0.05

        start = asyncio.create_task(manager.advance(ride.id, RideStatus.STARTED))
        await asyncio.sleep(0.01)
        with pytest.raises(InvalidTransitionError, match="in progress"):
            await manager.cancel(ride.id, "changed mind")

        started = await start
        assert started.status is RideStatus.STARTED

    @pytest.mark.asyncio
    async def test_different_rides_proceed_independently(self, manager, gateway):
        first = await make_ride(manager, RideStatus.DRIVER_EN_ROUTE, driver_id="drv-a")
        second = await make_ride(manager, RideStatus.DRIVER_EN_ROUTE, driver_id="drv-b")
        gateway.delay = 0.05

        results = await asyncio.gather(
            manager.advance(first.id, RideStatus.STARTED),
            manager.advance(second.id, RideStatus.STARTED),
        )

        assert [r.status for r in results] == [RideStatus.STARTED] * 2

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, manager, gateway):
        ride = await make_ride(manager, RideStatus.DRIVER_EN_ROUTE)
        gateway.script = [False]

        with pytest.raises(PaymentFailedError):
            await manager.advance(ride.id, RideStatus.STARTED)

        assert not manager.locks.is_held(ride.id)
        started = await manager.advance(ride.id, RideStatus.STARTED)
        assert started.status is RideStatus.STARTED


class ExpiringRedis:
    """Just enough of ``redis.asyncio.Redis`` for ``DistributedLock``.

    ``lapse()`` drops every key, as if each TTL ran out.
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0

    def lapse(self) -> None:
        self.store.clear()


class TestLapsedLock:
    @pytest.mark.asyncio
    async def test_second_start_after_lock_lapse_is_refused(
        self, session_factory, gateway
    ):
        from ride_service.services.lifecycle import RideLifecycleManager

        redis = ExpiringRedis()
        manager = RideLifecycleManager(
            session_factory,
            gateway,
            RedisRideLocks(redis),
            retry=RetryPolicy(max_retries=0, backoff_base=0.0, jitter=0.0),
        )
        ride = await make_ride(manager, RideStatus.DRIVER_EN_ROUTE)
        gateway.delays = [0.05, 0.2]

        first = asyncio.create_task(manager.advance(ride.id, RideStatus.STARTED))
        await asyncio.sleep(0.01)
        redis.lapse()
        second = asyncio.create_task(manager.advance(ride.id, RideStatus.STARTED))
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert results[0].status is RideStatus.STARTED
        assert isinstance(results[1], InvalidTransitionError)
        # Both charges carried one key, so the gateway charged once.
        keys = {c["idempotency_key"] for c in gateway.calls}
        assert keys == {f"ride-{ride.id}-start-0"}
        attempts = await manager.list_payment_attempts(ride.id)
        assert [a.outcome for a in attempts] == [PaymentOutcome.SUCCESS]
        stored = await manager.get_ride(ride.id)
        assert stored.status is RideStatus.STARTED
        assert redis.store == {}


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_second_holder_refused(self):
        locks = KeyedLock()
        async with locks.hold(1):
            with pytest.raises(LockUnavailable):
                async with locks.hold(1):
                    pass

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        locks = KeyedLock()
        async with locks.hold(1):
            async with locks.hold(2):
                assert locks.is_held(1) and locks.is_held(2)

    @pytest.mark.asyncio
    async def test_released_on_error_and_entry_dropped(self):
        locks = KeyedLock()
        with pytest.raises(ValueError):
            async with locks.hold(7):
                raise ValueError("boom")
        assert not locks.is_held(7)
        assert locks._locks == {}


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "ride:1", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:ride:1", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "ride:1", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "ride:1", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_awaited_once()
        assert mock_redis.eval.await_args.args[1:] == (1, "lock:ride:1", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "ride:1", ttl_seconds=10)
        with pytest.raises(LockUnavailable, match="Could not acquire lock"):
            async with lock:
                pass


class TestRedisRideLocks:
    @pytest.mark.asyncio
    async def test_hold_uses_per_ride_key_and_releases(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        async with RedisRideLocks(mock_redis, ttl_seconds=5).hold(42):
            pass

        assert mock_redis.set.await_args.args[0] == "lock:ride:42"
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_busy_ride_maps_to_invalid_transition(
        self, session_factory, gateway
    ):
        from ride_service.services.lifecycle import RideLifecycleManager

        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)
        manager = RideLifecycleManager(
            session_factory, gateway, RedisRideLocks(mock_redis)
        )

        with pytest.raises(InvalidTransitionError):
            await manager.cancel(1, "changed mind")


class TestRedisClient:
    @pytest.mark.asyncio
    async def test_pool_created_on_first_use(self, monkeypatch):
        from ride_service.infrastructure import redis_client

        monkeypatch.setattr(redis_client, "_pool", None)
        assert redis_client._pool is None

        first = await redis_client.get_redis()
        second = await redis_client.get_redis()
        assert redis_client._pool is not None
        assert first.connection_pool is second.connection_pool is redis_client._pool
