"""
Shared test fixtures.

Uses a throw-away SQLite database file (via aiosqlite) per test so tests
run without Docker / PostgreSQL / Redis.  The payment gateway is a
scripted in-memory fake.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ride_service.domain.entities import ChargeResult, PaymentMethod, Ride, utcnow
from ride_service.domain.enums import RideStatus
from ride_service.domain.errors import PaymentServiceError
from ride_service.domain.fare import FareCalculator
from ride_service.infrastructure.database import Base
from ride_service.infrastructure.locks import KeyedLock
from ride_service.services.lifecycle import RideLifecycleManager
from ride_service.services.retry import RetryPolicy

CUSTOMER = "cust-1"
DRIVER = "drv-1"
FARE = 25.0


class FakeGateway:
    """Scripted ``PaymentGateway``.

    ``script`` is consumed one entry per charge call: ``True`` approves,
    ``False`` declines, an exception instance is raised.  Once exhausted,
    every charge is approved.  ``delay`` makes each charge sleep first;
    ``delays`` overrides it per call, in order.

    Like Stripe, a returned result is stored under its idempotency key and
    replayed for any later call with the same key.
    """

    def __init__(self) -> None:
        self.methods: dict[str, PaymentMethod] = {}
        self.script: list = []
        self.delay: float = 0.0
        self.delays: list[float] = []
        self.calls: list[dict] = []
        self.results: dict[str, ChargeResult] = {}

    def add_method(
        self, customer_id: str, method_id: str = "pm_card_visa"
    ) -> PaymentMethod:
        method = PaymentMethod(customer_id, f"cus_{customer_id}", method_id)
        self.methods[customer_id] = method
        return method

    async def get_default_method(self, customer_id: str) -> Optional[PaymentMethod]:
        return self.methods.get(customer_id)

    async def charge(self, method, amount, currency, *, idempotency_key):
        self.calls.append(
            {
                "customer_id": method.customer_id,
                "method_id": method.method_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )
        delay = self.delays.pop(0) if self.delays else self.delay
        if delay:
            await asyncio.sleep(delay)
        if idempotency_key in self.results:
            return self.results[idempotency_key]
        step = self.script.pop(0) if self.script else True
        if isinstance(step, BaseException):
            raise step
        if step:
            result = ChargeResult(succeeded=True, reference=f"pi_{len(self.calls)}")
        else:
            result = ChargeResult(succeeded=False, message="Your card was declined.")
        self.results[idempotency_key] = result
        return result


def transient() -> PaymentServiceError:
    return PaymentServiceError("gateway unreachable")


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Create tables in a fresh SQLite file, yield a session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.add_method(CUSTOMER)
    return gw


@pytest.fixture
def manager(session_factory, gateway) -> RideLifecycleManager:
    return RideLifecycleManager(
        session_factory,
        gateway,
        KeyedLock(),
        FareCalculator(minimum_fare=FARE),
        RetryPolicy(max_retries=2, backoff_base=0.0, jitter=0.0),
        payment_timeout=1.0,
    )


# Path through the lifecycle used to put a ride into a given status.
_PATH = [
    RideStatus.DRIVER_EN_ROUTE,
    RideStatus.STARTED,
    RideStatus.IN_PROGRESS,
    RideStatus.COMPLETED,
]


async def make_ride(
    manager: RideLifecycleManager,
    status: RideStatus = RideStatus.REQUESTED,
    customer_id: str = CUSTOMER,
    driver_id: str = DRIVER,
) -> Ride:
    """Request a ride an hour from now and drive it to *status*."""
    ride = await manager.request_ride(customer_id, utcnow() + timedelta(hours=1))
    if status is RideStatus.REQUESTED:
        return ride
    if status is RideStatus.CANCELLED:
        return await manager.cancel(ride.id, "test")
    ride = await manager.accept_ride(ride.id, driver_id)
    for step in _PATH:
        if ride.status is status:
            break
        ride = await manager.advance(ride.id, step)
    assert ride.status is status
    return ride
