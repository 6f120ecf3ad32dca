"""
Ride lifecycle manager
======================

Owns the ride state machine and gates the STARTED transition on a
successful charge of the ride fare.

Consistency
-----------
* Every operation on an existing ride runs under the ride's exclusive lock
  (``RideLocks.hold``).  The lock is taken without waiting: if another
  transition on the same ride is in flight the caller gets
  ``InvalidTransitionError`` straight away.  Different rides never contend.
* Each operation is one unit of work: a fresh session, a single commit at
  the end, rollback on any exception.  A ride row is written exactly once
  per successful transition, and only if it still holds the status that
  was read (compare-and-set).  A lock that lapsed mid-charge therefore
  cannot let two callers both move the ride.
* On STARTED the ``SUCCESS`` payment attempt is flushed before the ride row
  and both land in the same commit, so a STARTED ride without a successful
  attempt is never visible.
* A declined charge commits a ``FAILED`` attempt on its own and leaves the
  ride untouched.  A missing payment method or a gateway fault writes
  nothing.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .retry import RetryPolicy
from ride_service.domain.entities import (
    ChargeResult,
    Location,
    PaymentAttempt,
    PaymentMethod,
    Ride,
    as_utc,
    utcnow,
)
from ride_service.domain.enums import PaymentOutcome, RideStatus
from ride_service.domain.errors import (
    DriverUnavailableError,
    InvalidTransitionError,
    PaymentFailedError,
    PaymentMethodMissingError,
    PaymentServiceError,
    RideError,
    ValidationError,
)
from ride_service.domain.fare import FareCalculator
from ride_service.domain.ports import PaymentGateway
from ride_service.infrastructure.locks import KeyedLock, LockUnavailable, RideLocks
from ride_service.infrastructure.repositories import (
    PaymentAttemptRepository,
    RideRepository,
)

logger = logging.getLogger(__name__)


class RideLifecycleManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        locks: Optional[RideLocks] = None,
        fares: Optional[FareCalculator] = None,
        retry: Optional[RetryPolicy] = None,
        *,
        currency: str = "usd",
        payment_timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.locks = locks or KeyedLock()
        self.fares = fares or FareCalculator()
        self.retry = retry or RetryPolicy()
        self.currency = currency
        self.payment_timeout = payment_timeout
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        locks: Optional[RideLocks] = None,
    ) -> "RideLifecycleManager":
        return cls(
            session_factory,
            gateway,
            locks,
            FareCalculator.from_settings(settings),
            RetryPolicy.from_settings(settings),
            currency=settings.currency,
            payment_timeout=settings.payment_timeout_seconds,
        )

    # ── Public API ────────────────────────────────────────────────────

    async def request_ride(
        self,
        customer_id: str,
        scheduled_time: datetime,
        pickup: Optional[Location] = None,
        dropoff: Optional[Location] = None,
    ) -> Ride:
        if not customer_id:
            raise ValidationError("customer_id is required")
        now = self.clock()
        scheduled_time = as_utc(scheduled_time)
        if scheduled_time < now:
            raise ValidationError(
                f"scheduled_time {scheduled_time.isoformat()} is in the past"
            )

        ride = Ride(
            customer_id=customer_id,
            scheduled_time=scheduled_time,
            pickup=pickup,
            dropoff=dropoff,
            fare=self.fares.estimate(pickup, dropoff),
            currency=self.currency,
            requested_at=now,
        )
        async with self.session_factory() as session:
            await RideRepository(session).save(ride)
            await session.commit()

        logger.info(
            "Ride %s requested by %s for %s (fare %.2f)",
            ride.id,
            customer_id,
            scheduled_time.isoformat(),
            ride.fare,
        )
        return ride

    async def accept_ride(self, ride_id: int, driver_id: str) -> Ride:
        if not driver_id:
            raise ValidationError("driver_id is required")

        async with self._exclusive(ride_id):
            async with self.session_factory() as session:
                rides = RideRepository(session)
                ride = await rides.find_by_id(ride_id)
                if ride.status is not RideStatus.REQUESTED:
                    raise InvalidTransitionError(
                        f"Ride {ride_id} cannot be accepted in status "
                        f"{ride.status.value}"
                    )
                if await rides.exists_by_driver_and_scheduled_time(
                    driver_id, ride.scheduled_time
                ):
                    raise DriverUnavailableError(
                        f"Driver {driver_id} already has a ride at "
                        f"{ride.scheduled_time.isoformat()}"
                    )

                ride.driver_id = driver_id
                ride.transition_to(RideStatus.ACCEPTED, at=self.clock())
                await rides.save(ride, expected_status=RideStatus.REQUESTED)
                await session.commit()

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        return ride

    async def advance(self, ride_id: int, target: RideStatus) -> Ride:
        """Move the ride to *target*, charging the fare when *target* is STARTED.

        Calling again with the status the ride already has returns the ride
        unchanged and charges nothing.
        """
        target = RideStatus(target)

        async with self._exclusive(ride_id):
            async with self.session_factory() as session:
                rides = RideRepository(session)
                ride = await rides.find_by_id(ride_id)
                if ride.status is target:
                    return ride
                if ride.is_terminal:
                    raise InvalidTransitionError(
                        f"Ride {ride_id} is already {ride.status.value}"
                    )
                if target is RideStatus.ACCEPTED:
                    raise ValidationError(
                        "Assigning a driver requires accept_ride, not advance"
                    )

                method: Optional[PaymentMethod] = None
                if target is RideStatus.STARTED:
                    method = await self.gateway.get_default_method(ride.customer_id)
                    if method is None:
                        raise PaymentMethodMissingError(ride.customer_id)

                if not ride.can_transition_to(target):
                    raise InvalidTransitionError(
                        f"Cannot transition ride {ride_id} from "
                        f"{ride.status.value} to {target.value}"
                    )

                if method is not None:
                    await self._authorize_fare(session, ride, method)

                previous = ride.status
                ride.transition_to(target, at=self.clock())
                await rides.save(ride, expected_status=previous)
                await session.commit()

        logger.info("Ride %s: %s -> %s", ride_id, previous.value, target.value)
        return ride

    async def cancel(
        self,
        ride_id: int,
        reason: str,
        *,
        expected: Optional[RideStatus] = None,
    ) -> Ride:
        """Cancel a non-terminal ride.

        With *expected*, the ride is only cancelled while it is still in that
        status; otherwise ``InvalidTransitionError`` is raised.
        """
        async with self._exclusive(ride_id):
            async with self.session_factory() as session:
                rides = RideRepository(session)
                ride = await rides.find_by_id(ride_id)
                if ride.is_terminal or (
                    expected is not None and ride.status is not expected
                ):
                    raise InvalidTransitionError(
                        f"Cannot cancel ride {ride_id} in status {ride.status.value}"
                    )
                ride.cancellation_reason = reason
                previous = ride.status
                ride.transition_to(RideStatus.CANCELLED, at=self.clock())
                await rides.save(ride, expected_status=previous)
                await session.commit()

        logger.info("Ride %s cancelled: %s", ride_id, reason)
        return ride

    async def get_ride(self, ride_id: int) -> Ride:
        async with self.session_factory() as session:
            return await RideRepository(session).find_by_id(ride_id)

    async def list_rides(
        self,
        *,
        customer_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        status: Optional[RideStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Ride]:
        """Ride history for exactly one customer or one driver."""
        if (customer_id is None) == (driver_id is None):
            raise ValidationError("Give exactly one of customer_id or driver_id")
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0")

        async with self.session_factory() as session:
            rides = RideRepository(session)
            if customer_id is not None:
                return await rides.find_by_customer(customer_id, status, limit, offset)
            return await rides.find_by_driver(driver_id, status, limit, offset)

    async def list_payment_attempts(self, ride_id: int) -> list[PaymentAttempt]:
        async with self.session_factory() as session:
            await RideRepository(session).find_by_id(ride_id)
            return await PaymentAttemptRepository(session).list_for_ride(ride_id)

    # ── Internals ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def _exclusive(self, ride_id: int) -> AsyncIterator[None]:
        try:
            async with self.locks.hold(ride_id):
                yield
        except LockUnavailable as exc:
            raise InvalidTransitionError(
                f"Ride {ride_id} has a transition already in progress"
            ) from exc

    async def _authorize_fare(
        self, session: AsyncSession, ride: Ride, method: PaymentMethod
    ) -> None:
        """Charge the fare and record the attempt.  Raises on anything but success.

        Retries inside one call share an idempotency key.  Each decline
        moves the key on, so a later attempt is a fresh charge rather than a
        replay of the declined one.
        """
        attempts = PaymentAttemptRepository(session)
        declines = await attempts.count_for_ride(ride.id, PaymentOutcome.FAILED)
        key = f"ride-{ride.id}-start-{declines}"
        result = await self.retry.run(
            lambda: self._charge_once(ride, method, key), f"charge ride {ride.id}"
        )

        outcome = PaymentOutcome.SUCCESS if result.succeeded else PaymentOutcome.FAILED
        await attempts.add(
            PaymentAttempt(
                ride_id=ride.id,
                customer_id=ride.customer_id,
                amount=ride.fare,
                currency=ride.currency,
                outcome=outcome,
                reference=result.reference or result.message,
                created_at=self.clock(),
            )
        )
        if not result.succeeded:
            await session.commit()
            logger.warning(
                "Charge of %.2f declined for ride %s: %s",
                ride.fare,
                ride.id,
                result.message,
            )
            raise PaymentFailedError(result.message or "declined")

    async def _charge_once(
        self, ride: Ride, method: PaymentMethod, idempotency_key: str
    ) -> ChargeResult:
        try:
            return await asyncio.wait_for(
                self.gateway.charge(
                    method,
                    ride.fare,
                    ride.currency,
                    idempotency_key=idempotency_key,
                ),
                timeout=self.payment_timeout,
            )
        except RideError:
            raise
        except asyncio.TimeoutError as exc:
            raise PaymentServiceError(
                f"Payment gateway timed out after {self.payment_timeout}s"
            ) from exc
        except Exception as exc:
            raise PaymentServiceError(f"Unexpected payment error: {exc}") from exc
