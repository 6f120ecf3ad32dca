"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Repositories flush but never commit; the
caller owns the transaction boundary.  Rows are mapped to the frozen /
plain domain entities on the way out so callers never hold live ORM
objects.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    REFERENCE_LENGTH,
    CustomerPaymentInfoModel,
    PaymentAttemptModel,
    RideModel,
)
from ride_service.domain.entities import (
    Location,
    PaymentAttempt,
    PaymentMethod,
    Ride,
    as_utc,
    utcnow,
)
from ride_service.domain.enums import PaymentOutcome, RideStatus
from ride_service.domain.errors import InvalidTransitionError, RideNotFoundError

_RIDE_TIMESTAMPS = (
    "requested_at",
    "accepted_at",
    "en_route_at",
    "started_at",
    "in_progress_at",
    "completed_at",
    "cancelled_at",
)


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


def _to_ride(row: RideModel) -> Ride:
    pickup = dropoff = None
    if row.pickup_lat is not None and row.pickup_lng is not None:
        pickup = Location(row.pickup_lat, row.pickup_lng)
    if row.dropoff_lat is not None and row.dropoff_lng is not None:
        dropoff = Location(row.dropoff_lat, row.dropoff_lng)
    ride = Ride(
        id=row.id,
        customer_id=row.customer_id,
        driver_id=row.driver_id,
        status=RideStatus(row.status),
        scheduled_time=as_utc(row.scheduled_time),
        pickup=pickup,
        dropoff=dropoff,
        fare=row.fare,
        currency=row.currency,
        cancellation_reason=row.cancellation_reason,
    )
    for name in _RIDE_TIMESTAMPS:
        setattr(ride, name, _utc_or_none(getattr(row, name)))
    return ride


def _row_values(ride: Ride) -> dict:
    values = {
        "customer_id": ride.customer_id,
        "driver_id": ride.driver_id,
        "status": ride.status,
        "scheduled_time": as_utc(ride.scheduled_time),
        "pickup_lat": ride.pickup.latitude if ride.pickup else None,
        "pickup_lng": ride.pickup.longitude if ride.pickup else None,
        "dropoff_lat": ride.dropoff.latitude if ride.dropoff else None,
        "dropoff_lng": ride.dropoff.longitude if ride.dropoff else None,
        "fare": ride.fare,
        "currency": ride.currency,
        "cancellation_reason": ride.cancellation_reason,
    }
    for name in _RIDE_TIMESTAMPS:
        values[name] = _utc_or_none(getattr(ride, name))
    return values


def _to_attempt(row: PaymentAttemptModel) -> PaymentAttempt:
    return PaymentAttempt(
        id=row.id,
        ride_id=row.ride_id,
        customer_id=row.customer_id,
        amount=row.amount,
        currency=row.currency,
        outcome=PaymentOutcome(row.outcome),
        reference=row.reference,
        created_at=_utc_or_none(row.created_at),
    )


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(
        self, ride: Ride, expected_status: Optional[RideStatus] = None
    ) -> Ride:
        """Insert a new ride or write *ride*'s state over the stored row.

        With *expected_status* the update only applies while the stored row
        still has that status (compare-and-set); otherwise
        ``InvalidTransitionError`` is raised and nothing is written.
        """
        if ride.id is None:
            row = RideModel(**_row_values(ride))
            self.session.add(row)
            await self.session.flush()
            ride.id = row.id
            return ride

        stmt = update(RideModel).where(RideModel.id == ride.id)
        if expected_status is not None:
            stmt = stmt.where(RideModel.status == expected_status)
        result = await self.session.execute(stmt.values(**_row_values(ride)))
        if result.rowcount == 0:
            if expected_status is None:
                raise RideNotFoundError(ride.id)
            raise InvalidTransitionError(
                f"Ride {ride.id} is no longer {expected_status.value}"
            )
        return ride

    async def find_by_customer(
        self,
        customer_id: str,
        status: Optional[RideStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Ride]:
        """A customer's rides, most recently scheduled first."""
        return await self._page(
            RideModel.customer_id == customer_id, status, limit, offset
        )

    async def find_by_driver(
        self,
        driver_id: str,
        status: Optional[RideStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Ride]:
        return await self._page(RideModel.driver_id == driver_id, status, limit, offset)

    async def _page(self, owner, status, limit, offset) -> list[Ride]:
        stmt = select(RideModel).where(owner)
        if status is not None:
            stmt = stmt.where(RideModel.status == status)
        stmt = (
            stmt.order_by(RideModel.scheduled_time.desc(), RideModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return [_to_ride(row) for row in result.scalars().all()]

    async def find_by_id(self, ride_id: int) -> Ride:
        row = await self.session.get(RideModel, ride_id)
        if row is None:
            raise RideNotFoundError(ride_id)
        return _to_ride(row)

    async def exists_by_driver_and_scheduled_time(
        self, driver_id: str, scheduled_time: datetime
    ) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    RideModel.driver_id == driver_id,
                    RideModel.scheduled_time == as_utc(scheduled_time),
                    RideModel.status != RideStatus.CANCELLED,
                )
            )
        )
        return bool(result.scalar())

    async def find_expired(self, cutoff: datetime) -> list[Ride]:
        """REQUESTED rides scheduled before *cutoff*, oldest first."""
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.status == RideStatus.REQUESTED,
                RideModel.scheduled_time < as_utc(cutoff),
            )
            .order_by(RideModel.scheduled_time)
        )
        return [_to_ride(row) for row in result.scalars().all()]


class PaymentAttemptRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        row = PaymentAttemptModel(
            ride_id=attempt.ride_id,
            customer_id=attempt.customer_id,
            amount=attempt.amount,
            currency=attempt.currency,
            outcome=attempt.outcome,
            reference=(attempt.reference or "")[:REFERENCE_LENGTH] or None,
            created_at=as_utc(attempt.created_at or utcnow()),
        )
        self.session.add(row)
        await self.session.flush()
        return _to_attempt(row)

    async def count_for_ride(self, ride_id: int, outcome: PaymentOutcome) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(PaymentAttemptModel)
            .where(
                PaymentAttemptModel.ride_id == ride_id,
                PaymentAttemptModel.outcome == outcome,
            )
        )
        return result.scalar_one()

    async def list_for_ride(self, ride_id: int) -> list[PaymentAttempt]:
        result = await self.session.execute(
            select(PaymentAttemptModel)
            .where(PaymentAttemptModel.ride_id == ride_id)
            .order_by(PaymentAttemptModel.id)
        )
        return [_to_attempt(row) for row in result.scalars().all()]


class PaymentMethodRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_customer(self, customer_id: str) -> Optional[PaymentMethod]:
        result = await self.session.execute(
            select(CustomerPaymentInfoModel).where(
                CustomerPaymentInfoModel.customer_id == customer_id
            )
        )
        row = result.scalar_one_or_none()
        if row is None or not row.default_payment_method_id:
            return None
        return PaymentMethod(
            customer_id=row.customer_id,
            gateway_customer_id=row.gateway_customer_id,
            method_id=row.default_payment_method_id,
        )

    async def upsert(self, method: PaymentMethod) -> PaymentMethod:
        result = await self.session.execute(
            select(CustomerPaymentInfoModel).where(
                CustomerPaymentInfoModel.customer_id == method.customer_id
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = CustomerPaymentInfoModel(customer_id=method.customer_id)
            self.session.add(row)
        row.gateway_customer_id = method.gateway_customer_id
        row.default_payment_method_id = method.method_id
        await self.session.flush()
        return method
