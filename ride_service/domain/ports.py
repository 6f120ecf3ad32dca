"""
Collaborator contracts consumed by ``RideLifecycleManager``.

The SQLAlchemy repositories and the Stripe gateway in
``ride_service.infrastructure`` implement them; tests substitute fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from .entities import ChargeResult, PaymentMethod, Ride
from .enums import RideStatus


class PaymentGateway(Protocol):
    async def get_default_method(self, customer_id: str) -> Optional[PaymentMethod]:
        """Return the customer's chargeable method, or ``None`` if absent."""

    async def charge(
        self,
        method: PaymentMethod,
        amount: float,
        currency: str,
        *,
        idempotency_key: str,
    ) -> ChargeResult:
        """Charge *amount* against *method*.

        A decline is reported as ``ChargeResult(succeeded=False)``.
        Transport and provider faults raise ``PaymentServiceError``.
        Repeating a call with the same *idempotency_key* must not charge
        twice.
        """


class RideRepository(Protocol):
    async def save(
        self, ride: Ride, expected_status: Optional[RideStatus] = None
    ) -> Ride:
        """Insert or update *ride*; returns it with ``id`` populated.

        An update with *expected_status* raises ``InvalidTransitionError``
        if the stored ride has moved on from that status.
        """

    async def find_by_id(self, ride_id: int) -> Ride:
        """Return the ride or raise ``RideNotFoundError``."""

    async def exists_by_driver_and_scheduled_time(
        self, driver_id: str, scheduled_time: datetime
    ) -> bool:
        """True if *driver_id* holds a non-cancelled ride at *scheduled_time*."""
