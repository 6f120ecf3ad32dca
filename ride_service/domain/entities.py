"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (REQUESTED -> ACCEPTED -> DRIVER_EN_ROUTE -> STARTED -> IN_PROGRESS
  -> COMPLETED, with CANCELLED reachable from any non-terminal state).
- ``PaymentAttempt`` is a frozen record: written once, never updated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import PaymentOutcome, RideStatus, RIDE_TRANSITIONS
from .errors import InvalidTransitionError

# Status -> timestamp attribute stamped when the ride enters it
_STATUS_TIMESTAMPS: dict[RideStatus, str] = {
    RideStatus.ACCEPTED: "accepted_at",
    RideStatus.DRIVER_EN_ROUTE: "en_route_at",
    RideStatus.STARTED: "started_at",
    RideStatus.IN_PROGRESS: "in_progress_at",
    RideStatus.COMPLETED: "completed_at",
    RideStatus.CANCELLED: "cancelled_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PaymentMethod:
    customer_id: str
    gateway_customer_id: str
    method_id: str


@dataclass(frozen=True)
class ChargeResult:
    succeeded: bool
    reference: Optional[str] = None
    message: Optional[str] = None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    customer_id: str = ""
    driver_id: Optional[str] = None
    status: RideStatus = RideStatus.REQUESTED
    scheduled_time: datetime = field(default_factory=utcnow)
    pickup: Optional[Location] = None
    dropoff: Optional[Location] = None
    fare: float = 0.0
    currency: str = "usd"
    cancellation_reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    en_route_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition_to(self, new_status: RideStatus) -> bool:
        return new_status in RIDE_TRANSITIONS.get(self.status, set())

    def transition_to(
        self, new_status: RideStatus, at: Optional[datetime] = None
    ) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Cannot transition ride {self.id} from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status
        setattr(self, _STATUS_TIMESTAMPS[new_status], at or utcnow())


@dataclass(frozen=True)
class PaymentAttempt:
    ride_id: int
    customer_id: str
    amount: float
    outcome: PaymentOutcome
    currency: str = "usd"
    reference: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
