"""
Ride service error taxonomy.

Every failure the service reports is a ``RideError`` tagged with exactly one
``ErrorKind``.  The subclasses exist so callers can ``except`` a specific
failure; each binds a single kind and the set is closed: defining a new
subclass without a kind, or reusing a kind, raises ``TypeError`` at import
time.  Code that needs to branch on failures should switch on ``err.kind``.
"""

from __future__ import annotations

from typing import ClassVar

from .enums import ErrorKind

_BOUND_KINDS: dict[ErrorKind, type] = {}


class RideError(Exception):
    kind: ClassVar[ErrorKind]

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        kind = cls.__dict__.get("kind")
        if not isinstance(kind, ErrorKind):
            raise TypeError(f"{cls.__name__} must bind an ErrorKind")
        if kind in _BOUND_KINDS:
            raise TypeError(
                f"{kind} already bound to {_BOUND_KINDS[kind].__name__}"
            )
        _BOUND_KINDS[kind] = cls

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class ValidationError(RideError):
    """Malformed input, e.g. a scheduled time in the past."""

    kind = ErrorKind.VALIDATION


class RideNotFoundError(RideError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, ride_id: int):
        super().__init__(f"Ride {ride_id} not found")
        self.ride_id = ride_id


class InvalidTransitionError(RideError):
    """Raised when a ride status change violates the state machine."""

    kind = ErrorKind.INVALID_TRANSITION


class DriverUnavailableError(RideError):
    """Driver already holds a live ride at the requested time."""

    kind = ErrorKind.DRIVER_UNAVAILABLE


class PaymentMethodMissingError(RideError):
    kind = ErrorKind.PAYMENT_METHOD_MISSING

    def __init__(self, customer_id: str):
        super().__init__(f"No default payment method for customer {customer_id}")
        self.customer_id = customer_id


class PaymentFailedError(RideError):
    """The gateway declined the charge.  Not retried."""

    kind = ErrorKind.PAYMENT_FAILED

    def __init__(self, message: str):
        super().__init__(f"Charge failed: {message}")


class PaymentServiceError(RideError):
    """Transport or infrastructure fault talking to the gateway."""

    kind = ErrorKind.PAYMENT_SERVICE

    def __init__(self, message: str = "Unexpected payment error"):
        super().__init__(message)


def error_class_for(kind: ErrorKind) -> type[RideError]:
    return _BOUND_KINDS[kind]
