"""
SQLAlchemy ORM models.

Tables
------
* ``rides``                 -- ride lifecycle rows, one per ride
* ``payment_attempts``      -- append-only log of charges made at STARTED
* ``customer_payment_info`` -- gateway customer + default payment method

Indexes
-------
* **B-Tree** on ``status``, ``customer_id`` and ``(driver_id, scheduled_time)``
  for the double-booking check and the expiry sweep.
* ``payment_attempts.ride_id`` for per-ride attempt look-ups.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)

from .database import Base
from ride_service.domain.enums import PaymentOutcome, RideStatus

REFERENCE_LENGTH = 255


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=True)
    status = Column(Enum(RideStatus), default=RideStatus.REQUESTED, nullable=False)
    scheduled_time = Column(DateTime(timezone=True), nullable=False)

    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)

    fare = Column(Float, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    cancellation_reason = Column(String(255), nullable=True)

    requested_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    en_route_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    in_progress_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_customer", "customer_id"),
        Index("idx_rides_driver_time", "driver_id", "scheduled_time"),
    )


class PaymentAttemptModel(Base):
    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    customer_id = Column(String(64), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    outcome = Column(Enum(PaymentOutcome), nullable=False)
    reference = Column(String(REFERENCE_LENGTH), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_payment_attempts_ride", "ride_id"),)


class CustomerPaymentInfoModel(Base):
    __tablename__ = "customer_payment_info"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(64), unique=True, nullable=False)
    gateway_customer_id = Column(String(64), nullable=False)
    default_payment_method_id = Column(String(64), nullable=True)
