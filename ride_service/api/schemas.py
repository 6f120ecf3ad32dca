"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ride_service.domain.entities import Location
from ride_service.domain.enums import ErrorKind, PaymentOutcome, RideStatus


class LocationSchema(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    model_config = {"from_attributes": True}

    def to_domain(self) -> Location:
        return Location(self.latitude, self.longitude)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=64)
    scheduled_time: datetime = Field(
        ..., description="When the ride should start. Naive values are read as UTC."
    )
    pickup: Optional[LocationSchema] = None
    dropoff: Optional[LocationSchema] = None


class RideAcceptRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)


class RideAdvanceRequest(BaseModel):
    status: RideStatus


class RideCancelRequest(BaseModel):
    reason: str = Field("", max_length=255)


class PaymentMethodRequest(BaseModel):
    gateway_customer_id: str = Field(..., min_length=1, max_length=64)
    method_id: str = Field(..., min_length=1, max_length=64)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    customer_id: str
    driver_id: Optional[str] = None
    status: RideStatus
    scheduled_time: datetime
    pickup: Optional[LocationSchema] = None
    dropoff: Optional[LocationSchema] = None
    fare: float
    currency: str
    cancellation_reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentAttemptResponse(BaseModel):
    id: int
    ride_id: int
    amount: float
    currency: str
    outcome: PaymentOutcome
    reference: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentMethodResponse(BaseModel):
    customer_id: str
    gateway_customer_id: str
    method_id: str

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    kind: ErrorKind
