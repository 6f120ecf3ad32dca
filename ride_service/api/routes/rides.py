"""
Ride endpoints
==============

POST /api/v1/rides                    -- request a ride (201 Created)
GET  /api/v1/rides?customer_id=|driver_id=  -- ride history, newest first
GET  /api/v1/rides/{ride_id}          -- current status and fare
POST /api/v1/rides/{ride_id}/accept   -- assign a driver
POST /api/v1/rides/{ride_id}/advance  -- move along the lifecycle
POST /api/v1/rides/{ride_id}/cancel   -- cancel a non-terminal ride
GET  /api/v1/rides/{ride_id}/payments -- payment attempts for the ride

Lifecycle errors are rendered by ``ride_error_handler``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ride_service.api.dependencies import get_manager
from ride_service.api.middleware import limiter
from ride_service.api.schemas import (
    ErrorResponse,
    PaymentAttemptResponse,
    RideAcceptRequest,
    RideAdvanceRequest,
    RideCancelRequest,
    RideCreateRequest,
    RideResponse,
)
from ride_service.domain.enums import RideStatus
from ride_service.services.lifecycle import RideLifecycleManager

router = APIRouter(prefix="/rides", tags=["rides"])

_ERRORS = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Request a ride",
    responses={422: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    manager: RideLifecycleManager = Depends(get_manager),
):
    ride = await manager.request_ride(
        body.customer_id,
        body.scheduled_time,
        pickup=body.pickup.to_domain() if body.pickup else None,
        dropoff=body.dropoff.to_domain() if body.dropoff else None,
    )
    return RideResponse.model_validate(ride)


@router.get(
    "",
    response_model=list[RideResponse],
    summary="Ride history for a customer or a driver",
    responses={422: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def list_rides(
    request: Request,
    customer_id: Optional[str] = Query(None, max_length=64),
    driver_id: Optional[str] = Query(None, max_length=64),
    status: Optional[RideStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    manager: RideLifecycleManager = Depends(get_manager),
):
    rides = await manager.list_rides(
        customer_id=customer_id,
        driver_id=driver_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    return [RideResponse.model_validate(r) for r in rides]


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride status and fare",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: int,
    manager: RideLifecycleManager = Depends(get_manager),
):
    return RideResponse.model_validate(await manager.get_ride(ride_id))


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Assign a driver to a requested ride",
    responses=_ERRORS,
)
@limiter.limit("100/minute")
async def accept_ride(
    request: Request,
    ride_id: int,
    body: RideAcceptRequest,
    manager: RideLifecycleManager = Depends(get_manager),
):
    ride = await manager.accept_ride(ride_id, body.driver_id)
    return RideResponse.model_validate(ride)


@router.post(
    "/{ride_id}/advance",
    response_model=RideResponse,
    summary="Advance a ride to the next status",
    description=(
        "Moving to STARTED charges the ride fare to the customer's default "
        "payment method first. 402 means the customer must act (no method, "
        "declined card); 503 is a gateway fault and can be retried."
    ),
    responses={
        **_ERRORS,
        402: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
@limiter.limit("100/minute")
async def advance_ride(
    request: Request,
    ride_id: int,
    body: RideAdvanceRequest,
    manager: RideLifecycleManager = Depends(get_manager),
):
    ride = await manager.advance(ride_id, body.status)
    return RideResponse.model_validate(ride)


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    responses=_ERRORS,
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: RideCancelRequest,
    manager: RideLifecycleManager = Depends(get_manager),
):
    ride = await manager.cancel(ride_id, body.reason)
    return RideResponse.model_validate(ride)


@router.get(
    "/{ride_id}/payments",
    response_model=list[PaymentAttemptResponse],
    summary="List payment attempts for a ride",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def list_payments(
    request: Request,
    ride_id: int,
    manager: RideLifecycleManager = Depends(get_manager),
):
    attempts = await manager.list_payment_attempts(ride_id)
    return [PaymentAttemptResponse.model_validate(a) for a in attempts]
