"""
Customer payment endpoints
==========================

PUT /api/v1/customers/{customer_id}/payment-method -- set the default method
GET /api/v1/customers/{customer_id}/payment-method -- read it back
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_service.api.dependencies import get_db
from ride_service.api.middleware import limiter
from ride_service.api.schemas import PaymentMethodRequest, PaymentMethodResponse
from ride_service.domain.entities import PaymentMethod
from ride_service.infrastructure.repositories import PaymentMethodRepository

router = APIRouter(prefix="/customers", tags=["customers"])


@router.put(
    "/{customer_id}/payment-method",
    response_model=PaymentMethodResponse,
    summary="Set the customer's default payment method",
)
@limiter.limit("100/minute")
async def set_payment_method(
    request: Request,
    customer_id: str,
    body: PaymentMethodRequest,
    db: AsyncSession = Depends(get_db),
):
    method = await PaymentMethodRepository(db).upsert(
        PaymentMethod(
            customer_id=customer_id,
            gateway_customer_id=body.gateway_customer_id,
            method_id=body.method_id,
        )
    )
    return PaymentMethodResponse.model_validate(method)


@router.get(
    "/{customer_id}/payment-method",
    response_model=PaymentMethodResponse,
    summary="Get the customer's default payment method",
)
@limiter.limit("100/minute")
async def get_payment_method(
    request: Request,
    customer_id: str,
    db: AsyncSession = Depends(get_db),
):
    method = await PaymentMethodRepository(db).get_by_customer(customer_id)
    if method is None:
        raise HTTPException(status_code=404, detail="No default payment method")
    return PaymentMethodResponse.model_validate(method)
