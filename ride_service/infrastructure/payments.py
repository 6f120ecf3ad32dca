"""
Stripe-backed ``PaymentGateway``.

The default payment method lives in ``customer_payment_info``; a charge is
an off-session ``PaymentIntent`` created and confirmed in one call.

Error mapping
-------------
* ``stripe.CardError``     -> ``ChargeResult(succeeded=False)`` (decline)
* any other ``StripeError`` -> ``PaymentServiceError`` (retryable)

The Stripe client is synchronous, so calls run in a worker thread to keep
the event loop free while the per-ride lock is held.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repositories import PaymentMethodRepository
from ride_service.domain.entities import ChargeResult, PaymentMethod
from ride_service.domain.errors import PaymentServiceError

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    """Dollars to cents, rounded half away from zero."""
    return int(round(amount * 100))


class StripePaymentGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        api_key: str = "",
    ):
        self.session_factory = session_factory
        self.api_key = api_key

    async def get_default_method(self, customer_id: str) -> Optional[PaymentMethod]:
        async with self.session_factory() as session:
            return await PaymentMethodRepository(session).get_by_customer(
                customer_id
            )

    async def charge(
        self,
        method: PaymentMethod,
        amount: float,
        currency: str,
        *,
        idempotency_key: str,
    ) -> ChargeResult:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=to_minor_units(amount),
                currency=currency,
                customer=method.gateway_customer_id,
                payment_method=method.method_id,
                off_session=True,
                confirm=True,
                metadata={"customer_id": method.customer_id},
                idempotency_key=idempotency_key,
                api_key=self.api_key or None,
            )
        except stripe.CardError as exc:
            logger.warning(
                "Card declined for customer %s: %s", method.customer_id, exc
            )
            return ChargeResult(succeeded=False, message=exc.user_message or str(exc))
        except stripe.StripeError as exc:
            raise PaymentServiceError(f"Unexpected payment error: {exc}") from exc

        if intent.status != "succeeded":
            return ChargeResult(
                succeeded=False,
                reference=intent.id,
                message=f"payment intent {intent.status}",
            )
        return ChargeResult(succeeded=True, reference=intent.id)
