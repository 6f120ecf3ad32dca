"""Tests for the Stripe payment gateway (Stripe API mocked)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from ride_service.domain.entities import PaymentMethod
from ride_service.domain.errors import PaymentServiceError
from ride_service.infrastructure.payments import StripePaymentGateway, to_minor_units
from ride_service.infrastructure.repositories import PaymentMethodRepository

METHOD = PaymentMethod("cust-1", "cus_123", "pm_card_visa")


def _intent(status: str = "succeeded", intent_id: str = "pi_123"):
    return SimpleNamespace(id=intent_id, status=status)


@pytest.fixture
def stripe_gateway(session_factory) -> StripePaymentGateway:
    return StripePaymentGateway(session_factory, api_key="sk_test_123")


def test_minor_units():
    assert to_minor_units(15.25) == 1525
    assert to_minor_units(0.1 + 0.2) == 30
    assert to_minor_units(25) == 2500


class TestCharge:
    @pytest.mark.asyncio
    async def test_success(self, stripe_gateway):
        with patch.object(
            stripe.PaymentIntent, "create", return_value=_intent()
        ) as create:
            result = await stripe_gateway.charge(
                METHOD, 15.25, "usd", idempotency_key="ride-7-start-0"
            )

        assert result.succeeded
        assert result.reference == "pi_123"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 1525
        assert kwargs["currency"] == "usd"
        assert kwargs["customer"] == "cus_123"
        assert kwargs["payment_method"] == "pm_card_visa"
        assert kwargs["confirm"] is True
        assert kwargs["off_session"] is True
        assert kwargs["idempotency_key"] == "ride-7-start-0"
        assert kwargs["api_key"] == "sk_test_123"

    @pytest.mark.asyncio
    async def test_card_error_is_a_decline(self, stripe_gateway):
        declined = stripe.CardError(
            "Your card was declined.", param=None, code="card_declined"
        )
        with patch.object(stripe.PaymentIntent, "create", side_effect=declined):
            result = await stripe_gateway.charge(
                METHOD, 10.0, "usd", idempotency_key="ride-1-start-0"
            )

        assert not result.succeeded
        assert "declined" in result.message

    @pytest.mark.asyncio
    async def test_other_stripe_error_is_service_error(self, stripe_gateway):
        outage = stripe.APIConnectionError("network unreachable")
        with patch.object(stripe.PaymentIntent, "create", side_effect=outage):
            with pytest.raises(PaymentServiceError) as exc_info:
                await stripe_gateway.charge(
                    METHOD, 10.0, "usd", idempotency_key="ride-1-start-0"
                )

        assert exc_info.value.retryable
        assert "network unreachable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unconfirmed_intent_is_a_decline(self, stripe_gateway):
        with patch.object(
            stripe.PaymentIntent,
            "create",
            return_value=_intent(status="requires_action", intent_id="pi_9"),
        ):
            result = await stripe_gateway.charge(
                METHOD, 10.0, "usd", idempotency_key="ride-1-start-0"
            )

        assert not result.succeeded
        assert result.reference == "pi_9"
        assert "requires_action" in result.message


class TestDefaultMethod:
    @pytest.mark.asyncio
    async def test_missing_method_is_none(self, stripe_gateway):
        assert await stripe_gateway.get_default_method("nobody") is None

    @pytest.mark.asyncio
    async def test_reads_stored_method(self, stripe_gateway, session_factory):
        async with session_factory() as session:
            await PaymentMethodRepository(session).upsert(METHOD)
            await session.commit()

        assert await stripe_gateway.get_default_method("cust-1") == METHOD
