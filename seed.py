"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 5 customers with a default Stripe test payment method
  - 1 customer without one (to exercise the 402 path)
  - 6 sample rides across the lifecycle
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from ride_service.config import settings
from ride_service.domain.entities import Location, PaymentAttempt, PaymentMethod, Ride, utcnow
from ride_service.domain.enums import PaymentOutcome, RideStatus
from ride_service.domain.fare import FareCalculator
from ride_service.infrastructure.database import async_session_factory, engine
from ride_service.infrastructure.repositories import (
    PaymentAttemptRepository,
    PaymentMethodRepository,
    RideRepository,
)

# Downtown San Francisco (approx)
ORIGIN = Location(37.7749, -122.4194)

CUSTOMERS = [
    ("cust-ava", "cus_test_ava"),
    ("cust-ben", "cus_test_ben"),
    ("cust-chloe", "cus_test_chloe"),
    ("cust-dev", "cus_test_dev"),
    ("cust-eli", "cus_test_eli"),
]
CUSTOMER_WITHOUT_METHOD = "cust-finn"

RIDES = [
    # customer, destination, status, driver
    ("cust-ava", Location(37.7955, -122.3937), RideStatus.REQUESTED, None),
    ("cust-ben", Location(37.8080, -122.4177), RideStatus.ACCEPTED, "drv-1"),
    ("cust-chloe", Location(37.7599, -122.4148), RideStatus.DRIVER_EN_ROUTE, "drv-2"),
    ("cust-dev", Location(37.7694, -122.4862), RideStatus.COMPLETED, "drv-3"),
    ("cust-eli", Location(37.6213, -122.3790), RideStatus.CANCELLED, None),
    (CUSTOMER_WITHOUT_METHOD, Location(37.7849, -122.4094), RideStatus.DRIVER_EN_ROUTE, "drv-4"),
]


async def seed():
    fares = FareCalculator.from_settings(settings)
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM rides"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Payment methods ───────────────────────────────────────────
        methods = PaymentMethodRepository(session)
        for customer_id, gateway_id in CUSTOMERS:
            await methods.upsert(
                PaymentMethod(customer_id, gateway_id, "pm_card_visa")
            )
        print(f"  Created {len(CUSTOMERS)} payment methods")

        # ── Rides ─────────────────────────────────────────────────────
        rides = RideRepository(session)
        attempts = PaymentAttemptRepository(session)
        now = utcnow()
        for i, (customer_id, dropoff, status, driver_id) in enumerate(RIDES):
            ride = Ride(
                customer_id=customer_id,
                driver_id=driver_id,
                scheduled_time=now + timedelta(minutes=15 * (i + 1)),
                pickup=ORIGIN,
                dropoff=dropoff,
                fare=fares.estimate(ORIGIN, dropoff),
                currency=settings.currency,
                requested_at=now,
                status=status,
            )
            if status is RideStatus.CANCELLED:
                ride.cancellation_reason = "changed mind"
                ride.cancelled_at = now
            await rides.save(ride)
            if status is RideStatus.COMPLETED:
                # Completed rides passed STARTED, so they carry a paid attempt.
                await attempts.add(
                    PaymentAttempt(
                        ride_id=ride.id,
                        customer_id=customer_id,
                        amount=ride.fare,
                        currency=ride.currency,
                        outcome=PaymentOutcome.SUCCESS,
                        reference="pi_seed_completed",
                        created_at=now,
                    )
                )
        print(f"  Created {len(RIDES)} rides")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
