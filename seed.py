"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 partner drivers (unverified, pending, verified x3, declined)
  - the three required documents for every driver past ``unverified``
  - 8 sample trips (mix of pending, accepted, in_progress, completed, cancelled)
  - one payment per trip (card for most, cash for two)
  - 2 partner invite links (one active, one already past its expiry)
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import text

from transferhub.domain.clock import SystemClock
from transferhub.domain.entities import Document, Driver, InviteLink, Payment, Trip
from transferhub.domain.enums import (
    REQUIRED_DOC_TYPES,
    PaymentMethod,
    PaymentStatus,
    TripStatus,
    VerificationStatus,
)
from transferhub.infrastructure.database import async_session_factory, engine
from transferhub.infrastructure.repositories import (
    DocumentRepository,
    DriverRepository,
    InviteLinkRepository,
    PaymentRepository,
    TripRepository,
)

DRIVERS = [
    {"account_id": "partner-anna", "status": VerificationStatus.UNVERIFIED, "available": False},
    {"account_id": "partner-bruno", "status": VerificationStatus.PENDING, "available": False},
    {"account_id": "partner-chiara", "status": VerificationStatus.VERIFIED, "available": True},
    {"account_id": "partner-dario", "status": VerificationStatus.VERIFIED, "available": True},
    {"account_id": "partner-elena", "status": VerificationStatus.VERIFIED, "available": False},
    {"account_id": "partner-franco", "status": VerificationStatus.DECLINED, "available": False},
]

ROUTES = [
    ("Airport Terminal 1", "Hotel Excelsior, Via Veneto"),
    ("Central Station", "Airport Terminal 2"),
    ("Airport Terminal 1", "Cruise Port, Pier 3"),
    ("Hotel Artemide", "Airport Terminal 1"),
    ("Airport Terminal 2", "Villa Borghese"),
    ("Airport Terminal 1", "Trastevere"),
    ("Vatican Museums", "Airport Terminal 1"),
    ("Airport Terminal 3", "Termini"),
]


async def seed():
    clock = SystemClock()
    now = clock.now()

    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM drivers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        drivers_repo = DriverRepository(session)
        docs_repo = DocumentRepository(session)
        trips_repo = TripRepository(session)
        payments_repo = PaymentRepository(session)

        # ── Drivers + documents ───────────────────────────────────────
        drivers = []
        for d in DRIVERS:
            driver = await drivers_repo.create(Driver(account_id=d["account_id"]))
            if d["status"] != VerificationStatus.UNVERIFIED:
                for doc_type in REQUIRED_DOC_TYPES:
                    await docs_repo.replace(
                        Document(
                            driver_id=driver.id,
                            doc_type=doc_type,
                            storage_location=f"s3://transferhub-docs/{d['account_id']}/{doc_type.value}.pdf",
                            name=f"{doc_type.value}.pdf",
                            expiry_date=now + timedelta(days=365),
                            uploaded_at=now,
                        )
                    )
            expected = driver.guard()
            driver.verification_status = d["status"]
            driver.is_available = d["available"]
            if d["status"] == VerificationStatus.VERIFIED:
                driver.verified_at = now
                await docs_repo.mark_verified(driver.id)
            if d["status"] == VerificationStatus.DECLINED:
                driver.decline_reason = "Insurance certificate is illegible."
            await drivers_repo.save_if(driver, expected)
            drivers.append(driver)
        print(f"  Created {len(drivers)} drivers")

        # ── Trips + payments ──────────────────────────────────────────
        verified = [d for d in drivers if d.verification_status == VerificationStatus.VERIFIED]
        plan = [
            (TripStatus.PENDING, None, PaymentMethod.CARD),
            (TripStatus.PENDING, None, PaymentMethod.CASH),
            (TripStatus.PENDING, verified[0], PaymentMethod.CARD),
            (TripStatus.ACCEPTED, verified[1], PaymentMethod.CARD),
            (TripStatus.IN_PROGRESS, verified[0], PaymentMethod.CARD),
            (TripStatus.COMPLETED, verified[2], PaymentMethod.CASH),
            (TripStatus.COMPLETED, verified[1], PaymentMethod.CARD),
            (TripStatus.CANCELLED, None, PaymentMethod.CARD),
        ]
        for i, ((status, driver, method), (pickup, dropoff)) in enumerate(zip(plan, ROUTES)):
            price = Decimal("65.00") + Decimal(i * 10)
            trip = await trips_repo.create(
                Trip(
                    customer_id=f"customer-{i % 4 + 1}",
                    pickup_location=pickup,
                    dropoff_location=dropoff,
                    scheduled_at=now + timedelta(hours=6 * (i - 3)),
                    estimated_price=price,
                    vehicle="sedan" if i % 3 else "van",
                )
            )
            expected = trip.guard()
            if driver is not None:
                trip.assign_driver(driver.id)
            if status != TripStatus.PENDING:
                trip.override_status(status, now)
            await trips_repo.save_if(trip, expected)

            await payments_repo.create(
                Payment(
                    trip_id=trip.id,
                    amount=price,
                    method=method,
                    status=(
                        PaymentStatus.COMPLETED
                        if method == PaymentMethod.CARD
                        else PaymentStatus.PENDING
                    ),
                    gateway_reference=f"pi_seed_{i:04d}" if method == PaymentMethod.CARD else None,
                    paid_at=now if method == PaymentMethod.CARD else None,
                )
            )
        print(f"  Created {len(plan)} trips with payments")

        # ── Invites ───────────────────────────────────────────────────
        invites_repo = InviteLinkRepository(session)
        await invites_repo.create(
            InviteLink(
                code="seed-invite-active",
                role="partner",
                created_by="admin-seed",
                expires_at=now + timedelta(days=3),
            )
        )
        await invites_repo.create(
            InviteLink(
                code="seed-invite-stale",
                role="partner",
                created_by="admin-seed",
                expires_at=now - timedelta(days=1),
            )
        )
        print("  Created 2 invite links")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
