"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 6 customers and 3 driver accounts
  - 1 car per driver
  - 12 sample car bookings (mostly COMPLETED, one IN_PROGRESS, one CONFIRMED)
  - 4 disputes against the first driver, so the next one raised through
    the API yields a warning and a 3-day suspension
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from discipline.domain.enums import (
    BookingStatus,
    DisputeActor,
    DisputeStatus,
    UserRole,
)
from discipline.infrastructure.database import async_session_factory, engine
from discipline.infrastructure.models import (
    CarBookingModel,
    CarModel,
    DisputeModel,
    DriverModel,
    UserModel,
)

ADMINS = [
    {"name": "Ops Admin", "email": "admin@example.com"},
]

CUSTOMERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com"},
    {"name": "Priya Patel", "email": "priya@example.com"},
    {"name": "Rohan Mehta", "email": "rohan@example.com"},
    {"name": "Sneha Gupta", "email": "sneha@example.com"},
    {"name": "Vikram Singh", "email": "vikram@example.com"},
    {"name": "Ananya Reddy", "email": "ananya@example.com"},
]

DRIVERS = [
    {"name": "Karan Joshi", "email": "karan@example.com", "car": "Toyota Innova"},
    {"name": "Meera Nair", "email": "meera@example.com", "car": "Maruti Dzire"},
    {"name": "Arjun Kumar", "email": "arjun@example.com", "car": "Hyundai Aura"},
]

COMPLAINTS = [
    "Driver arrived 40 minutes late",
    "Car was not clean",
    "Driver took a much longer route",
    "Driver was rude at pickup",
]


async def seed():
    now = datetime.now(timezone.utc)

    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Accounts ──────────────────────────────────────────────────
        for a in ADMINS:
            session.add(UserModel(name=a["name"], email=a["email"], role=UserRole.ADMIN))

        customers = []
        for c in CUSTOMERS:
            m = UserModel(name=c["name"], email=c["email"], role=UserRole.CUSTOMER)
            session.add(m)
            customers.append(m)

        driver_accounts = []
        for d in DRIVERS:
            m = UserModel(name=d["name"], email=d["email"], role=UserRole.DRIVER)
            session.add(m)
            driver_accounts.append(m)
        await session.flush()
        print(f"  Created {len(ADMINS) + len(customers) + len(driver_accounts)} users")

        # ── Drivers & cars ────────────────────────────────────────────
        drivers = []
        cars = []
        for account, d in zip(driver_accounts, DRIVERS):
            driver = DriverModel(user_id=account.id, is_verified=True)
            session.add(driver)
            await session.flush()
            car = CarModel(driver_id=driver.id, model=d["car"], is_active=True)
            session.add(car)
            drivers.append(driver)
            cars.append(car)
        await session.flush()
        print(f"  Created {len(drivers)} drivers with {len(cars)} cars")

        # ── Bookings ──────────────────────────────────────────────────
        bookings = []
        for i in range(10):
            started = now - timedelta(days=20 - i)
            booking = CarBookingModel(
                car_id=cars[i % 2].id,
                user_id=customers[i % len(customers)].id,
                status=BookingStatus.COMPLETED,
                started_at=started,
                completed_at=started + timedelta(hours=1),
                created_at=started - timedelta(hours=2),
            )
            session.add(booking)
            bookings.append(booking)

        # Driver 2 is mid-trip: any sanction for them is held
        session.add(
            CarBookingModel(
                car_id=cars[1].id,
                user_id=customers[0].id,
                status=BookingStatus.IN_PROGRESS,
                started_at=now - timedelta(minutes=15),
                created_at=now - timedelta(hours=1),
            )
        )
        session.add(
            CarBookingModel(
                car_id=cars[2].id,
                user_id=customers[1].id,
                status=BookingStatus.CONFIRMED,
                created_at=now - timedelta(hours=3),
            )
        )
        await session.flush()
        print(f"  Created {len(bookings) + 2} bookings")

        # ── Disputes ──────────────────────────────────────────────────
        driver_one_bookings = [b for b in bookings if b.car_id == cars[0].id]
        for booking, complaint in zip(driver_one_bookings, COMPLAINTS):
            session.add(
                DisputeModel(
                    booking_car_id=booking.id,
                    raised_by=DisputeActor.CUSTOMER,
                    description=complaint,
                    status=DisputeStatus.PENDING,
                    created_at=booking.completed_at,
                )
            )
        await session.flush()
        print(f"  Created {min(len(driver_one_bookings), len(COMPLAINTS))} disputes")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
