"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates, through the same services the API uses (so every row has its
audit trail):
  - 6 vehicles (one sent to the shop)
  - 5 drivers (four put on duty)
  - 1 dispatched trip and 1 draft trip
"""

import asyncio
from datetime import date, timedelta

from sqlalchemy import func, select

from fleet.config import settings
from fleet.domain.enums import DriverStatus
from fleet.infrastructure.database import async_session_factory, engine
from fleet.infrastructure.models import VehicleModel
from fleet.infrastructure.transaction import TransactionCoordinator
from fleet.services import dispatch, resources

ACTOR = "seed"

VEHICLES = [
    {"name_model": "Volvo FH16", "license_plate": "FL-1001", "vehicle_class": "heavy", "max_load_kg": 18000, "odometer": 120400, "service_due_km": 125000},
    {"name_model": "Scania R450", "license_plate": "FL-1002", "vehicle_class": "heavy", "max_load_kg": 16000, "odometer": 98000, "service_due_km": 100000},
    {"name_model": "Mercedes Sprinter", "license_plate": "FL-2001", "vehicle_class": "van", "max_load_kg": 1400, "odometer": 45200, "service_due_km": 60000},
    {"name_model": "Ford Transit", "license_plate": "FL-2002", "vehicle_class": "van", "max_load_kg": 1200, "odometer": 59800, "service_due_km": 60000},
    {"name_model": "Isuzu NPR", "license_plate": "FL-3001", "vehicle_class": "medium", "max_load_kg": 4500, "odometer": 30500, "service_due_km": 40000},
    {"name_model": "Iveco Daily", "license_plate": "FL-3002", "vehicle_class": "medium", "max_load_kg": 3500, "odometer": 72000, "service_due_km": 70000},
]

DRIVERS = [
    {"name": "Aarav Sharma", "license_category": "heavy", "years": 3, "on_duty": True},
    {"name": "Priya Patel", "license_category": "van", "years": 2, "on_duty": True},
    {"name": "Rohan Mehta", "license_category": "medium", "years": 1, "on_duty": True},
    {"name": "Sneha Gupta", "license_category": "van", "years": 4, "on_duty": True},
    {"name": "Vikram Singh", "license_category": "heavy", "years": 1, "on_duty": False},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count(VehicleModel.id)))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    coordinator = TransactionCoordinator(
        async_session_factory, default_isolation=settings.default_isolation
    )

    # ── Vehicles ──────────────────────────────────────────────────────
    vehicles = []
    async with coordinator.transaction() as tx:
        for v in VEHICLES:
            vehicles.append(await resources.create_vehicle(tx, **v, performed_by=ACTOR))
    print(f"  Created {len(vehicles)} vehicles")

    async with coordinator.transaction() as tx:
        await resources.log_maintenance(
            tx,
            vehicles[-1].id,
            cost=480.0,
            description="Brake pads and 70k service",
            odometer_at_service=vehicles[-1].odometer,
            performed_by=ACTOR,
        )
    print("  Sent 1 vehicle to the shop")

    # ── Drivers ───────────────────────────────────────────────────────
    drivers = []
    async with coordinator.transaction() as tx:
        for d in DRIVERS:
            driver = await resources.create_driver(
                tx,
                name=d["name"],
                license_expiry=date.today() + timedelta(days=365 * d["years"]),
                license_category=d["license_category"],
                performed_by=ACTOR,
            )
            drivers.append((driver, d["on_duty"]))
    for driver, on_duty in drivers:
        if on_duty:
            async with coordinator.transaction() as tx:
                await resources.set_driver_status(
                    tx, driver.id, DriverStatus.ON_DUTY, performed_by=ACTOR
                )
    print(f"  Created {len(drivers)} drivers")

    # ── Trips ─────────────────────────────────────────────────────────
    async with coordinator.transaction(settings.dispatch_isolation) as tx:
        await dispatch.create_trip(
            tx,
            vehicle_id=vehicles[0].id,
            driver_id=drivers[0][0].id,
            cargo_weight_kg=12500,
            idempotency_key="seed-trip-1",
            performed_by=ACTOR,
        )
    async with coordinator.transaction(settings.dispatch_isolation) as tx:
        await dispatch.create_trip(
            tx,
            vehicle_id=vehicles[2].id,
            driver_id=drivers[1][0].id,
            cargo_weight_kg=900,
            dispatch=False,
            idempotency_key="seed-trip-2",
            performed_by=ACTOR,
        )
    print("  Created 1 dispatched and 1 draft trip")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
