"""
Shared test fixtures.

Each test gets its own in-memory SQLite database (via aiosqlite), built
from the production models, so tests run without Docker / PostgreSQL.
SQLite ignores ``FOR UPDATE`` but does enforce the partial unique indexes
on active trips, which is what the double-dispatch tests rely on.
"""

import uuid
from datetime import date, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fleet.domain.enums import DriverStatus, TripStatus, VehicleStatus
from fleet.infrastructure.database import Base, build_engine
from fleet.infrastructure.models import (
    AuditLogModel,
    DriverModel,
    TripModel,
    VehicleModel,
)
from fleet.infrastructure.transaction import TransactionCoordinator

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ── Row builders ──────────────────────────────────────────────────────


def vehicle_row(**overrides) -> VehicleModel:
    values = {
        "name_model": "Volvo FH16",
        "license_plate": f"TEST-{uuid.uuid4().hex[:8].upper()}",
        "vehicle_class": "heavy",
        "max_load_kg": 1000.0,
        "odometer": 10000,
        "service_due_km": 50000,
        "status": VehicleStatus.AVAILABLE,
    }
    values.update(overrides)
    return VehicleModel(**values)


def driver_row(**overrides) -> DriverModel:
    values = {
        "name": "Test Driver",
        "license_expiry": date.today() + timedelta(days=365),
        "license_category": "heavy",
        "safety_score": 100,
        "status": DriverStatus.ON_DUTY,
    }
    values.update(overrides)
    return DriverModel(**values)


def trip_row(vehicle, driver, **overrides) -> TripModel:
    values = {
        "vehicle_id": vehicle.id,
        "driver_id": driver.id,
        "cargo_weight_kg": 100.0,
        "start_odometer": vehicle.odometer,
        "status": TripStatus.DRAFT,
    }
    values.update(overrides)
    return TripModel(**values)


async def add_rows(session_factory, *rows):
    """Insert rows in their own committed transaction and return them."""
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return rows


async def fetch(session_factory, model, entity_id):
    async with session_factory() as session:
        return await session.get(model, entity_id)


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar()


async def audit_actions(session_factory, entity_type=None, entity_id=None) -> list[str]:
    """Audit actions oldest first, optionally for one entity."""
    query = select(AuditLogModel).order_by(AuditLogModel.id)
    if entity_type is not None:
        query = query.where(AuditLogModel.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLogModel.entity_id == entity_id)
    async with session_factory() as session:
        result = await session.execute(query)
        return [row.action for row in result.scalars().all()]


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with every table created."""
    engine = build_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def coordinator(session_factory) -> TransactionCoordinator:
    return TransactionCoordinator(session_factory)


@pytest_asyncio.fixture
async def vehicle(session_factory) -> VehicleModel:
    (row,) = await add_rows(session_factory, vehicle_row())
    return row


@pytest_asyncio.fixture
async def driver(session_factory) -> DriverModel:
    (row,) = await add_rows(session_factory, driver_row())
    return row
