"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``lock_by_id`` is reserved for the
``LockCoordinator``; services never lock rows themselves.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AuditLogModel,
    DriverModel,
    FuelLogModel,
    MaintenanceLogModel,
    TripModel,
    VehicleModel,
)
from fleet.domain.enums import ACTIVE_TRIP_STATUSES, TripStatus


class _LockableRepository:
    model = None
    soft_deletes = False

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, entity_id: int, *, include_deleted: bool = False):
        row = await self.session.get(self.model, entity_id)
        if row is None:
            return None
        if self.soft_deletes and not include_deleted and row.deleted_at is not None:
            return None
        return row

    async def lock_by_id(self, entity_id: int, *, nowait: bool = True):
        """SELECT ... FOR UPDATE [NOWAIT] and refresh the identity map."""
        query = (
            select(self.model)
            .where(self.model.id == entity_id)
            .with_for_update(nowait=nowait)
            .execution_options(populate_existing=True)
        )
        if self.soft_deletes:
            query = query.where(self.model.deleted_at.is_(None))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_all(self, *, include_deleted: bool = False):
        query = select(self.model).order_by(self.model.id)
        if self.soft_deletes and not include_deleted:
            query = query.where(self.model.deleted_at.is_(None))
        result = await self.session.execute(query)
        return list(result.scalars().all())


class VehicleRepository(_LockableRepository):
    model = VehicleModel
    soft_deletes = True

    async def create(self, vehicle: VehicleModel) -> VehicleModel:
        self.session.add(vehicle)
        await self.session.flush()
        return vehicle

    async def get_by_plate(self, license_plate: str) -> Optional[VehicleModel]:
        # Includes soft-deleted rows: the plate column stays unique.
        result = await self.session.execute(
            select(VehicleModel).where(VehicleModel.license_plate == license_plate)
        )
        return result.scalar_one_or_none()

    async def has_active_trip(self, vehicle_id: int) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    TripModel.vehicle_id == vehicle_id,
                    TripModel.status.in_(ACTIVE_TRIP_STATUSES),
                )
            )
        )
        return bool(result.scalar())


class DriverRepository(_LockableRepository):
    model = DriverModel
    soft_deletes = True

    async def create(self, driver: DriverModel) -> DriverModel:
        self.session.add(driver)
        await self.session.flush()
        return driver

    async def has_active_trip(self, driver_id: int) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    TripModel.driver_id == driver_id,
                    TripModel.status.in_(ACTIVE_TRIP_STATUSES),
                )
            )
        )
        return bool(result.scalar())


class TripRepository(_LockableRepository):
    model = TripModel

    async def create_trip(
        self,
        *,
        vehicle_id: int,
        driver_id: int,
        cargo_weight_kg: float,
        start_odometer: int,
        idempotency_key: str | None = None,
        created_by: str | None = None,
    ) -> TripModel:
        """Insert a ``draft`` trip.  The flush is where the active-trip
        uniqueness constraint fires."""
        trip = TripModel(
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            cargo_weight_kg=cargo_weight_kg,
            start_odometer=start_odometer,
            idempotency_key=idempotency_key,
            created_by=created_by,
            status=TripStatus.DRAFT,
        )
        self.session.add(trip)
        await self.session.flush()
        return trip

    async def get_by_idempotency_key(self, key: str) -> Optional[TripModel]:
        result = await self.session.execute(
            select(TripModel).where(TripModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: TripStatus | None = None) -> list[TripModel]:
        query = select(TripModel).order_by(TripModel.id)
        if status is not None:
            query = query.where(TripModel.status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class FuelLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, log: FuelLogModel) -> FuelLogModel:
        self.session.add(log)
        await self.session.flush()
        return log

    async def for_trip(self, trip_id: int) -> list[FuelLogModel]:
        result = await self.session.execute(
            select(FuelLogModel).where(FuelLogModel.trip_id == trip_id)
        )
        return list(result.scalars().all())


class MaintenanceLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, log: MaintenanceLogModel) -> MaintenanceLogModel:
        self.session.add(log)
        await self.session.flush()
        return log

    async def for_vehicle(self, vehicle_id: int) -> list[MaintenanceLogModel]:
        result = await self.session.execute(
            select(MaintenanceLogModel)
            .where(MaintenanceLogModel.vehicle_id == vehicle_id)
            .order_by(MaintenanceLogModel.id)
        )
        return list(result.scalars().all())


class AuditLogRepository:
    """Append-only: there is deliberately no update or delete here."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, entry: AuditLogModel) -> AuditLogModel:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def trail(
        self, entity_type: str, entity_id: int, limit: int = 50
    ) -> list[AuditLogModel]:
        result = await self.session.execute(
            select(AuditLogModel)
            .where(
                AuditLogModel.entity_type == entity_type,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(AuditLogModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recent(
        self, limit: int = 100, entity_type: str | None = None
    ) -> list[AuditLogModel]:
        query = select(AuditLogModel).order_by(AuditLogModel.id.desc()).limit(limit)
        if entity_type:
            query = query.where(AuditLogModel.entity_type == entity_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())
