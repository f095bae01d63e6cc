"""
Single-entity operations on vehicles and drivers.

Registration, attribute updates, direct status changes, maintenance
and soft delete.  Status changes go through the same lock + guard +
audit path as the trip protocol; moving a resource into or out of
``on_trip`` is reserved to the trip protocol and refused here.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fleet.domain.enums import (
    AuditAction,
    DriverStatus,
    EntityType,
    VehicleStatus,
)
from fleet.domain.errors import IllegalStateTransition, RegistryRuleFailed
from fleet.infrastructure.models import (
    DriverModel,
    MaintenanceLogModel,
    VehicleModel,
    utcnow,
)
from fleet.infrastructure.repositories import (
    DriverRepository,
    MaintenanceLogRepository,
    VehicleRepository,
)
from fleet.infrastructure.transaction import TransactionContext
from fleet.services import audit
from fleet.services.state import TransitionResult, apply_transition

logger = logging.getLogger(__name__)

TRIP_MANAGED = {
    EntityType.VEHICLE: VehicleStatus.ON_TRIP,
    EntityType.DRIVER: DriverStatus.ON_TRIP,
}


# ── Registration ──────────────────────────────────────────────────────


async def create_vehicle(
    tx: TransactionContext,
    *,
    name_model: str,
    license_plate: str,
    max_load_kg: float,
    vehicle_class: Optional[str] = None,
    odometer: int = 0,
    service_due_km: Optional[int] = None,
    performed_by: Optional[str] = None,
) -> VehicleModel:
    repo = VehicleRepository(tx.session)
    if await repo.get_by_plate(license_plate):
        raise RegistryRuleFailed(
            "LICENSE_PLATE_IN_USE",
            f"A vehicle with plate {license_plate!r} is already registered.",
        )
    vehicle = await repo.create(
        VehicleModel(
            name_model=name_model,
            license_plate=license_plate,
            vehicle_class=vehicle_class,
            max_load_kg=max_load_kg,
            odometer=odometer,
            service_due_km=service_due_km,
            status=VehicleStatus.AVAILABLE,
        )
    )
    await audit.write_in_tx(
        tx.session, EntityType.VEHICLE, vehicle.id, AuditAction.VEHICLE_CREATED,
        performed_by=performed_by,
        metadata={"license_plate": license_plate, "max_load_kg": max_load_kg},
    )
    return vehicle


async def create_driver(
    tx: TransactionContext,
    *,
    name: str,
    license_expiry: date,
    license_category: Optional[str] = None,
    safety_score: int = 100,
    performed_by: Optional[str] = None,
) -> DriverModel:
    driver = await DriverRepository(tx.session).create(
        DriverModel(
            name=name,
            license_expiry=license_expiry,
            license_category=license_category,
            safety_score=safety_score,
            status=DriverStatus.OFF_DUTY,
        )
    )
    await audit.write_in_tx(
        tx.session, EntityType.DRIVER, driver.id, AuditAction.DRIVER_CREATED,
        performed_by=performed_by,
        metadata={"license_expiry": license_expiry.isoformat()},
    )
    return driver


# ── Attribute updates ─────────────────────────────────────────────────

# Status and odometer are excluded: they move only through guarded
# transitions and trip completion.
VEHICLE_EDITABLE = ("name_model", "vehicle_class", "max_load_kg", "service_due_km")
DRIVER_EDITABLE = ("name", "license_expiry", "license_category", "safety_score")


async def update_vehicle(
    tx: TransactionContext,
    vehicle_id: int,
    changes: dict,
    *,
    performed_by: Optional[str] = None,
) -> VehicleModel:
    tx.begin("update_vehicle", vehicle_id=vehicle_id)
    locked = await tx.locks.acquire(vehicle_id=vehicle_id)
    await _update_fields(
        tx, EntityType.VEHICLE, locked.vehicle, changes, VEHICLE_EDITABLE,
        AuditAction.VEHICLE_UPDATED, performed_by,
    )
    return locked.vehicle


async def update_driver(
    tx: TransactionContext,
    driver_id: int,
    changes: dict,
    *,
    performed_by: Optional[str] = None,
) -> DriverModel:
    """Edit a driver's record, e.g. a renewed license."""
    tx.begin("update_driver", driver_id=driver_id)
    locked = await tx.locks.acquire(driver_id=driver_id)
    await _update_fields(
        tx, EntityType.DRIVER, locked.driver, changes, DRIVER_EDITABLE,
        AuditAction.DRIVER_UPDATED, performed_by,
    )
    return locked.driver


async def _update_fields(
    tx: TransactionContext, entity_type, row, changes, editable, action, performed_by
) -> None:
    refused = sorted(set(changes) - set(editable))
    if refused:
        raise RegistryRuleFailed(
            "FIELD_NOT_EDITABLE",
            f"Cannot edit {', '.join(refused)} on a {entity_type.value}.",
        )

    diff = {}
    for field, value in changes.items():
        old = getattr(row, field)
        if old != value:
            diff[field] = {"from": _plain(old), "to": _plain(value)}
            setattr(row, field, value)
    if not diff:
        return

    await tx.session.flush()
    await audit.write_in_tx(
        tx.session, entity_type, row.id, action,
        performed_by=performed_by, metadata=diff,
    )
    logger.info("%s %s updated: %s", entity_type.value, row.id, ", ".join(diff))


def _plain(value):
    return value.isoformat() if isinstance(value, date) else value


# ── Direct status changes ─────────────────────────────────────────────


async def set_vehicle_status(
    tx: TransactionContext,
    vehicle_id: int,
    target: VehicleStatus,
    *,
    performed_by: Optional[str] = None,
) -> VehicleModel:
    op = tx.begin("set_vehicle_status", vehicle_id=vehicle_id, target=target.value)
    locked = await tx.locks.acquire(vehicle_id=vehicle_id)
    await _direct_transition(tx, EntityType.VEHICLE, locked.vehicle, target, performed_by, op)
    return locked.vehicle


async def retire_vehicle(
    tx: TransactionContext, vehicle_id: int, *, performed_by: Optional[str] = None
) -> VehicleModel:
    return await set_vehicle_status(
        tx, vehicle_id, VehicleStatus.RETIRED, performed_by=performed_by
    )


async def set_driver_status(
    tx: TransactionContext,
    driver_id: int,
    target: DriverStatus,
    *,
    performed_by: Optional[str] = None,
) -> DriverModel:
    op = tx.begin("set_driver_status", driver_id=driver_id, target=target.value)
    locked = await tx.locks.acquire(driver_id=driver_id)
    await _direct_transition(tx, EntityType.DRIVER, locked.driver, target, performed_by, op)
    return locked.driver


async def _direct_transition(
    tx: TransactionContext, entity_type: EntityType, row, target, performed_by, op
) -> TransitionResult:
    reserved = TRIP_MANAGED[entity_type]
    if row.status == reserved or target == reserved:
        raise IllegalStateTransition(
            "TRIP_MANAGED_TRANSITION",
            f"{entity_type.value.capitalize()} {row.id} can only enter or leave "
            f"'{reserved.value}' through trip dispatch, completion or cancellation.",
        )
    result = await apply_transition(
        tx, entity_type, row, target, performed_by=performed_by, op=op
    )
    logger.info(
        "%s %s: %s -> %s", entity_type.value, row.id, result.from_state, result.to_state
    )
    return result


# ── Maintenance ───────────────────────────────────────────────────────


async def log_maintenance(
    tx: TransactionContext,
    vehicle_id: int,
    *,
    cost: float,
    description: str,
    odometer_at_service: int,
    performed_by: Optional[str] = None,
) -> MaintenanceLogModel:
    """Record a service and send the vehicle to the shop."""
    op = tx.begin("log_maintenance", vehicle_id=vehicle_id)
    locked = await tx.locks.acquire(vehicle_id=vehicle_id)
    vehicle = locked.vehicle

    if vehicle.status != VehicleStatus.IN_SHOP:
        await _direct_transition(
            tx, EntityType.VEHICLE, vehicle, VehicleStatus.IN_SHOP, performed_by, op
        )

    log = await MaintenanceLogRepository(tx.session).create(
        MaintenanceLogModel(
            vehicle_id=vehicle.id,
            cost=cost,
            description=description,
            odometer_at_service=odometer_at_service,
        )
    )
    await audit.write_in_tx(
        tx.session, EntityType.VEHICLE, vehicle.id, AuditAction.MAINTENANCE_LOGGED,
        performed_by=performed_by,
        metadata={"maintenance_log_id": log.id, "cost": cost},
    )
    return log


# ── Soft delete ───────────────────────────────────────────────────────


async def delete_vehicle(
    tx: TransactionContext, vehicle_id: int, *, performed_by: Optional[str] = None
) -> VehicleModel:
    tx.begin("delete_vehicle", vehicle_id=vehicle_id)
    locked = await tx.locks.acquire(vehicle_id=vehicle_id)
    vehicle = locked.vehicle
    repo = VehicleRepository(tx.session)
    if vehicle.status == VehicleStatus.ON_TRIP or await repo.has_active_trip(vehicle.id):
        raise RegistryRuleFailed(
            "VEHICLE_HAS_ACTIVE_TRIP",
            f"Vehicle {vehicle.id} is bound to an active trip.",
        )
    vehicle.deleted_at = utcnow()
    await audit.write_in_tx(
        tx.session, EntityType.VEHICLE, vehicle.id, AuditAction.VEHICLE_DELETED,
        performed_by=performed_by, metadata={"status": VehicleStatus(vehicle.status).value},
    )
    return vehicle


async def delete_driver(
    tx: TransactionContext, driver_id: int, *, performed_by: Optional[str] = None
) -> DriverModel:
    tx.begin("delete_driver", driver_id=driver_id)
    locked = await tx.locks.acquire(driver_id=driver_id)
    driver = locked.driver
    repo = DriverRepository(tx.session)
    if driver.status == DriverStatus.ON_TRIP or await repo.has_active_trip(driver.id):
        raise RegistryRuleFailed(
            "DRIVER_HAS_ACTIVE_TRIP",
            f"Driver {driver.id} is bound to an active trip.",
        )
    driver.deleted_at = utcnow()
    await audit.write_in_tx(
        tx.session, EntityType.DRIVER, driver.id, AuditAction.DRIVER_DELETED,
        performed_by=performed_by, metadata={"status": DriverStatus(driver.status).value},
    )
    return driver
