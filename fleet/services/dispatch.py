"""
Transactional dispatch protocol
===============================

Create (dispatch), complete and cancel trips.  Each function receives the
caller's ``TransactionContext`` and runs as one indivisible unit inside
it:

    Validating -> Locking -> Guarding -> Mutating -> Auditing -> Committed
                                   (any step) -> Aborted

Concurrency safety
------------------
* Rows are locked ``FOR UPDATE NOWAIT`` through ``tx.locks`` in the fixed
  order vehicle -> driver -> trip; a held lock fails fast as
  ``RESOURCE_LOCKED``.
* Preconditions are evaluated against the *locked* snapshot only.
* The partial unique indexes on active trips are the final tie-breaker:
  a losing insert surfaces as ``DOUBLE_DISPATCH_PREVENTED``.
* The dispatch path is expected to run at SERIALIZABLE isolation so that
  write skew between two validations is caught at commit.

Trip-first operations (complete, cancel, dispatch-by-id) read the trip
unlocked only to learn its vehicle and driver, then lock all three in
order and re-check everything from the locked rows.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from fleet.domain import state_machine
from fleet.domain.enums import (
    AuditAction,
    DispatchPhase,
    DriverStatus,
    EntityType,
    TripStatus,
    VehicleStatus,
)
from fleet.domain.errors import (
    ConcurrencyConflict,
    ConflictReason,
    NotFound,
    PreconditionFailed,
)
from fleet.domain.preconditions import (
    check_cancellable,
    check_completion,
    check_dispatch,
)
from fleet.infrastructure.locks import LockedRows
from fleet.infrastructure.models import FuelLogModel, TripModel, utcnow
from fleet.infrastructure.repositories import FuelLogRepository, TripRepository
from fleet.infrastructure.transaction import Operation, TransactionContext
from fleet.services import audit
from fleet.services.alerts import schedule_service_due_check
from fleet.services.state import apply_transition


# ── Public API ────────────────────────────────────────────────────────


async def create_trip(
    tx: TransactionContext,
    *,
    vehicle_id: int,
    driver_id: int,
    cargo_weight_kg: float,
    dispatch: bool = True,
    idempotency_key: Optional[str] = None,
    performed_by: Optional[str] = None,
    today: Optional[date] = None,
) -> TripModel:
    """Create a trip for the pair and, by default, dispatch it."""
    op = tx.begin("create_trip", vehicle_id=vehicle_id, driver_id=driver_id)
    trips = TripRepository(tx.session)

    # ── Idempotency guard ─────────────────────────────────────────
    if idempotency_key:
        existing = await trips.get_by_idempotency_key(idempotency_key)
        if existing:
            _check_same_request(existing, vehicle_id, driver_id, cargo_weight_kg)
            return existing

    op.advance(DispatchPhase.LOCKING)
    locked = await tx.locks.acquire(vehicle_id=vehicle_id, driver_id=driver_id)

    op.advance(DispatchPhase.GUARDING)
    check_dispatch(
        locked.vehicle, locked.driver, cargo_weight_kg, today=today or date.today()
    )

    op.advance(DispatchPhase.MUTATING)
    trip = await trips.create_trip(
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        cargo_weight_kg=cargo_weight_kg,
        start_odometer=locked.vehicle.odometer,
        idempotency_key=idempotency_key,
        created_by=performed_by,
    )
    tx.locks.adopt(EntityType.TRIP, trip)

    op.advance(DispatchPhase.AUDITING)
    await audit.write_in_tx(
        tx.session,
        EntityType.TRIP,
        trip.id,
        AuditAction.TRIP_CREATED,
        performed_by=performed_by,
        metadata={
            "vehicle_id": vehicle_id,
            "driver_id": driver_id,
            "cargo_weight_kg": cargo_weight_kg,
        },
    )

    if dispatch:
        await _dispatch_locked(tx, op, locked._replace(trip=trip), performed_by)
    return trip


async def dispatch_trip(
    tx: TransactionContext,
    trip_id: int,
    *,
    performed_by: Optional[str] = None,
    today: Optional[date] = None,
) -> TripModel:
    """Dispatch a trip previously saved as ``draft``."""
    op = tx.begin("dispatch_trip", trip_id=trip_id)
    locked = await _lock_trip_with_resources(tx, op, trip_id)

    op.advance(DispatchPhase.GUARDING)
    state_machine.transition(EntityType.TRIP, locked.trip.status, TripStatus.DISPATCHED)
    check_dispatch(
        locked.vehicle,
        locked.driver,
        locked.trip.cargo_weight_kg,
        today=today or date.today(),
    )
    # The vehicle may have moved since the draft was saved.
    locked.trip.start_odometer = locked.vehicle.odometer
    await _dispatch_locked(tx, op, locked, performed_by)
    return locked.trip


async def complete_trip(
    tx: TransactionContext,
    trip_id: int,
    final_odometer: int,
    *,
    liters: Optional[float] = None,
    fuel_cost: Optional[float] = None,
    performed_by: Optional[str] = None,
) -> TripModel:
    op = tx.begin("complete_trip", trip_id=trip_id, final_odometer=final_odometer)
    if (liters is None) != (fuel_cost is None):
        raise PreconditionFailed(
            "FUEL_LOG_INCOMPLETE", "liters and fuel_cost must be given together."
        )

    locked = await _lock_trip_with_resources(tx, op, trip_id)
    trip, vehicle, driver = locked.trip, locked.vehicle, locked.driver

    op.advance(DispatchPhase.GUARDING)
    check_completion(trip, vehicle, final_odometer)

    op.advance(DispatchPhase.MUTATING)
    if liters is not None:
        await FuelLogRepository(tx.session).create(
            FuelLogModel(
                trip_id=trip.id,
                vehicle_id=vehicle.id,
                liters=liters,
                fuel_cost=fuel_cost,
            )
        )
        await audit.write_in_tx(
            tx.session,
            EntityType.TRIP,
            trip.id,
            AuditAction.FUEL_LOGGED,
            performed_by=performed_by,
            metadata={"liters": liters, "fuel_cost": fuel_cost},
        )

    context = {"trip_id": trip.id}
    await apply_transition(
        tx, EntityType.VEHICLE, vehicle, VehicleStatus.AVAILABLE,
        performed_by=performed_by, changes={"odometer": final_odometer},
        metadata=context, op=op,
    )
    await apply_transition(
        tx, EntityType.DRIVER, driver, DriverStatus.ON_DUTY,
        performed_by=performed_by, metadata=context, op=op,
    )
    await apply_transition(
        tx, EntityType.TRIP, trip, TripStatus.COMPLETED,
        performed_by=performed_by, changes={"end_odometer": final_odometer}, op=op,
    )
    trip.completed_at = utcnow()
    await tx.session.flush()

    schedule_service_due_check(tx, vehicle, performed_by=performed_by)
    return trip


async def cancel_trip(
    tx: TransactionContext,
    trip_id: int,
    *,
    performed_by: Optional[str] = None,
) -> TripModel:
    op = tx.begin("cancel_trip", trip_id=trip_id)
    locked = await _lock_trip_with_resources(tx, op, trip_id)
    trip, vehicle, driver = locked.trip, locked.vehicle, locked.driver

    op.advance(DispatchPhase.GUARDING)
    check_cancellable(trip)

    # A draft never moved its resources; only release what was taken.
    context = {"trip_id": trip.id}
    if trip.status == TripStatus.DISPATCHED:
        if vehicle.status == VehicleStatus.ON_TRIP:
            await apply_transition(
                tx, EntityType.VEHICLE, vehicle, VehicleStatus.AVAILABLE,
                performed_by=performed_by, metadata=context, op=op,
            )
        if driver.status == DriverStatus.ON_TRIP:
            await apply_transition(
                tx, EntityType.DRIVER, driver, DriverStatus.ON_DUTY,
                performed_by=performed_by, metadata=context, op=op,
            )

    await apply_transition(
        tx, EntityType.TRIP, trip, TripStatus.CANCELLED,
        performed_by=performed_by, op=op,
    )
    trip.cancelled_at = utcnow()
    await tx.session.flush()
    return trip


# ── Internals ─────────────────────────────────────────────────────────


def _check_same_request(trip, vehicle_id, driver_id, cargo_weight_kg) -> None:
    if (trip.vehicle_id, trip.driver_id, float(trip.cargo_weight_kg)) != (
        vehicle_id,
        driver_id,
        float(cargo_weight_kg),
    ):
        raise PreconditionFailed(
            "IDEMPOTENCY_KEY_REUSED",
            f"Key already used for trip {trip.id} with a different request.",
        )


async def _dispatch_locked(
    tx: TransactionContext,
    op: Operation,
    locked: LockedRows,
    performed_by: Optional[str],
) -> None:
    vehicle, driver, trip = locked.vehicle, locked.driver, locked.trip
    context = {"trip_id": trip.id}
    await apply_transition(
        tx, EntityType.VEHICLE, vehicle, VehicleStatus.ON_TRIP,
        performed_by=performed_by, metadata=context, op=op,
    )
    await apply_transition(
        tx, EntityType.DRIVER, driver, DriverStatus.ON_TRIP,
        performed_by=performed_by, metadata=context, op=op,
    )
    await apply_transition(
        tx, EntityType.TRIP, trip, TripStatus.DISPATCHED,
        performed_by=performed_by, op=op,
    )
    trip.dispatched_at = utcnow()
    await tx.session.flush()

    schedule_service_due_check(tx, vehicle, performed_by=performed_by)


async def _lock_trip_with_resources(
    tx: TransactionContext, op: Operation, trip_id: int
) -> LockedRows:
    """Peek at the trip for its resources, then lock all three in order."""
    peek = await TripRepository(tx.session).get_by_id(trip_id)
    if peek is None:
        raise NotFound.for_entity(EntityType.TRIP, trip_id)
    vehicle_id, driver_id = peek.vehicle_id, peek.driver_id

    op.advance(DispatchPhase.LOCKING)
    locked = await tx.locks.acquire(
        vehicle_id=vehicle_id, driver_id=driver_id, trip_id=trip_id
    )
    if (locked.trip.vehicle_id, locked.trip.driver_id) != (vehicle_id, driver_id):
        raise ConcurrencyConflict(
            ConflictReason.CONCURRENT_MODIFICATION,
            f"Trip {trip_id} was reassigned while it was being locked.",
        )
    return locked
