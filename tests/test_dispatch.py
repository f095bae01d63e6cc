"""
Dispatch protocol: create / dispatch / complete / cancel as single
transactional units.

Every test drives the service through a real ``TransactionCoordinator``
and then re-reads committed state from a fresh session.
"""

from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from fleet.domain.enums import (
    DispatchPhase,
    DriverStatus,
    EntityType,
    TripStatus,
    VehicleStatus,
)
from fleet.domain.errors import (
    ConcurrencyConflict,
    IllegalStateTransition,
    NotFound,
    PreconditionFailed,
)
from fleet.infrastructure.models import (
    AuditLogModel,
    DriverModel,
    FuelLogModel,
    TripModel,
    VehicleModel,
)
from fleet.infrastructure.repositories import TripRepository
from fleet.services import dispatch
from tests.conftest import (
    add_rows,
    audit_actions,
    count,
    driver_row,
    fetch,
    vehicle_row,
)


async def _create(coordinator, vehicle, driver, **kw):
    kw.setdefault("cargo_weight_kg", 500.0)
    async with coordinator.transaction() as tx:
        return await dispatch.create_trip(
            tx, vehicle_id=vehicle.id, driver_id=driver.id, **kw
        )


async def _states(session_factory, vehicle, driver):
    v = await fetch(session_factory, VehicleModel, vehicle.id)
    d = await fetch(session_factory, DriverModel, driver.id)
    return v.status, d.status


# ── Create / dispatch ─────────────────────────────────────────────────


class TestCreateTrip:
    @pytest.mark.asyncio
    async def test_dispatches_pair_atomically(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver, performed_by="ops")

        assert trip.status == TripStatus.DISPATCHED
        assert trip.start_odometer == vehicle.odometer
        assert trip.dispatched_at is not None
        assert trip.created_by == "ops"
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.ON_TRIP,
            DriverStatus.ON_TRIP,
        )

    @pytest.mark.asyncio
    async def test_one_audit_row_per_transition(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)

        assert await audit_actions(session_factory, "trip", trip.id) == [
            "trip_created",
            "trip_dispatched",
        ]
        assert await audit_actions(session_factory, "vehicle", vehicle.id) == [
            "vehicle_state_changed"
        ]
        assert await audit_actions(session_factory, "driver", driver.id) == [
            "driver_state_changed"
        ]

        async with session_factory() as session:
            entry = (
                await session.execute(
                    select(AuditLogModel).where(AuditLogModel.entity_type == "vehicle")
                )
            ).scalar_one()
        assert entry.details == {"from": "available", "to": "on_trip", "trip_id": trip.id}

    @pytest.mark.asyncio
    async def test_draft_keeps_resources_untouched(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver, dispatch=False)

        assert trip.status == TripStatus.DRAFT
        assert trip.dispatched_at is None
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.AVAILABLE,
            DriverStatus.ON_DUTY,
        )
        assert await audit_actions(session_factory) == ["trip_created"]

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_existing_trip(self, coordinator, session_factory, vehicle, driver):
        first = await _create(coordinator, vehicle, driver, idempotency_key="abc-123")
        second = await _create(coordinator, vehicle, driver, idempotency_key="abc-123")

        assert second.id == first.id
        assert await count(session_factory, TripModel) == 1

    @pytest.mark.asyncio
    async def test_reused_key_with_other_request_is_rejected(self, coordinator, session_factory, vehicle, driver):
        first = await _create(coordinator, vehicle, driver, dispatch=False, idempotency_key="abc-123")
        (other_vehicle,) = await add_rows(session_factory, vehicle_row())

        with pytest.raises(PreconditionFailed) as exc_info:
            await _create(coordinator, other_vehicle, driver, idempotency_key="abc-123")
        assert exc_info.value.reason == "IDEMPOTENCY_KEY_REUSED"

        with pytest.raises(PreconditionFailed):
            await _create(
                coordinator, vehicle, driver, cargo_weight_kg=750.0, idempotency_key="abc-123"
            )
        assert (await fetch(session_factory, TripModel, first.id)).vehicle_id == vehicle.id
        assert await count(session_factory, TripModel) == 1

    @pytest.mark.asyncio
    async def test_cargo_over_capacity_changes_nothing(self, coordinator, session_factory, vehicle, driver):
        with pytest.raises(PreconditionFailed) as exc_info:
            await _create(coordinator, vehicle, driver, cargo_weight_kg=1200.0)

        assert exc_info.value.reason == "CARGO_EXCEEDS_CAPACITY"
        assert exc_info.value.phase == DispatchPhase.GUARDING
        assert await count(session_factory, TripModel) == 0
        assert await count(session_factory, AuditLogModel) == 0
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.AVAILABLE,
            DriverStatus.ON_DUTY,
        )

    @pytest.mark.asyncio
    async def test_expired_license(self, coordinator, session_factory, vehicle):
        (expired,) = await add_rows(
            session_factory,
            driver_row(license_expiry=date.today() - timedelta(days=1)),
        )
        with pytest.raises(PreconditionFailed) as exc_info:
            await _create(coordinator, vehicle, expired)
        assert exc_info.value.reason == "LICENSE_EXPIRED"

    @pytest.mark.asyncio
    async def test_evaluates_against_supplied_day(self, coordinator, session_factory, vehicle):
        (driver,) = await add_rows(
            session_factory, driver_row(license_expiry=date(2030, 1, 1))
        )
        with pytest.raises(PreconditionFailed):
            await _create(coordinator, vehicle, driver, today=date(2030, 1, 2))

    @pytest.mark.asyncio
    async def test_suspended_driver(self, coordinator, session_factory, vehicle):
        (suspended,) = await add_rows(
            session_factory, driver_row(status=DriverStatus.SUSPENDED)
        )
        with pytest.raises(PreconditionFailed) as exc_info:
            await _create(coordinator, vehicle, suspended)
        assert exc_info.value.reason == "DRIVER_SUSPENDED"

    @pytest.mark.asyncio
    async def test_vehicle_in_shop(self, coordinator, session_factory, driver):
        (in_shop,) = await add_rows(
            session_factory, vehicle_row(status=VehicleStatus.IN_SHOP)
        )
        with pytest.raises(PreconditionFailed) as exc_info:
            await _create(coordinator, in_shop, driver)
        assert exc_info.value.reason == "VEHICLE_IN_SHOP"

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, coordinator, driver):
        with pytest.raises(NotFound) as exc_info:
            await _create(coordinator, SimpleNamespace(id=999), driver)
        assert exc_info.value.reason == "VEHICLE_NOT_FOUND"
        assert exc_info.value.phase == DispatchPhase.LOCKING

    @pytest.mark.asyncio
    async def test_audit_failure_rolls_back_the_dispatch(self, coordinator, session_factory, vehicle, driver):
        with patch(
            "fleet.services.audit.write_in_tx",
            AsyncMock(side_effect=RuntimeError("audit table unavailable")),
        ):
            with pytest.raises(RuntimeError):
                await _create(coordinator, vehicle, driver)

        assert await count(session_factory, TripModel) == 0
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.AVAILABLE,
            DriverStatus.ON_DUTY,
        )


class TestDispatchDraft:
    @pytest.mark.asyncio
    async def test_dispatches_saved_draft(self, coordinator, session_factory, vehicle, driver):
        draft = await _create(coordinator, vehicle, driver, dispatch=False)
        async with coordinator.transaction() as tx:
            trip = await dispatch.dispatch_trip(tx, draft.id, performed_by="ops")

        assert trip.status == TripStatus.DISPATCHED
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.ON_TRIP,
            DriverStatus.ON_TRIP,
        )

    @pytest.mark.asyncio
    async def test_rechecks_preconditions(self, coordinator, session_factory, vehicle, driver):
        draft = await _create(coordinator, vehicle, driver, dispatch=False)
        async with session_factory() as session:
            row = await session.get(DriverModel, driver.id)
            row.status = DriverStatus.OFF_DUTY
            await session.commit()

        with pytest.raises(PreconditionFailed) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.dispatch_trip(tx, draft.id)
        assert exc_info.value.reason == "DRIVER_NOT_ON_DUTY"
        assert (await fetch(session_factory, TripModel, draft.id)).status == TripStatus.DRAFT

    @pytest.mark.asyncio
    async def test_already_dispatched(self, coordinator, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        with pytest.raises(IllegalStateTransition) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.dispatch_trip(tx, trip.id)
        assert exc_info.value.reason == "ILLEGAL_TRIP_TRANSITION"

    @pytest.mark.asyncio
    async def test_missing_trip(self, coordinator):
        with pytest.raises(NotFound) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.dispatch_trip(tx, 4242)
        assert exc_info.value.reason == "TRIP_NOT_FOUND"


# ── Complete ──────────────────────────────────────────────────────────


class TestCompleteTrip:
    @pytest.mark.asyncio
    async def test_releases_resources_and_records_odometer(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            done = await dispatch.complete_trip(tx, trip.id, vehicle.odometer + 150)

        assert done.status == TripStatus.COMPLETED
        assert done.end_odometer == vehicle.odometer + 150
        assert done.completed_at is not None
        fresh = await fetch(session_factory, VehicleModel, vehicle.id)
        assert fresh.odometer == vehicle.odometer + 150
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.AVAILABLE,
            DriverStatus.ON_DUTY,
        )
        assert await audit_actions(session_factory, "trip", trip.id) == [
            "trip_created",
            "trip_dispatched",
            "trip_completed",
        ]

    @pytest.mark.asyncio
    async def test_records_fuel_log(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            await dispatch.complete_trip(
                tx, trip.id, vehicle.odometer + 80, liters=42.5, fuel_cost=61.0
            )

        async with session_factory() as session:
            log = (await session.execute(select(FuelLogModel))).scalar_one()
        assert (log.trip_id, log.vehicle_id, log.liters) == (trip.id, vehicle.id, 42.5)
        assert "fuel_logged" in await audit_actions(session_factory, "trip", trip.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fuel", [{"liters": 40.0}, {"fuel_cost": 55.0}])
    async def test_half_fuel_entry_is_rejected(self, coordinator, session_factory, vehicle, driver, fuel):
        trip = await _create(coordinator, vehicle, driver)
        with pytest.raises(PreconditionFailed) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.complete_trip(tx, trip.id, vehicle.odometer + 80, **fuel)

        assert exc_info.value.reason == "FUEL_LOG_INCOMPLETE"
        assert await count(session_factory, FuelLogModel) == 0
        assert (await fetch(session_factory, TripModel, trip.id)).status == TripStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_odometer_must_increase(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        with pytest.raises(PreconditionFailed) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.complete_trip(tx, trip.id, vehicle.odometer)

        assert exc_info.value.reason == "ODOMETER_NOT_INCREASING"
        assert (await fetch(session_factory, TripModel, trip.id)).status == TripStatus.DISPATCHED
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.ON_TRIP,
            DriverStatus.ON_TRIP,
        )

    @pytest.mark.asyncio
    async def test_draft_cannot_be_completed(self, coordinator, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver, dispatch=False)
        with pytest.raises(IllegalStateTransition) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.complete_trip(tx, trip.id, vehicle.odometer + 10)
        assert exc_info.value.reason == "TRIP_NOT_DISPATCHED"

    @pytest.mark.asyncio
    async def test_second_completion_is_rejected(self, coordinator, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            await dispatch.complete_trip(tx, trip.id, vehicle.odometer + 10)
        with pytest.raises(IllegalStateTransition):
            async with coordinator.transaction() as tx:
                await dispatch.complete_trip(tx, trip.id, vehicle.odometer + 20)


# ── Cancel ────────────────────────────────────────────────────────────


class TestCancelTrip:
    @pytest.mark.asyncio
    async def test_cancel_dispatched_releases_pair(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            cancelled = await dispatch.cancel_trip(tx, trip.id, performed_by="ops")

        assert cancelled.status == TripStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert await _states(session_factory, vehicle, driver) == (
            VehicleStatus.AVAILABLE,
            DriverStatus.ON_DUTY,
        )

    @pytest.mark.asyncio
    async def test_cancel_draft_leaves_pair_alone(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver, dispatch=False)
        async with coordinator.transaction() as tx:
            await dispatch.cancel_trip(tx, trip.id)

        assert await audit_actions(session_factory, "vehicle", vehicle.id) == []
        assert await audit_actions(session_factory, "trip", trip.id) == [
            "trip_created",
            "trip_cancelled",
        ]

    @pytest.mark.asyncio
    async def test_completed_trip_cannot_be_cancelled(self, coordinator, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            await dispatch.complete_trip(tx, trip.id, vehicle.odometer + 5)
        with pytest.raises(IllegalStateTransition) as exc_info:
            async with coordinator.transaction() as tx:
                await dispatch.cancel_trip(tx, trip.id)
        assert exc_info.value.reason == "TRIP_NOT_CANCELLABLE"

    @pytest.mark.asyncio
    async def test_cancelled_trip_frees_pair_for_new_dispatch(self, coordinator, vehicle, driver):
        first = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            await dispatch.cancel_trip(tx, first.id)
        second = await _create(coordinator, vehicle, driver)
        assert second.id != first.id
        assert second.status == TripStatus.DISPATCHED


# ── Lock-order resolution ─────────────────────────────────────────────


class TestTripFirstLocking:
    @pytest.mark.asyncio
    async def test_reassigned_trip_is_a_conflict(self, coordinator, session_factory, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        (other,) = await add_rows(session_factory, vehicle_row())
        stale = SimpleNamespace(id=trip.id, vehicle_id=other.id, driver_id=driver.id)

        with patch.object(TripRepository, "get_by_id", AsyncMock(return_value=stale)):
            with pytest.raises(ConcurrencyConflict) as exc_info:
                async with coordinator.transaction() as tx:
                    await dispatch.cancel_trip(tx, trip.id)

        assert exc_info.value.reason == "CONCURRENT_MODIFICATION"
        assert exc_info.value.retryable is True
        assert (await fetch(session_factory, TripModel, trip.id)).status == TripStatus.DISPATCHED

    @pytest.mark.asyncio
    async def test_locks_taken_vehicle_driver_trip(self, coordinator, vehicle, driver):
        trip = await _create(coordinator, vehicle, driver)
        async with coordinator.transaction() as tx:
            await dispatch.cancel_trip(tx, trip.id)
            assert tx.locks.holds(EntityType.VEHICLE, vehicle.id)
            assert tx.locks.holds(EntityType.DRIVER, driver.id)
            assert tx.locks.holds(EntityType.TRIP, trip.id)
